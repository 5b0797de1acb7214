"""Inbound chat webhook payload models."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TextBody(BaseModel):
    body: str = ""


class DocumentRef(BaseModel):
    """Attachment reference sent by the messaging provider."""

    filename: str = Field(min_length=1)
    mimetype: str = "application/octet-stream"
    url: str = Field(min_length=1)


class MessageData(BaseModel):
    """Message envelope.

    Attributes:
        id: Provider message id (stored as the invoice source id)
        from_: Sender phone-like identifier (``from`` on the wire)
        type: text, document, image, ...
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    from_: str = Field(alias="from", min_length=1)
    type: str
    text: TextBody | None = None
    document: DocumentRef | None = None
    timestamp: int | float | str | None = None


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event: str = ""
    data: dict[str, Any] | None = None

    @property
    def is_message_event(self) -> bool:
        return "message" in self.event.lower()
