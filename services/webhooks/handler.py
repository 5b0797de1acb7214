"""Inbound chat webhook processing.

``WebhookHandler.handle`` takes the raw body and signature header and returns
the status code and JSON body to send back. It never raises; unexpected
failures become a logged 500.
"""

import json
import logging
from typing import Any

from pydantic import BaseModel, ValidationError

from services.api import metrics
from services.db.models import Client
from services.db.repository import InvoiceRepository
from services.ingestion.service import IngestionService
from services.notifications.service import NotificationService
from services.webhooks.commands import reply_for
from services.webhooks.schema import DocumentRef, MessageData, WebhookPayload
from services.webhooks.signature import SignatureVerifier

logger = logging.getLogger(__name__)


class WebhookResponse(BaseModel):
    status_code: int = 200
    body: dict[str, Any]


def _respond(outcome: str, status_code: int, **body: Any) -> WebhookResponse:
    metrics.webhook_events_total.labels(outcome=outcome).inc()
    return WebhookResponse(status_code=status_code, body=body)


class WebhookHandler:
    """Routes verified chat events to ingestion or text commands."""

    def __init__(
        self,
        verifier: SignatureVerifier,
        repository: InvoiceRepository,
        ingestion: IngestionService,
        notifier: NotificationService,
    ) -> None:
        self.verifier = verifier
        self.repository = repository
        self.ingestion = ingestion
        self.notifier = notifier

    async def handle(self, raw_body: bytes, signature: str | None) -> WebhookResponse:
        """Process one webhook delivery.

        Args:
            raw_body: Request body exactly as received
            signature: Signature header value, if present

        Returns:
            WebhookResponse with status code and JSON body
        """
        if not self.verifier.verify(raw_body, signature):
            return _respond("invalid_signature", 401, received=False, error="Invalid signature")

        try:
            payload = WebhookPayload.model_validate(json.loads(raw_body))
        except (ValueError, ValidationError) as e:
            logger.warning(f"Malformed webhook payload: {e}")
            return _respond("malformed", 400, received=False, error="Invalid payload")

        if not payload.is_message_event:
            logger.debug(f"Ignoring webhook event '{payload.event}'")
            return _respond("ignored", 200, received=True)

        try:
            message = MessageData.model_validate(payload.data)
        except ValidationError as e:
            logger.warning(f"Invalid message envelope: {e}")
            return _respond("malformed", 400, received=False, error="Invalid message data")

        try:
            return await self._route(message)
        except Exception:
            logger.exception("Webhook processing failed")
            return _respond("error", 500, received=False, error="Internal server error")

    async def _route(self, message: MessageData) -> WebhookResponse:
        client = self.repository.find_client_by_whatsapp(message.from_)
        if client is None:
            logger.warning(f"Webhook from unknown sender {message.from_}")
            return _respond("unknown_sender", 404, received=True, error="Client not found")

        if message.type == "document" and message.document is not None:
            return await self._handle_document(client, message.document, message.id)

        if message.type == "text":
            text = message.text.body if message.text else ""
            self.notifier.send_text(
                client.whatsapp_number, reply_for(self.repository, client, text)
            )
            return _respond("text", 200, received=True)

        logger.info(f"Acknowledged '{message.type}' message from client {client.id}")
        return _respond("other", 200, received=True)

    async def _handle_document(
        self, client: Client, document: DocumentRef, message_id: str | None
    ) -> WebhookResponse:
        result = await self.ingestion.ingest_document(
            client, document, source_type="whatsapp", source_id=message_id
        )
        if result.duplicate:
            return _respond("duplicate", 200, received=True, duplicate=True)
        return _respond("document", 200, received=True, invoice_id=result.invoice_id)
