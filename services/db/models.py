"""SQLAlchemy 2.0 ORM tables for the invoice pipeline.

Every tenant-owned table carries ``firm_id``. Clients and invoices are
soft-deleted through ``deleted_at`` and never removed.
"""

import re
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
_JsonType = JSON().with_variant(JSONB(), "postgresql")

INVOICE_STATUSES = ("pending", "processing", "analyzed", "error", "archived")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _uuid() -> str:
    return str(uuid.uuid4())


def normalize_phone(phone: str | None) -> str:
    """Strip everything but digits from a phone-like identifier."""
    return re.sub(r"\D", "", phone or "")


class Base(DeclarativeBase):
    """Shared declarative base for all pipeline tables."""


class Firm(Base):
    """Accounting firm: the unit of tenant isolation."""

    __tablename__ = "firms"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    country_code: Mapped[str] = mapped_column(String(2), nullable=False, default="PT")
    preferred_llm: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    clients: Mapped[list["Client"]] = relationship(back_populates="firm")


class Client(Base):
    """A firm's customer whose invoices are tracked."""

    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    firm_id: Mapped[str] = mapped_column(ForeignKey("firms.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    tax_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    whatsapp_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    regime_iva: Mapped[str] = mapped_column(String(32), nullable=False, default="geral")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    firm: Mapped[Firm] = relationship(back_populates="clients", lazy="joined")

    __table_args__ = (
        Index("ix_clients_firm", "firm_id"),
        Index("ix_clients_whatsapp", "whatsapp_number"),
    )

    @validates("whatsapp_number")
    def _normalize_whatsapp(self, key: str, value: str | None) -> str | None:
        return normalize_phone(value) or None


class Invoice(Base):
    """Uploaded invoice document and its pipeline status."""

    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    firm_id: Mapped[str] = mapped_column(ForeignKey("firms.id"), nullable=False)
    client_id: Mapped[str] = mapped_column(ForeignKey("clients.id"), nullable=False)
    source_type: Mapped[str] = mapped_column(String(16), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_name: Mapped[str] = mapped_column(String(512), nullable=False)
    file_type: Mapped[str] = mapped_column(String(128), nullable=False)
    file_size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    file_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    raw_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    extracted_data: Mapped[dict[str, Any]] = mapped_column(_JsonType, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("client_id", "file_hash", name="uq_invoices_client_hash"),
        Index("ix_invoices_firm", "firm_id"),
        Index("ix_invoices_client_created", "client_id", "created_at"),
    )


class Analysis(Base):
    """Compliance analysis produced by an AI provider for one invoice."""

    __tablename__ = "analyses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    firm_id: Mapped[str] = mapped_column(ForeignKey("firms.id"), nullable=False)
    invoice_id: Mapped[str] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    client_id: Mapped[str] = mapped_column(ForeignKey("clients.id"), nullable=False)
    llm_provider: Mapped[str] = mapped_column(String(64), nullable=False)
    llm_model: Mapped[str] = mapped_column(String(128), nullable=False)
    compliance_score: Mapped[float] = mapped_column(Float, nullable=False)
    risk_level: Mapped[str] = mapped_column(String(16), nullable=False)
    iva_validation: Mapped[dict[str, Any]] = mapped_column(_JsonType, nullable=False)
    recoverable_tax: Mapped[dict[str, Any] | None] = mapped_column(_JsonType, nullable=True)
    issues: Mapped[list[dict[str, Any]]] = mapped_column(_JsonType, nullable=False, default=list)
    raw_response: Mapped[dict[str, Any]] = mapped_column(_JsonType, nullable=False, default=dict)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    reviewed_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (Index("ix_analyses_invoice", "invoice_id"),)


class Alert(Base):
    """Actionable finding derived from a critical or warning issue."""

    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    firm_id: Mapped[str] = mapped_column(ForeignKey("firms.id"), nullable=False)
    client_id: Mapped[str | None] = mapped_column(ForeignKey("clients.id"), nullable=True)
    invoice_id: Mapped[str | None] = mapped_column(ForeignKey("invoices.id"), nullable=True)
    analysis_id: Mapped[str | None] = mapped_column(ForeignKey("analyses.id"), nullable=True)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str] = mapped_column(String(128), nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    suggested_action: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    # Position within the originating analysis (criticals first)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_alerts_firm_open", "firm_id", "resolved_at"),
        Index("ix_alerts_client", "client_id"),
    )


class AuditLog(Base):
    """Append-only record of pipeline events."""

    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    firm_id: Mapped[str] = mapped_column(ForeignKey("firms.id"), nullable=False)
    client_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    action_type: Mapped[str] = mapped_column(String(32), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(32), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(
        "metadata", _JsonType, nullable=False, default=dict
    )
    ai_provider: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ai_model: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class AnalysisDeadLetter(Base):
    """Unrecoverable analysis failure kept for offline triage."""

    __tablename__ = "analysis_dlq"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    invoice_id: Mapped[str] = mapped_column(String(36), nullable=False)
    firm_id: Mapped[str] = mapped_column(String(36), nullable=False)
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    original_payload: Mapped[dict[str, Any]] = mapped_column(_JsonType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
