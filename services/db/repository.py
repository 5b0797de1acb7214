"""Tenant-scoped data access for the invoice pipeline.

Each method runs in its own short transaction. Callers compose them
sequentially; there is no cross-method atomicity, so readers must tolerate
partially completed pipelines (for example an analyzed invoice without alerts).
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from services.analysis.schema import AnalysisResult, Issue
from services.db.models import (
    Alert,
    Analysis,
    AnalysisDeadLetter,
    AuditLog,
    Client,
    Invoice,
    normalize_phone,
)
from services.db.session import Database

logger = logging.getLogger(__name__)


class DuplicateInvoiceError(Exception):
    """An invoice with the same content hash already exists for the client."""

    def __init__(self, client_id: str, file_hash: str, existing_id: str | None = None) -> None:
        super().__init__(f"Duplicate invoice for client {client_id} (hash {file_hash[:12]})")
        self.client_id = client_id
        self.file_hash = file_hash
        self.existing_id = existing_id


class AlertNotFoundError(Exception):
    """Alert does not exist for the tenant."""


class AlertAlreadyResolvedError(Exception):
    """Alert was resolved earlier; the first resolution is kept."""

    def __init__(self, alert: Alert) -> None:
        super().__init__(f"Alert {alert.id} already resolved by {alert.resolved_by}")
        self.alert = alert


class InvoiceRepository:
    """Relational store access for clients, invoices, analyses and alerts."""

    def __init__(self, database: Database) -> None:
        self.database = database

    # Clients

    def find_client_by_whatsapp(self, sender: str) -> Client | None:
        """Resolve a chat sender to an active client by digits-only number."""
        number = normalize_phone(sender)
        if not number:
            return None
        with self.database.session() as session:
            return session.scalars(
                select(Client)
                .where(Client.whatsapp_number == number, Client.deleted_at.is_(None))
                .limit(1)
            ).first()

    def get_client(self, firm_id: str, client_id: str) -> Client | None:
        with self.database.session() as session:
            return session.scalars(
                select(Client).where(
                    Client.id == client_id,
                    Client.firm_id == firm_id,
                    Client.deleted_at.is_(None),
                )
            ).first()

    # Invoices

    def find_invoice_by_hash(self, firm_id: str, client_id: str, file_hash: str) -> Invoice | None:
        # Soft-deleted rows still hold the (client, hash) slot
        with self.database.session() as session:
            return session.scalars(
                select(Invoice).where(
                    Invoice.firm_id == firm_id,
                    Invoice.client_id == client_id,
                    Invoice.file_hash == file_hash,
                )
            ).first()

    def create_invoice(self, **fields: Any) -> Invoice:
        """Insert an invoice row.

        Raises:
            DuplicateInvoiceError: If the (client, hash) pair already exists
        """
        invoice = Invoice(**fields)
        try:
            with self.database.session() as session:
                session.add(invoice)
        except IntegrityError:
            existing = self.find_invoice_by_hash(
                fields["firm_id"], fields["client_id"], fields["file_hash"]
            )
            if existing is None:
                raise
            raise DuplicateInvoiceError(
                fields["client_id"], fields["file_hash"], existing.id
            ) from None
        return invoice

    def get_invoice(self, invoice_id: str, firm_id: str | None = None) -> Invoice | None:
        stmt = select(Invoice).where(Invoice.id == invoice_id, Invoice.deleted_at.is_(None))
        if firm_id is not None:
            stmt = stmt.where(Invoice.firm_id == firm_id)
        with self.database.session() as session:
            return session.scalars(stmt).first()

    def transition_invoice(
        self,
        invoice_id: str,
        from_status: str,
        to_status: str,
        extracted_data: dict[str, Any] | None = None,
    ) -> bool:
        """Move an invoice between statuses only if it is still in ``from_status``.

        Returns:
            True if the row was updated
        """
        values: dict[str, Any] = {"status": to_status, "updated_at": datetime.now(UTC)}
        if extracted_data is not None:
            values["extracted_data"] = extracted_data
        with self.database.session() as session:
            result = session.execute(
                update(Invoice)
                .where(Invoice.id == invoice_id, Invoice.status == from_status)
                .values(**values)
            )
            changed = bool(result.rowcount)
        if not changed:
            logger.warning(
                f"Invoice {invoice_id} not in status '{from_status}', "
                f"skipped transition to '{to_status}'"
            )
        return changed

    def count_invoices(self, firm_id: str, client_id: str, since: datetime | None = None) -> int:
        stmt = select(func.count(Invoice.id)).where(
            Invoice.firm_id == firm_id,
            Invoice.client_id == client_id,
            Invoice.deleted_at.is_(None),
        )
        if since is not None:
            stmt = stmt.where(Invoice.created_at >= since)
        with self.database.session() as session:
            return session.scalar(stmt) or 0

    def count_recent_invoices(self, firm_id: str, client_id: str, days: int = 30) -> int:
        return self.count_invoices(
            firm_id, client_id, since=datetime.now(UTC) - timedelta(days=days)
        )

    # Analyses and alerts

    def create_analysis(
        self,
        invoice: Invoice,
        result: AnalysisResult,
        provider_name: str,
        model_name: str,
    ) -> Analysis:
        payload = result.model_dump(mode="json")
        analysis = Analysis(
            firm_id=invoice.firm_id,
            invoice_id=invoice.id,
            client_id=invoice.client_id,
            llm_provider=provider_name,
            llm_model=model_name,
            compliance_score=result.compliance_score,
            risk_level=result.risk_level,
            iva_validation=payload["iva_validation"],
            recoverable_tax=payload["recoverable_tax"],
            issues=payload["issues"],
            raw_response=payload,
            confidence_score=result.confidence_score,
        )
        with self.database.session() as session:
            session.add(analysis)
        return analysis

    def get_latest_analysis(self, firm_id: str, invoice_id: str) -> Analysis | None:
        with self.database.session() as session:
            return session.scalars(
                select(Analysis)
                .where(Analysis.firm_id == firm_id, Analysis.invoice_id == invoice_id)
                .order_by(Analysis.created_at.desc())
                .limit(1)
            ).first()

    def create_alert(self, analysis: Analysis, issue: Issue, sequence: int) -> Alert:
        alert = Alert(
            firm_id=analysis.firm_id,
            client_id=analysis.client_id,
            invoice_id=analysis.invoice_id,
            analysis_id=analysis.id,
            severity=issue.severity,
            category=issue.code,
            title=(issue.message or issue.code)[:512],
            description=issue.message or issue.code,
            suggested_action=issue.suggested_action,
            sequence=sequence,
        )
        with self.database.session() as session:
            session.add(alert)
        return alert

    def list_alerts(self, firm_id: str, invoice_id: str | None = None) -> list[Alert]:
        stmt = select(Alert).where(Alert.firm_id == firm_id)
        if invoice_id is not None:
            stmt = stmt.where(Alert.invoice_id == invoice_id)
        stmt = stmt.order_by(Alert.created_at, Alert.sequence)
        with self.database.session() as session:
            return list(session.scalars(stmt))

    def count_open_alerts(self, firm_id: str, client_id: str) -> int:
        with self.database.session() as session:
            return (
                session.scalar(
                    select(func.count(Alert.id)).where(
                        Alert.firm_id == firm_id,
                        Alert.client_id == client_id,
                        Alert.resolved_at.is_(None),
                        Alert.severity.in_(("warning", "critical")),
                    )
                )
                or 0
            )

    def resolve_alert(
        self,
        firm_id: str,
        alert_id: str,
        resolved_by: str,
        notes: str | None = None,
    ) -> Alert:
        """Resolve an open alert exactly once.

        Raises:
            AlertNotFoundError: If the alert does not exist for the tenant
            AlertAlreadyResolvedError: If the alert was already resolved
        """
        with self.database.session() as session:
            result = session.execute(
                update(Alert)
                .where(
                    Alert.id == alert_id,
                    Alert.firm_id == firm_id,
                    Alert.resolved_at.is_(None),
                )
                .values(
                    resolved_at=datetime.now(UTC),
                    resolved_by=resolved_by,
                    resolution_notes=notes,
                )
            )
            updated = bool(result.rowcount)

        with self.database.session() as session:
            alert = session.scalars(
                select(Alert).where(Alert.id == alert_id, Alert.firm_id == firm_id)
            ).first()
        if alert is None:
            raise AlertNotFoundError(alert_id)
        if not updated:
            raise AlertAlreadyResolvedError(alert)
        return alert

    # Audit and dead letters

    def add_audit_log(
        self,
        firm_id: str,
        action_type: str,
        resource_type: str,
        resource_id: str | None = None,
        client_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        ai_provider: str | None = None,
        ai_model: str | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            firm_id=firm_id,
            client_id=client_id,
            action_type=action_type,
            resource_type=resource_type,
            resource_id=resource_id,
            metadata_json=metadata or {},
            ai_provider=ai_provider,
            ai_model=ai_model,
        )
        with self.database.session() as session:
            session.add(entry)
        return entry

    def list_audit_logs(self, firm_id: str) -> list[AuditLog]:
        with self.database.session() as session:
            return list(
                session.scalars(
                    select(AuditLog)
                    .where(AuditLog.firm_id == firm_id)
                    .order_by(AuditLog.created_at)
                )
            )

    def add_dead_letter(
        self,
        invoice_id: str,
        firm_id: str,
        error_message: str,
        original_payload: dict[str, Any],
    ) -> AnalysisDeadLetter:
        entry = AnalysisDeadLetter(
            invoice_id=invoice_id,
            firm_id=firm_id,
            error_message=error_message,
            original_payload=original_payload,
        )
        with self.database.session() as session:
            session.add(entry)
        return entry

    def list_dead_letters(self, firm_id: str) -> list[AnalysisDeadLetter]:
        with self.database.session() as session:
            return list(
                session.scalars(
                    select(AnalysisDeadLetter)
                    .where(AnalysisDeadLetter.firm_id == firm_id)
                    .order_by(AnalysisDeadLetter.created_at)
                )
            )
