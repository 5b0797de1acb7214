"""Analysis orchestration for ingested invoices.

Runs once per queued invoice:
1. Load the invoice and its client (with firm preferences)
2. Ask the firm's AI provider for a compliance analysis
3. Persist the analysis and one alert per critical/warning issue
4. Move the invoice to ``analyzed`` and notify the client of critical issues

Any failure along the way ends in the dead-letter queue with the invoice in
``error``. Nothing is raised past ``analyze``.
"""

import logging
import time
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

from services.analysis.factory import AnalysisProviderPool
from services.analysis.schema import AnalysisRequest, AnalysisResult
from services.api import metrics
from services.db.models import Analysis, Client, Invoice
from services.db.repository import InvoiceRepository
from services.notifications import messages
from services.notifications.service import NotificationService
from services.queue.dead_letter import DeadLetterRecorder
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class AnalysisOutcome(BaseModel):
    """Result of one orchestration run.

    Attributes:
        invoice_id: Invoice that was processed
        status: analyzed, error, or skipped (invoice missing or not processing)
        analysis_id: Stored analysis, if any
        alert_ids: Alerts created, criticals first
        notified: Whether a critical-issue notification was delivered
        error: Failure message for error outcomes
    """

    invoice_id: str
    status: Literal["analyzed", "error", "skipped"]
    analysis_id: str | None = None
    alert_ids: list[str] = Field(default_factory=list)
    notified: bool = False
    error: str | None = None


class ClientNotFoundError(Exception):
    """Invoice references a client that no longer resolves."""


class AnalysisOrchestrator:
    """Drives an invoice from ``processing`` to ``analyzed`` or ``error``."""

    def __init__(
        self,
        settings: Settings,
        repository: InvoiceRepository,
        providers: AnalysisProviderPool,
        notifier: NotificationService,
        dead_letters: DeadLetterRecorder,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.providers = providers
        self.notifier = notifier
        self.dead_letters = dead_letters

    def analyze(self, invoice_id: str) -> AnalysisOutcome:
        """Analyze a persisted invoice.

        Args:
            invoice_id: Invoice in ``processing`` status

        Returns:
            AnalysisOutcome describing what happened
        """
        try:
            invoice = self.repository.get_invoice(invoice_id)
        except Exception as e:
            logger.exception(f"Could not load invoice {invoice_id}")
            return AnalysisOutcome(invoice_id=invoice_id, status="error", error=str(e))

        if invoice is None:
            logger.warning(f"Invoice {invoice_id} not found, skipping analysis")
            return AnalysisOutcome(invoice_id=invoice_id, status="skipped")
        if invoice.status != "processing":
            logger.info(f"Invoice {invoice_id} is '{invoice.status}', skipping analysis")
            return AnalysisOutcome(invoice_id=invoice_id, status="skipped")

        start = time.time()
        provider_name = "unknown"
        try:
            client = self.repository.get_client(invoice.firm_id, invoice.client_id)
            if client is None:
                raise ClientNotFoundError(f"Client {invoice.client_id} not found")

            provider = self.providers.get(client.firm.preferred_llm)
            provider_name = provider.provider_name
            logger.info(f"Analyzing invoice {invoice.id} with {provider_name}")

            result = provider.analyze_invoice(self._build_request(invoice, client))

            analysis = self.repository.create_analysis(
                invoice, result, provider.provider_name, provider.model_name
            )
            alert_ids = self._create_alerts(analysis, result)

            extracted_data = {
                **(invoice.extracted_data or {}),
                **result.model_dump(mode="json"),
                "analyzed_at": datetime.now(UTC).isoformat(),
            }
            transitioned = self.repository.transition_invoice(
                invoice.id, "processing", "analyzed", extracted_data=extracted_data
            )
        except Exception as e:
            logger.exception(f"Analysis failed for invoice {invoice.id}")
            self.dead_letters.record(invoice, e)
            metrics.analysis_total.labels(provider=provider_name, status="error").inc()
            return AnalysisOutcome(invoice_id=invoice.id, status="error", error=str(e))
        finally:
            metrics.analysis_duration_seconds.observe(time.time() - start)

        if not transitioned:
            logger.warning(f"Invoice {invoice.id} left processing during analysis, status kept")
            return AnalysisOutcome(
                invoice_id=invoice.id, status="skipped", analysis_id=analysis.id, alert_ids=alert_ids
            )

        metrics.analysis_total.labels(provider=provider_name, status="analyzed").inc()
        self._audit(invoice, provider.provider_name, provider.model_name, analysis.id)

        notified = False
        if result.critical_issues:
            notified = self.notifier.send_text(
                client.whatsapp_number,
                messages.critical_issues_message(invoice.file_name, result.critical_issues),
            )

        logger.info(
            f"Invoice {invoice.id} analyzed: score={result.compliance_score} "
            f"risk={result.risk_level} alerts={len(alert_ids)}"
        )
        return AnalysisOutcome(
            invoice_id=invoice.id,
            status="analyzed",
            analysis_id=analysis.id,
            alert_ids=alert_ids,
            notified=notified,
        )

    def _build_request(self, invoice: Invoice, client: Client) -> AnalysisRequest:
        return AnalysisRequest(
            invoice_text=invoice.raw_text or "",
            document_type="xml" if "xml" in (invoice.file_type or "") else "pdf",
            country_code=client.firm.country_code or self.settings.default_country_code,
            regime_iva=client.regime_iva,
        )

    def _create_alerts(self, analysis: Analysis, result: AnalysisResult) -> list[str]:
        alert_ids = []
        ordered = [*result.critical_issues, *result.warning_issues]
        for sequence, issue in enumerate(ordered):
            alert = self.repository.create_alert(analysis, issue, sequence)
            metrics.alerts_created_total.labels(severity=issue.severity).inc()
            alert_ids.append(alert.id)
        return alert_ids

    def _audit(self, invoice: Invoice, provider: str, model: str, analysis_id: str) -> None:
        try:
            self.repository.add_audit_log(
                firm_id=invoice.firm_id,
                client_id=invoice.client_id,
                action_type="analyze",
                resource_type="invoice",
                resource_id=invoice.id,
                metadata={"analysis_id": analysis_id},
                ai_provider=provider,
                ai_model=model,
            )
        except Exception as e:
            logger.warning(f"Audit log for analysis of invoice {invoice.id} failed: {e}")
