"""Dead-letter recording for analyses that cannot complete.

Entries are consumed by out-of-band retry tooling. Recording is the last
resort of the pipeline, so it never raises.
"""

import logging
from typing import Any

from services.api import metrics
from services.db.models import Invoice
from services.db.repository import InvoiceRepository

logger = logging.getLogger(__name__)


class DeadLetterRecorder:
    """Captures failed analyses and marks their invoices as ``error``."""

    def __init__(self, repository: InvoiceRepository) -> None:
        self.repository = repository

    @staticmethod
    def build_payload(invoice: Invoice) -> dict[str, Any]:
        return {
            "invoice_id": invoice.id,
            "file_path": invoice.file_path,
            "file_name": invoice.file_name,
        }

    def record(self, invoice: Invoice, error: BaseException | str) -> bool:
        """Store a dead-letter entry and move the invoice to ``error``.

        Args:
            invoice: Invoice whose analysis failed
            error: Failure cause

        Returns:
            True if the entry was stored
        """
        message = str(error) or type(error).__name__
        stored = False
        try:
            self.repository.add_dead_letter(
                invoice_id=invoice.id,
                firm_id=invoice.firm_id,
                error_message=message,
                original_payload=self.build_payload(invoice),
            )
            stored = True
            metrics.dead_letters_total.inc()
            logger.warning(f"Invoice {invoice.id} moved to dead-letter queue: {message}")
        except Exception:
            logger.exception(f"Failed to record dead letter for invoice {invoice.id}")

        try:
            self.repository.transition_invoice(invoice.id, "processing", "error")
        except Exception:
            logger.exception(f"Failed to mark invoice {invoice.id} as error")

        return stored
