"""Document ingestion: download, deduplicate, store and register invoices.

Ingestion steps:
1. Fetch document bytes (chat attachments) or take them inline (uploads)
2. Fingerprint the content with SHA-256 and reject duplicates per client
3. Write the original to object storage under a tenant/client path
4. Extract text where the mimetype allows it
5. Insert the invoice in ``processing`` and queue its analysis (a failed
   handoff dead-letters the invoice)
6. Acknowledge receipt to the sender
"""

import hashlib
import logging

import httpx
from pydantic import BaseModel

from services.api import metrics
from services.db.models import Client, Invoice
from services.db.repository import DuplicateInvoiceError, InvoiceRepository
from services.extraction.text import TextExtractor
from services.notifications import messages
from services.notifications.service import NotificationService
from services.queue.dead_letter import DeadLetterRecorder
from services.queue.dispatch import AnalysisQueue
from services.shared.config import Settings
from services.storage.service import StorageService, build_invoice_object_name
from services.webhooks.schema import DocumentRef

logger = logging.getLogger(__name__)


class DocumentDownloadError(Exception):
    """Attachment could not be fetched from the messaging provider."""


class StorageWriteError(Exception):
    """Configured object storage rejected the document."""


class IngestionResult(BaseModel):
    """Outcome of ingesting one document.

    Attributes:
        duplicate: True if the client already sent identical content
        invoice_id: New invoice, or the existing one for duplicates when known
        file_path: Object storage path of the original
    """

    duplicate: bool = False
    invoice_id: str | None = None
    file_path: str | None = None


def fingerprint(content: bytes) -> str:
    """SHA-256 hex digest of document bytes."""
    return hashlib.sha256(content).hexdigest()


class IngestionService:
    """Turns a received document into a stored invoice awaiting analysis."""

    def __init__(
        self,
        settings: Settings,
        repository: InvoiceRepository,
        storage: StorageService,
        extractor: TextExtractor,
        notifier: NotificationService,
        queue: AnalysisQueue,
        dead_letters: DeadLetterRecorder,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.storage = storage
        self.extractor = extractor
        self.notifier = notifier
        self.queue = queue
        self.dead_letters = dead_letters
        self._http = http_client or httpx.AsyncClient(
            timeout=settings.download_timeout_seconds,
            follow_redirects=True,
        )

    async def download(self, url: str) -> bytes:
        """Fetch document bytes.

        Raises:
            DocumentDownloadError: On transport errors, timeouts or non-2xx status
        """
        try:
            response = await self._http.get(url, timeout=self.settings.download_timeout_seconds)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to download document from {url}: {e}")
            raise DocumentDownloadError(f"Failed to download document: {e}") from e
        return response.content

    async def ingest_document(
        self,
        client: Client,
        document: DocumentRef,
        source_type: str = "whatsapp",
        source_id: str | None = None,
    ) -> IngestionResult:
        """Ingest a chat attachment.

        Args:
            client: Resolved sender
            document: Attachment reference from the webhook payload
            source_type: Intake channel stored on the invoice
            source_id: Provider message id

        Returns:
            IngestionResult

        Raises:
            DocumentDownloadError: If the attachment cannot be fetched
            StorageWriteError: If configured storage fails
        """
        content = await self.download(document.url)
        return await self.ingest_bytes(
            client,
            content,
            filename=document.filename,
            mimetype=document.mimetype,
            source_type=source_type,
            source_id=source_id,
        )

    async def ingest_bytes(
        self,
        client: Client,
        content: bytes,
        filename: str,
        mimetype: str | None,
        source_type: str = "upload",
        source_id: str | None = None,
        notify: bool = True,
    ) -> IngestionResult:
        """Ingest document bytes already in hand.

        Args:
            client: Owning client
            content: Document bytes
            filename: Original filename
            mimetype: Declared content type
            source_type: Intake channel stored on the invoice
            source_id: Channel-specific reference
            notify: Send duplicate/acknowledgement messages to the client

        Returns:
            IngestionResult

        Raises:
            StorageWriteError: If configured storage fails
        """
        metrics.document_size_bytes.observe(len(content))
        file_hash = fingerprint(content)

        existing = self.repository.find_invoice_by_hash(client.firm_id, client.id, file_hash)
        if existing is not None:
            logger.info(f"Duplicate document from client {client.id}, matches invoice {existing.id}")
            return self._duplicate(client, source_type, existing.id, notify)

        object_name = self._store(client, content, filename, mimetype)
        raw_text = self.extractor.extract(content, mimetype)

        try:
            invoice = self.repository.create_invoice(
                firm_id=client.firm_id,
                client_id=client.id,
                source_type=source_type,
                source_id=source_id,
                file_path=object_name,
                file_name=filename,
                file_type=mimetype or "application/octet-stream",
                file_size_bytes=len(content),
                file_hash=file_hash,
                raw_text=raw_text or None,
                status="processing",
            )
        except DuplicateInvoiceError as e:
            logger.info(f"Concurrent duplicate for client {client.id}, invoice {e.existing_id}")
            return self._duplicate(client, source_type, e.existing_id, notify)

        metrics.invoices_ingested_total.labels(source=source_type, result="created").inc()
        logger.info(f"Created invoice {invoice.id} for client {client.id} ({filename})")

        self._audit(invoice, source_type)
        await self._enqueue(invoice)

        if notify:
            self.notifier.send_text(
                client.whatsapp_number,
                messages.invoice_received_message(filename, invoice.id),
            )

        return IngestionResult(invoice_id=invoice.id, file_path=object_name)

    async def _enqueue(self, invoice: Invoice) -> None:
        try:
            await self.queue.enqueue(invoice.id)
        except Exception as e:
            logger.exception(f"Failed to queue analysis for invoice {invoice.id}")
            self.dead_letters.record(invoice, e)

    def _duplicate(
        self,
        client: Client,
        source_type: str,
        existing_id: str | None,
        notify: bool,
    ) -> IngestionResult:
        metrics.invoices_ingested_total.labels(source=source_type, result="duplicate").inc()
        if notify:
            self.notifier.send_text(client.whatsapp_number, messages.duplicate_invoice_message())
        return IngestionResult(duplicate=True, invoice_id=existing_id)

    def _store(self, client: Client, content: bytes, filename: str, mimetype: str | None) -> str:
        object_name = build_invoice_object_name(client.firm_id, client.id, filename)

        if not self.storage.is_available():
            logger.warning(f"Object storage disabled; original of {object_name} is not persisted")
            return object_name

        result = self.storage.upload_bytes(content, object_name, content_type=mimetype)
        if not result.success:
            raise StorageWriteError(f"Failed to store {object_name}: {result.error}")
        return object_name

    def _audit(self, invoice: Invoice, source_type: str) -> None:
        try:
            self.repository.add_audit_log(
                firm_id=invoice.firm_id,
                client_id=invoice.client_id,
                action_type="create",
                resource_type="invoice",
                resource_id=invoice.id,
                metadata={"source": source_type, "filename": invoice.file_name},
            )
        except Exception as e:
            logger.warning(f"Audit log for invoice {invoice.id} failed: {e}")

    async def close(self) -> None:
        await self._http.aclose()
