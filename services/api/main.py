"""FastAPI application for invoice intake and review.

Production-ready API with:
- Health and readiness checks for Kubernetes
- Signed chat webhook intake
- Direct document upload for firm users
- Invoice status polling and alert resolution
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from arq import create_pool
from arq.connections import RedisSettings
from fastapi import (
    FastAPI,
    File,
    Form,
    Header,
    HTTPException,
    Request,
    Response,
    UploadFile,
    status,
)
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from services.api import metrics
from services.db.repository import AlertAlreadyResolvedError, AlertNotFoundError
from services.ingestion.service import IngestionService, StorageWriteError
from services.queue.dispatch import AnalysisQueue, ArqAnalysisQueue, LocalAnalysisQueue
from services.shared.config import Settings, get_settings
from services.shared.container import ServiceContainer
from services.webhooks.handler import WebhookHandler
from services.webhooks.signature import SIGNATURE_HEADER, SignatureVerifier

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


class UploadResponse(BaseModel):
    """Invoice upload response."""

    received: bool = True
    duplicate: bool = False
    invoice_id: str | None = None


class AlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    severity: str
    category: str
    title: str
    description: str
    suggested_action: str | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    resolution_notes: str | None = None


class AnalysisSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    llm_provider: str
    llm_model: str
    compliance_score: float
    risk_level: str
    confidence_score: float
    iva_validation: dict[str, Any]
    recoverable_tax: dict[str, Any] | None = None


class InvoiceStatusResponse(BaseModel):
    """Invoice processing status with latest analysis and alerts."""

    invoice_id: str
    status: str
    file_name: str
    file_type: str
    source_type: str
    created_at: datetime
    analysis: AnalysisSummary | None = None
    alerts: list[AlertResponse] = Field(default_factory=list)


class ResolveAlertRequest(BaseModel):
    resolved_by: str = Field(min_length=1)
    resolution_notes: str | None = None


async def create_queue(settings: Settings, container: ServiceContainer) -> AnalysisQueue:
    """Create the analysis hand-off for this process.

    Args:
        settings: Application settings
        container: Shared services (the local queue runs its orchestrator)

    Returns:
        arq-backed queue if enabled, otherwise an in-process queue
    """
    if settings.queue_enabled:
        pool = await create_pool(RedisSettings.from_dsn(settings.redis_url))
        logger.info(f"Analysis jobs will be queued on Redis: {settings.redis_url}")
        return ArqAnalysisQueue(pool)

    logger.warning("Queue disabled; analyses run in-process")
    return LocalAnalysisQueue(container.orchestrator)


def create_app(
    settings: Settings | None = None,
    container: ServiceContainer | None = None,
    queue: AnalysisQueue | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Application settings (defaults to environment)
        container: Prebuilt services; built at startup when omitted
        queue: Analysis hand-off; chosen from settings when omitted

    Returns:
        Configured FastAPI app
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        services = container or ServiceContainer.build(settings)
        analysis_queue = queue or await create_queue(settings, services)
        ingestion = IngestionService(
            settings,
            services.repository,
            services.storage,
            services.extractor,
            services.notifier,
            analysis_queue,
            services.dead_letters,
        )

        app.state.container = services
        app.state.queue = analysis_queue
        app.state.ingestion = ingestion
        app.state.webhook_handler = WebhookHandler(
            SignatureVerifier(settings),
            services.repository,
            ingestion,
            services.notifier,
        )
        logger.info(f"{settings.service_name} {settings.service_version} started")

        yield

        await analysis_queue.close()
        await ingestion.close()
        if container is None:
            services.close()

    app = FastAPI(
        title="AuditPack Invoice Pipeline",
        description="Invoice intake, compliance analysis and alerting API",
        version=settings.service_version,
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Middleware to collect request metrics.

        Tracks:
        - Request count by method, endpoint, and status
        - Request duration by method and endpoint
        """
        # Skip metrics for /metrics endpoint itself
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        metrics.http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
        ).inc()

        metrics.http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def health_check() -> HealthResponse:
        """Health check endpoint for liveness probe.

        Returns:
            Health status information
        """
        return HealthResponse(
            status="healthy", version=settings.service_version, service=settings.service_name
        )

    @app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
    def readiness_check(request: Request) -> ReadinessResponse:
        """Readiness check endpoint for Kubernetes readiness probe.

        Ready once services are built and the relational store answers.
        """
        services: ServiceContainer | None = getattr(request.app.state, "container", None)
        return ReadinessResponse(ready=bool(services and services.database.health_check()))

    @app.get("/metrics", tags=["Monitoring"])
    def get_metrics() -> Response:
        """Prometheus metrics endpoint.

        Returns:
            Prometheus metrics in text format
        """
        metrics_data, content_type = metrics.get_metrics()
        return Response(content=metrics_data, media_type=content_type)

    @app.post("/api/v1/webhooks/whatsapp", tags=["Webhooks"])
    async def whatsapp_webhook(request: Request) -> JSONResponse:
        """Receive chat events from the messaging provider.

        The raw body is read before parsing so the signature is checked
        against exactly the bytes that were sent.
        """
        raw_body = await request.body()
        handler: WebhookHandler = request.app.state.webhook_handler
        result = await handler.handle(raw_body, request.headers.get(SIGNATURE_HEADER))
        return JSONResponse(status_code=result.status_code, content=result.body)

    @app.post("/api/v1/invoices/upload", response_model=UploadResponse, tags=["Invoices"])
    async def upload_invoice(
        request: Request,
        file: UploadFile = File(..., description="Invoice document (PDF or XML)"),  # noqa: B008
        client_id: str = Form(..., description="Client the invoice belongs to"),
        x_firm_id: str = Header(..., description="Tenant id set by the auth gateway"),
    ) -> UploadResponse:
        """Upload an invoice on behalf of a client.

        ## Error Handling

        - Returns 400 if the file is empty
        - Returns 404 if the client does not belong to the firm
        - Returns 502 if object storage rejects the document
        """
        content = await file.read()
        if not content:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")

        services: ServiceContainer = request.app.state.container
        client = services.repository.get_client(x_firm_id, client_id)
        if client is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")

        ingestion: IngestionService = request.app.state.ingestion
        try:
            result = await ingestion.ingest_bytes(
                client,
                content,
                filename=file.filename or "document",
                mimetype=file.content_type,
                source_type="upload",
                notify=False,
            )
        except StorageWriteError as e:
            logger.error(f"Upload for client {client_id} failed: {e}")
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to store document"
            ) from e

        return UploadResponse(duplicate=result.duplicate, invoice_id=result.invoice_id)

    @app.get(
        "/api/v1/invoices/{invoice_id}",
        response_model=InvoiceStatusResponse,
        tags=["Invoices"],
    )
    def get_invoice(invoice_id: str, request: Request, x_firm_id: str = Header(...)) -> Any:
        """Poll an invoice's processing status."""
        services: ServiceContainer = request.app.state.container
        invoice = services.repository.get_invoice(invoice_id, firm_id=x_firm_id)
        if invoice is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")

        analysis = services.repository.get_latest_analysis(x_firm_id, invoice_id)
        alerts = services.repository.list_alerts(x_firm_id, invoice_id=invoice_id)
        return InvoiceStatusResponse(
            invoice_id=invoice.id,
            status=invoice.status,
            file_name=invoice.file_name,
            file_type=invoice.file_type,
            source_type=invoice.source_type,
            created_at=invoice.created_at,
            analysis=AnalysisSummary.model_validate(analysis) if analysis else None,
            alerts=[AlertResponse.model_validate(alert) for alert in alerts],
        )

    @app.patch(
        "/api/v1/alerts/{alert_id}/resolve",
        response_model=AlertResponse,
        tags=["Alerts"],
    )
    def resolve_alert(
        alert_id: str,
        body: ResolveAlertRequest,
        request: Request,
        x_firm_id: str = Header(...),
    ) -> Any:
        """Resolve an alert once; later attempts are rejected with 409."""
        services: ServiceContainer = request.app.state.container
        try:
            alert = services.repository.resolve_alert(
                x_firm_id, alert_id, body.resolved_by, body.resolution_notes
            )
        except AlertNotFoundError as e:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found"
            ) from e
        except AlertAlreadyResolvedError as e:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT, detail="Alert already resolved"
            ) from e

        logger.info(f"Alert {alert_id} resolved by {body.resolved_by}")
        return AlertResponse.model_validate(alert)

    return app


app = create_app()
