"""Prometheus metrics for the invoice pipeline.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- Request duration histograms
- Webhook outcomes and ingestion results
- Analysis outcomes, duration and dead letters
- Notification delivery

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Intake metrics
webhook_events_total = Counter(
    "webhook_events_total",
    "Inbound chat webhook events",
    ["outcome"],  # ignored, invalid_signature, malformed, unknown_sender, document, duplicate, text, other, error
)

invoices_ingested_total = Counter(
    "invoices_ingested_total",
    "Documents accepted by the ingestion stage",
    ["source", "result"],  # result: created, duplicate
)

document_size_bytes = Histogram(
    "invoice_document_size_bytes",
    "Ingested document size in bytes",
    buckets=(1024, 10240, 102400, 1048576, 10485760),  # 1KB to 10MB
)

# Analysis metrics
analysis_total = Counter(
    "invoice_analysis_total",
    "Completed analysis runs",
    ["provider", "status"],  # status: analyzed, error
)

analysis_duration_seconds = Histogram(
    "invoice_analysis_duration_seconds",
    "End-to-end analysis duration in seconds",
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0),
)

alerts_created_total = Counter(
    "alerts_created_total",
    "Alerts derived from analysis issues",
    ["severity"],
)

dead_letters_total = Counter(
    "analysis_dead_letters_total",
    "Analyses routed to the dead-letter queue",
)

# Notification metrics
notifications_total = Counter(
    "notifications_total",
    "Outbound chat notifications",
    ["status"],  # sent, logged, failed, skipped
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
