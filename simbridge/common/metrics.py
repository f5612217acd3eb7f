"""Prometheus metric definitions shared across pipeline stages."""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response


emails_received_total = Counter(
    "emails_received_total",
    "Inbound mailbox messages by outcome",
    ["outcome"],
)
orders_upserted_total = Counter("orders_upserted_total", "Orders written by the order store")
order_items_skipped_total = Counter(
    "order_items_skipped_total",
    "Order items rejected by validation",
    ["reason"],
)
sync_attempts_total = Counter(
    "sync_attempts_total",
    "External delivery attempts recorded in the sync ledger",
    ["target_service", "status"],
)
duplicate_sync_skipped_total = Counter(
    "duplicate_sync_skipped_total",
    "Deliveries skipped because the ledger already holds SUCCESS",
    ["target_service"],
)
finalize_outcomes_total = Counter(
    "finalize_outcomes_total",
    "Finalize pipeline results per eSIM record",
    ["outcome"],
)
otp_events_total = Counter("otp_events_total", "OTP lifecycle events", ["event"])
retries_total = Counter("retries_total", "Retry driver re-invocations", ["stage", "result"])
external_call_seconds = Histogram(
    "external_call_seconds",
    "Latency of calls to external collaborators",
    ["dependency"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
