"""Worker process entry point: mailbox loops plus the admin HTTP surface.

Run with `uvicorn simbridge.services.worker.main:app`.
"""

from simbridge.bootstrap import build_components, build_worker
from simbridge.common.config import Settings
from simbridge.common.logging import configure_logging
from simbridge.common.startup import log_startup_config
from simbridge.common.tracing import instrument_app, setup_tracing
from simbridge.services.worker.api import create_app

settings = Settings()
configure_logging(settings.service_name, settings.log_level)
setup_tracing(settings.service_name, settings.otel_exporter_otlp_endpoint)
log_startup_config(
    settings,
    [
        "database_url",
        "fulfillment_provider",
        "fulfillment_base_url",
        "fulfillment_api_key",
        "upload_provider",
        "upload_base_url",
        "imap_host",
        "imap_user",
        "imap_password",
        "pdf_output_dir",
        "poll_interval_seconds",
        "retry_interval_seconds",
    ],
)
components = build_components(settings)
app = create_app(components, build_worker(components))
instrument_app(app)
