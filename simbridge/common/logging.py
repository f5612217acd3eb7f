"""Structured JSON logging with order/item context fields."""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter


service_name_ctx: ContextVar[str] = ContextVar("service_name", default="simbridge")
reference_number_ctx: ContextVar[str] = ContextVar("reference_number", default="")
confirmation_code_ctx: ContextVar[str] = ContextVar("confirmation_code", default="")


class ContextFilter(logging.Filter):
    """Inject service and business identifiers into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = service_name_ctx.get()
        record.reference_number = reference_number_ctx.get()
        record.confirmation_code = confirmation_code_ctx.get()
        return True


def configure_logging(service_name: str, log_level: str = "INFO") -> None:
    """Configure root logger once per process."""

    service_name_ctx.set(service_name)
    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    formatter = JsonFormatter(
        "%(asctime)s %(levelname)s %(service_name)s %(reference_number)s %(confirmation_code)s %(message)s"
    )
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)
    root.addFilter(context_filter)


logger = logging.getLogger("simbridge")
