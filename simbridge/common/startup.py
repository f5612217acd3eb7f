"""Startup-time helpers for safe config logging."""

from simbridge.common.config import Settings
from simbridge.common.logging import logger


def _safe_value(name: str, value) -> str:
    """Return a printable value with simple redaction for secret-like fields."""

    if value is None or value == "":
        return "<unset>"
    if any(secret in name.upper() for secret in ["KEY", "SECRET", "PASSWORD", "TOKEN"]):
        return "<redacted>"
    if name == "database_url" and "@" in str(value):
        # Keep driver and host, drop credentials.
        scheme, _, rest = str(value).partition("://")
        return f"{scheme}://<redacted>@{rest.split('@', 1)[1]}"
    return str(value)


def log_startup_config(settings: Settings, keys: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    config = {"service": settings.service_name}
    for key in keys:
        config[key] = _safe_value(key, getattr(settings, key, None))
    logger.info("startup_config=%s", config)
