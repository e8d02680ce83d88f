"""Startup-time helpers for safe config logging."""

from ticketpay.common.config import CommonSettings
from ticketpay.common.logging import logger


SECRET_MARKERS = ("key", "secret", "password", "token", "dsn")


def _redact(name: str, value):
    if value is None:
        return "<unset>"
    if any(marker in name for marker in SECRET_MARKERS):
        return "<redacted>"
    return value


def log_startup_config(config: CommonSettings, fields: list[str]) -> None:
    """Log selected settings with secret-looking values redacted."""

    snapshot = {"service": config.service_name}
    for name in fields:
        snapshot[name] = _redact(name, getattr(config, name))
    logger.info("startup_config=%s", snapshot)
