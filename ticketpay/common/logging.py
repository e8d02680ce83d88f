"""Structured JSON logging for the payments service.

Every record carries the service name plus the correlation fields below,
read from context variables so that concurrent requests and worker threads
never see each other's values. Code binds them with `log_context`.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from ticketpay.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
payment_id_ctx: ContextVar[str] = ContextVar("payment_id", default="")
idempotency_key_ctx: ContextVar[str] = ContextVar("idempotency_key", default="")

CONTEXT_FIELDS: dict[str, ContextVar[str]] = {
    "trace_id": trace_id_ctx,
    "payment_id": payment_id_ctx,
    "idempotency_key": idempotency_key_ctx,
}


@contextmanager
def log_context(**fields):
    """Bind correlation fields for the duration of the block.

    Unknown field names raise `ValueError`. `None` leaves a field unchanged.
    """

    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise ValueError(f"unknown log context fields: {sorted(unknown)}")
    tokens = [
        (CONTEXT_FIELDS[name], CONTEXT_FIELDS[name].set(str(value)))
        for name, value in fields.items()
        if value is not None
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class ContextFilter(logging.Filter):
    """Stamp the service name and bound correlation fields onto records.

    Values passed explicitly through `extra=` win over the bound ones.
    """

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self.service_name
        for name, var in CONTEXT_FIELDS.items():
            if not getattr(record, name, ""):
                setattr(record, name, var.get())
        return True


def build_handler(service_name: str, stream=None) -> logging.Handler:
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.addFilter(ContextFilter(service_name))
    names = ("asctime", "levelname", "name", "service_name", *CONTEXT_FIELDS)
    fields = " ".join(f"%({name})s" for name in names)
    handler.setFormatter(
        JsonFormatter(
            f"{fields} %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        )
    )
    return handler


def configure_logging(level: str | None = None, service_name: str | None = None) -> None:
    """Route every logger through one JSON handler on stdout.

    Defaults come from settings. Calling it again replaces the handler.
    """

    root = logging.getLogger()
    root.handlers = [build_handler(service_name or settings.service_name)]
    root.setLevel(level or settings.log_level)


logger = logging.getLogger("ticketpay")
