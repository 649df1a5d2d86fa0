"""structlog configuration for the service.

JSON lines in production, a console renderer when ``debug`` is set. Stdlib
loggers (uvicorn, the OCR client) share the same formatter, and every entry
carries the request id and user id of the HTTP request being served.
"""

import logging
import sys
from contextvars import ContextVar

import structlog

from buck.config import get_settings

# Set by ObservabilityMiddleware for the duration of a request.
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)

_REQUEST_FIELDS = (("request_id", request_id_var), ("user_id", user_id_var))

# Per-request chatter from the HTTP, S3 and SQL clients.
_QUIET_LOGGERS = ("httpx", "httpcore", "botocore", "uvicorn.access", "sqlalchemy.engine")


def _add_request_fields(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    """Copy the request and user ids into the event unless already bound."""
    for key, var in _REQUEST_FIELDS:
        value = var.get()
        if value is not None:
            event_dict.setdefault(key, value)
    return event_dict


def setup_logging() -> None:
    """Route structlog and stdlib logging through one stdout handler. Idempotent."""
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_request_fields,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.debug
        else structlog.processors.JSONRenderer()
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
