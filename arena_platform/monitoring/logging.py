"""
Structured logging for the arena platform.

structlog renders every event as one JSON line on stdout, carrying the
request context bound by the API middleware plus the service name,
environment and version. Phone numbers, checksums, signatures and
gateway credentials are masked before rendering.
"""
import logging
import sys
from typing import Any, Dict, FrozenSet

import structlog
from pythonjsonlogger import jsonlogger

from arena_platform import __version__
from arena_platform.config import Settings, get_settings

REDACTED_FIELDS: FrozenSet[str] = frozenset(
    {
        "phone_number",
        "customer_phone",
        "checksum",
        "signature",
        "signature_header",
        "token",
        "api_key",
        "authorization",
    }
)


def mask_value(value: Any, visible: int = 3) -> str:
    """Keep the last ``visible`` characters; short values are fully masked."""
    text = str(value)
    if len(text) <= visible * 2:
        return "*" * len(text)
    return "*" * (len(text) - visible) + text[-visible:]


def redact_sensitive_fields(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    for key, value in event_dict.items():
        if value is not None and key.lower() in REDACTED_FIELDS:
            event_dict[key] = mask_value(value)
    return event_dict


def service_context_processor(settings: Settings) -> Any:
    """Processor stamping each event with service name, environment and version."""
    context = {
        "service": settings.app_name,
        "app_env": settings.app_env,
        "version": __version__,
    }

    def add_service_context(
        logger: Any, method_name: str, event_dict: Dict[str, Any]
    ) -> Dict[str, Any]:
        for key, value in context.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_service_context


def setup_logging(settings: Settings | None = None) -> None:
    """
    Configure structlog and the stdlib root handler.

    Third-party loggers named in ``quiet_loggers`` are held at WARNING so
    gateway HTTP chatter and SQL echo stay out of the request log.
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            service_context_processor(settings),
            redact_sensitive_fields,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
        )
    )
    root_logger.addHandler(handler)

    for name in settings.get_quiet_loggers():
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        quiet_loggers=settings.get_quiet_loggers(),
    )
