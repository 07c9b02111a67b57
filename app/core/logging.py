"""
core/logging.py
---------------
Structured logging using structlog.
DEBUG=true  → human-readable console output
DEBUG=false → JSON (for log aggregators like Datadog, CloudWatch)

Every line carries the request context bound by the tenant gate (path,
method, tenant_id). Notification events name their recipients; the local
part of any email address is masked before a line is rendered.
"""

import logging
import re
import sys
from typing import Any

import structlog

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "asyncio")

EMAIL_PATTERN = re.compile(r"\b([A-Za-z0-9._%+-]+)@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")


def _mask_emails(value: Any) -> Any:
    if isinstance(value, str):
        return EMAIL_PATTERN.sub(lambda m: f"{m.group(1)[:1]}***@{m.group(2)}", value)
    if isinstance(value, dict):
        return {k: _mask_emails(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_mask_emails(v) for v in value]
    return value


def redact_email_addresses(logger, method_name: str, event_dict: dict) -> dict:
    """structlog processor: 'jane.doe@harvard.edu' → 'j***@harvard.edu'."""
    return {key: _mask_emails(value) for key, value in event_dict.items()}


def configure_logging(debug: bool = False) -> None:
    log_level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    if not debug:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_email_addresses,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__):
    return structlog.get_logger(name)


def bind_request_context(**values) -> None:
    """Attach request-scoped values (tenant id, path) to every log line."""
    structlog.contextvars.bind_contextvars(**values)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
