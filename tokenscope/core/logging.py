"""
core/logging.py
---------------
Structured logging using structlog.
DEBUG=true  → human-readable console output
DEBUG=false → JSON (for log aggregators)

Every request starts with a clean contextvars scope (see main.py); once the
bearer token is resolved, bind_caller() attaches token_id / tenant_id so all
later events of that request carry them.
"""

import logging
import sys
from typing import Any, Optional

import structlog

from tokenscope.core.config import settings

# Event keys whose values are bearer secrets; only a display prefix survives
SECRET_KEYS = frozenset({"token", "authorization", "credentials"})
VISIBLE_PREFIX = 8


def redact_secrets(logger: Any, method_name: str, event_dict: dict) -> dict:
    for key in SECRET_KEYS & event_dict.keys():
        value = event_dict[key]
        if isinstance(value, str) and value:
            event_dict[key] = value[:VISIBLE_PREFIX] + "…"
    return event_dict


def configure_logging() -> None:
    log_level = logging.DEBUG if settings.DEBUG else logging.INFO

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    if not settings.DEBUG:
        for noisy in ("uvicorn.access", "sqlalchemy.engine", "aiosqlite"):
            logging.getLogger(noisy).setLevel(logging.WARNING)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        redact_secrets,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.DEBUG
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def start_request_scope(**values: Any) -> None:
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)


def bind_caller(token_id: str, principal_id: int, tenant_id: Optional[int]) -> None:
    structlog.contextvars.bind_contextvars(
        token_id=token_id, principal_id=principal_id, tenant_id=tenant_id
    )


def get_logger(name: str = __name__):
    return structlog.get_logger(name)
