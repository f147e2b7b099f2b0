"""structlog configuration shared by the library, the CLI and the tests.

Production renders JSON, everything else a human-readable console format.
Credential-like keys are masked before rendering so a stray
``logger.info("...", password=...)`` never reaches the log sink.
"""

from __future__ import annotations

import logging
from typing import Any

import structlog

from src.tenancy.config import Environment, get_settings

SENSITIVE_KEYS = frozenset(
    {
        "password",
        "db_password",
        "api_key",
        "api_key_hash",
        "secret",
        "token",
        "authorization",
        "encryption_key",
    }
)

REDACTED = "***REDACTED***"


def redact_sensitive_keys(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Mask values whose key names look like credentials."""
    for key in list(event_dict):
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
    return event_dict


def configure_structlog() -> None:
    """Configure structlog processors based on environment."""
    settings = get_settings()

    logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL.upper())

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        redact_sensitive_keys,
    ]

    if settings.ENVIRONMENT == Environment.production:
        shared_processors.append(structlog.processors.JSONRenderer())
    else:
        shared_processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
