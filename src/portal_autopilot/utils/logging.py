"""Structured logging configuration using structlog."""

import logging
import sys
from typing import Any, Dict, Optional

import structlog
from rich.logging import RichHandler

from portal_autopilot.config import Settings, settings as default_settings

SECRET_SUFFIXES = ("password", "secret", "csrf_token", "token_value")


def redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask values of event keys that look like credentials."""
    for key in list(event_dict):
        if key != "event" and key.lower().endswith(SECRET_SUFFIXES):
            if isinstance(event_dict[key], str) and event_dict[key]:
                event_dict[key] = "***"
    return event_dict


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure structured logging with rich output."""
    settings = settings or default_settings
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
        handlers=[RichHandler(rich_tracebacks=True, markup=True)],
    )

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def log_job_context(ordinal: int, job_id: str, target: str) -> Dict[str, Any]:
    """Create a log context for a batch job."""
    return {
        "job": {
            "ordinal": ordinal,
            "id": job_id,
            "target": target,
        }
    }
