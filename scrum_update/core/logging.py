"""
Structured logging setup using structlog.

Console output in development, JSON in production. Request-scoped values
(request id, user id) are carried through contextvars.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from scrum_update.core.config import settings

# Keys whose values never reach log output
SENSITIVE_KEYS = frozenset({"access_token", "refresh_token", "authorization", "password"})

NOISY_LOGGERS = (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "sqlalchemy.engine",
    "aiosqlite",
    "asyncio",
)


def add_app_context(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application name and environment to every entry."""
    event_dict.setdefault("app", settings.app_name)
    event_dict.setdefault("env", settings.app_env)
    return event_dict


def redact_sensitive(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def _build_renderer() -> Processor:
    if settings.is_development:
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def setup_logging() -> None:
    """
    Configure structlog on top of the standard library root logger.

    Records from third-party libraries go through the same formatter, so
    uvicorn and SQLAlchemy lines share the format of application lines.
    """
    log_level = getattr(logging, settings.log_level, logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_app_context,
        redact_sensitive,
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                _build_renderer(),
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if settings.database.echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, usually ``get_logger(__name__)``."""
    return structlog.get_logger(name)


class LogContext:
    """
    Bind values to every log line emitted inside the block.

        with LogContext(request_id="req_1a2b3c4d", session_id=7):
            logger.info("Scrum draft stored")
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> "LogContext":
        self._tokens = structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)


def bind_context(**kwargs: Any) -> None:
    """Bind values for the rest of the current context (e.g. the caller's user id)."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
