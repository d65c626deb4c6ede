"""Structured logging configuration using structlog.

Every record carries ISO timestamp, level, logger name and, when set, the
``user_id`` and ``conversation_id`` of the current async context.

Usage:
    from unichat.logging import get_logger, configure_logging

    configure_logging()
    logger = get_logger(__name__)
    logger.info("message_sent", conversation_id=conversation_id)
"""

import logging
import sys
from contextvars import ContextVar

import structlog

user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
conversation_id_var: ContextVar[str | None] = ContextVar("conversation_id", default=None)


def add_chat_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """Inject non-None context variables into the event dict."""
    user_id = user_id_var.get()
    conversation_id = conversation_id_var.get()

    if user_id and "user_id" not in event_dict:
        event_dict["user_id"] = user_id
    if conversation_id and "conversation_id" not in event_dict:
        event_dict["conversation_id"] = conversation_id

    return event_dict


def configure_logging(json_format: bool = True, level: str = "INFO") -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        json_format: If True, output JSON logs. If False, output console-friendly logs.
        level: Root log level name.
    """
    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_chat_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Silence noisy loggers
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger for the given name."""
    return structlog.get_logger(name)


def bind_chat_context(user_id: str | None = None, conversation_id: str | None = None) -> None:
    """Set user / conversation for log records in the current async context."""
    if user_id is not None:
        user_id_var.set(user_id)
    conversation_id_var.set(conversation_id)


def clear_chat_context() -> None:
    user_id_var.set(None)
    conversation_id_var.set(None)
