"""
Structured logging configuration with structlog.

JSON lines in production, console output elsewhere. Visitor addresses
never reach the log stream: the `scrub_addresses` processor drops them
from every event before rendering.
"""
import logging
import sys

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from horizn.core.config import Settings

# Event keys that could carry a raw visitor address
ADDRESS_KEYS = frozenset({"ip", "client_ip", "peer", "remote_addr", "x_forwarded_for"})


def scrub_addresses(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for key in ADDRESS_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def configure_logging(settings: Settings) -> None:
    """Configure structlog and the stdlib root logger for `settings`."""
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        scrub_addresses,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.environment == "production":
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=settings.environment == "development"),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )

    # Beacon traffic makes per-request access lines useless
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("arq.worker").setLevel(logging.INFO)
    if not settings.database_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
