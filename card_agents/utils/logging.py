"""Structured logging for the card agents runtime.

Call :func:`setup_logging` once from whatever embeds the runtime. Watchers
and log streams bind the card they serve through :func:`bind_card`, so
every event they emit can be traced back to a Trello card.
"""

import logging
import logging.handlers
import sys
from pathlib import Path

import structlog

from .._version import __version__
from ..config import LoggingConfig, settings

QUIET_LOGGERS = ("httpx", "httpcore", "kubernetes", "urllib3")


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    """Configure structlog on top of the standard library logger.

    Args:
        level: Overrides ``settings.log_level``
        log_format: Overrides ``settings.log_format`` (json or console)
    """
    config = settings.logging
    level_value = getattr(logging, level.upper(), logging.INFO) if level else config.level_value
    log_format = (log_format or config.format).lower()

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level_value)

    structlog.configure(
        processors=[*_shared_processors(), _renderer(log_format)],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if config.file:
        _add_file_handler(config, log_format, level_value)

    configure_third_party_loggers()


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]


def _renderer(log_format: str):
    if log_format == "console":
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def _add_file_handler(config: LoggingConfig, log_format: str, level: int) -> logging.Handler:
    """Attach a size-rotated file handler to the root logger."""
    log_path = Path(config.file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        filename=log_path,
        maxBytes=config.max_bytes,
        backupCount=config.backup_count,
        encoding="utf-8",
    )
    if log_format == "json":
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    handler.setLevel(level)

    logging.getLogger().addHandler(handler)
    return handler


def configure_third_party_loggers() -> None:
    # Every watch reconnect is an HTTP request; keep them out of INFO
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def add_service_context(logger, method_name, event_dict):
    """Stamp each event with the service name and version."""
    event_dict.setdefault("service", "card-agents")
    event_dict.setdefault("version", __version__)
    return event_dict


def bind_card(card_id: str, **extra) -> None:
    """Attach ``card_id`` to every event logged from the current context."""
    structlog.contextvars.bind_contextvars(card_id=card_id, **extra)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance."""
    return structlog.get_logger(name)
