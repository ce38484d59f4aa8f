# logging.py

import logging
import os
from logging.handlers import RotatingFileHandler

import structlog
from structlog.contextvars import merge_contextvars

from Rollkeeper.config import Settings

_OFF = "NONE"


def _level_for(name: str, fallback: int) -> int:
    return getattr(logging, name.upper(), fallback)


def _handler_levels(settings: Settings) -> tuple[str, str]:
    """Return (console, file) level names; "NONE" turns a handler off.

    An explicit per-handler level wins. Otherwise the boolean toggle picks
    between the overall level and off.
    """
    if not settings.logging_enabled:
        return _OFF, _OFF
    overall = settings.logging_level.upper()
    console = settings.logging_console or (overall if settings.logging_to_console else _OFF)
    to_file = settings.logging_file or (overall if settings.logging_to_file else _OFF)
    return console.upper(), to_file.upper()


def _json_formatter() -> structlog.stdlib.ProcessorFormatter:
    # Renders roll events and any stdlib records as one JSON object per line
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.add_log_level,
            merge_contextvars,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=[
            structlog.processors.add_log_level,
            merge_contextvars,
        ],
    )


def _build_handlers(settings: Settings, level: int) -> list[logging.Handler]:
    formatter = _json_formatter()
    console_name, file_name = _handler_levels(settings)
    handlers: list[logging.Handler] = []

    if console_name != _OFF:
        console = logging.StreamHandler()
        console.setLevel(_level_for(console_name, level))
        handlers.append(console)

    if file_name != _OFF:
        path = settings.logging_file_path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        rolling = RotatingFileHandler(
            path,
            maxBytes=settings.logging_max_bytes,
            backupCount=settings.logging_backup_count,
        )
        rolling.setLevel(_level_for(file_name, level))
        handlers.append(rolling)

    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(settings: Settings | None = None) -> None:
    """Route structlog roll events through stdlib logging as JSON.

    Without settings the field defaults apply: INFO, console on, and a
    rotating file at logs/rollkeeper.jsonl.
    """
    settings = settings if settings is not None else Settings()
    level = _level_for(settings.logging_level, logging.INFO)

    logging.captureWarnings(True)
    logging.basicConfig(level=level, handlers=_build_handlers(settings, level), force=True)

    structlog.configure(
        processors=[
            merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
