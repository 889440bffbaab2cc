from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Literal, Optional, cast

import structlog
from loguru import logger as loguru_logger
from structlog.exceptions import DropEvent
from structlog.stdlib import BoundLogger
from structlog.typing import EventDict, WrappedLogger

from intune_assignments.config.settings import log_dir


LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {message} | {extra}"
DEFAULT_LOG_FILENAME = "intune-assignments.log"


@dataclass(slots=True)
class LoggingOptions:
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False
    rotation: str = "10 MB"
    retention: str = "14 days"
    serialize: bool = False
    console: bool = True
    log_path: Optional[Path] = None


_configured_log_path: Optional[Path] = None
_is_configured = False


def configure_logging(options: LoggingOptions | None = None) -> Path:
    """Route structlog events into loguru console and rotating file sinks."""

    global _configured_log_path, _is_configured

    opts = options or LoggingOptions()

    console_level = "DEBUG" if opts.debug else opts.level
    log_path = opts.log_path or (log_dir() / DEFAULT_LOG_FILENAME)

    loguru_logger.remove()
    if opts.console:
        loguru_logger.add(
            sys.stderr,
            level=console_level,
            colorize=True,
            backtrace=opts.debug,
            diagnose=opts.debug,
            format=LOG_FORMAT,
        )

    # JSON lines when serialize is set, so bulk runs can be audited afterwards.
    loguru_logger.add(
        log_path,
        level="DEBUG",
        rotation=opts.rotation,
        retention=opts.retention,
        encoding="utf-8",
        serialize=opts.serialize,
        format=LOG_FORMAT,
    )

    numeric_level = getattr(logging, console_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            _log_to_loguru,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )

    _configured_log_path = log_path
    _is_configured = True
    return log_path


def _log_to_loguru(
    _: WrappedLogger,
    __: str,
    event_dict: EventDict,
) -> EventDict:
    level = str(event_dict.pop("level", "INFO")).upper()
    event = event_dict.pop("event", "")
    timestamp = event_dict.pop("timestamp", None)
    exception = event_dict.pop("exception", None)
    bound = loguru_logger.bind(**event_dict)
    if timestamp:
        bound = bound.bind(timestamp=timestamp)
    if exception:
        event = f"{event}\n{exception}"
    bound.opt(depth=6).log(level, event)
    raise DropEvent


def get_logger(*initial_values: object, **initial_kw: object) -> BoundLogger:
    log = structlog.get_logger(*initial_values, **initial_kw)
    if not _is_configured:
        configure_logging()
    return cast(BoundLogger, log)


@contextmanager
def bind_operation_context(operation_id: str, **values: object) -> Iterator[None]:
    """Tag every log line emitted inside the block with the bulk operation id."""

    tokens = structlog.contextvars.bind_contextvars(operation_id=operation_id, **values)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


def log_file_path() -> Path:
    if _configured_log_path is None:
        return configure_logging()
    return _configured_log_path


__all__ = [
    "LoggingOptions",
    "bind_operation_context",
    "configure_logging",
    "get_logger",
    "log_file_path",
]
