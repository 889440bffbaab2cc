"""Shared utility helpers for the Intune assignment engine."""

from .app_types import AppType, DevicePlatform, platforms_for
from .cancellation import CancellationError, CancellationToken, CancellationTokenSource
from .errors import ErrorDescriptor, ErrorSeverity, describe_exception
from .logging import (
    LoggingOptions,
    bind_operation_context,
    configure_logging,
    get_logger,
    log_file_path,
)

__all__ = [
    "AppType",
    "DevicePlatform",
    "platforms_for",
    "LoggingOptions",
    "bind_operation_context",
    "configure_logging",
    "get_logger",
    "log_file_path",
    "CancellationToken",
    "CancellationTokenSource",
    "CancellationError",
    "ErrorDescriptor",
    "ErrorSeverity",
    "describe_exception",
]
