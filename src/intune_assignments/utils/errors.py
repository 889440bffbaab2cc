from __future__ import annotations

import asyncio
import errno
import socket
from dataclasses import dataclass
from enum import Enum

import httpx

from intune_assignments.graph.errors import GraphAPIError, GraphErrorCategory


class ErrorSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(slots=True)
class ErrorDescriptor:
    headline: str
    detail: str
    severity: ErrorSeverity = ErrorSeverity.ERROR
    transient: bool = False
    suggestion: str | None = None
    category: str = GraphErrorCategory.UNKNOWN.value

    @property
    def summary(self) -> str:
        return f"{self.headline} {self.detail}".strip()


_NETWORK_ERRNOS = {
    getattr(socket, "EAI_AGAIN", None),
    getattr(socket, "EAI_FAIL", None),
    getattr(socket, "EAI_NONAME", None),
    errno.EHOSTUNREACH,
    errno.ENETDOWN,
    errno.ENETUNREACH,
    errno.ECONNREFUSED,
    errno.ECONNRESET,
    errno.ETIMEDOUT,
}
_NETWORK_ERRNOS.discard(None)


def describe_exception(error: BaseException) -> ErrorDescriptor:
    """Translate an exception into the detail recorded on a failed assignment."""

    descriptor = ErrorDescriptor(
        headline="Assignment failed.",
        detail=f"{type(error).__name__}: {error}",
        severity=ErrorSeverity.ERROR,
        transient=False,
    )

    graph_error = _locate_graph_error(error)
    if graph_error is not None:
        descriptor.detail = _format_graph_detail(graph_error)
        descriptor.suggestion = graph_error.recovery_suggestion
        descriptor.transient = graph_error.is_retriable
        descriptor.category = graph_error.category.value
        if graph_error.is_retriable:
            descriptor.severity = ErrorSeverity.WARNING
        descriptor.headline = _graph_headline(graph_error)
        return descriptor

    root = _unwrap_error(error)

    if isinstance(root, httpx.TimeoutException) or isinstance(root, asyncio.TimeoutError):
        descriptor.headline = "Timed out waiting for Microsoft Graph."
        descriptor.detail = f"{type(root).__name__}: {root}".rstrip(": ")
        descriptor.severity = ErrorSeverity.WARNING
        descriptor.transient = True
        descriptor.category = GraphErrorCategory.TIMEOUT.value
        descriptor.suggestion = "Retry the assignment after verifying connectivity."
        return descriptor

    if isinstance(root, socket.gaierror):
        descriptor.headline = "DNS lookup failed while contacting Microsoft Graph."
        descriptor.detail = f"socket.gaierror: {root}"
        descriptor.severity = ErrorSeverity.WARNING
        descriptor.transient = True
        descriptor.category = GraphErrorCategory.NETWORK.value
        descriptor.suggestion = "Verify internet connectivity or DNS configuration."
        return descriptor

    if isinstance(root, OSError) and getattr(root, "errno", None) in _NETWORK_ERRNOS:
        descriptor.headline = "Network connection issue encountered."
        descriptor.detail = f"OSError[{root.errno}]: {root.strerror}"
        descriptor.severity = ErrorSeverity.WARNING
        descriptor.transient = True
        descriptor.category = GraphErrorCategory.NETWORK.value
        descriptor.suggestion = "Retry once your connection is stable."
        return descriptor

    return descriptor


def is_transient(error: BaseException) -> bool:
    return describe_exception(error).transient


def is_timeout(error: BaseException) -> bool:
    graph_error = _locate_graph_error(error)
    if graph_error is not None:
        return graph_error.category is GraphErrorCategory.TIMEOUT
    root = _unwrap_error(error)
    return isinstance(root, (asyncio.TimeoutError, httpx.TimeoutException))


def _locate_graph_error(error: BaseException) -> GraphAPIError | None:
    current: BaseException | None = error
    visited: set[int] = set()
    while current is not None and id(current) not in visited:
        visited.add(id(current))
        if isinstance(current, GraphAPIError):
            return current
        current = current.__cause__ or current.__context__
    return None


def _unwrap_error(error: BaseException) -> BaseException:
    current = error
    visited: set[int] = set()
    while True:
        visited.add(id(current))
        inner: BaseException | None = None
        if isinstance(current, GraphAPIError) and current.inner_error is not None:
            inner = current.inner_error
        elif current.__cause__ is not None:
            inner = current.__cause__
        elif current.__context__ is not None:
            inner = current.__context__
        # wait_for chains TimeoutError onto the CancelledError of the inner task.
        if inner is None or id(inner) in visited or isinstance(inner, asyncio.CancelledError):
            return current
        current = inner


def _graph_headline(error: GraphAPIError) -> str:
    match error.category:
        case GraphErrorCategory.RATE_LIMIT:
            return "Microsoft Graph throttled the request."
        case GraphErrorCategory.NETWORK:
            return "Network issue contacting Microsoft Graph."
        case GraphErrorCategory.TIMEOUT:
            return "Timed out waiting for Microsoft Graph."
        case GraphErrorCategory.AUTHENTICATION:
            return "Authentication is required to call Microsoft Graph."
        case GraphErrorCategory.PERMISSION:
            return "Insufficient permissions."
        case GraphErrorCategory.NOT_FOUND:
            return "App or group not found."
        case GraphErrorCategory.CONFLICT:
            return "The assignment conflicts with existing data."
        case GraphErrorCategory.VALIDATION:
            return "Invalid request."
        case GraphErrorCategory.SERVER:
            return "Microsoft Graph is temporarily unavailable."
        case _:
            return "Microsoft Graph request failed."


def _format_graph_detail(error: GraphAPIError) -> str:
    if error.code:
        return f"{error.code}: {error}"
    return str(error)


__all__ = [
    "ErrorDescriptor",
    "ErrorSeverity",
    "describe_exception",
    "is_timeout",
    "is_transient",
]
