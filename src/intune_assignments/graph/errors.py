from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class GraphErrorCategory(str, Enum):
    PERMISSION = "permission"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTHENTICATION = "authentication"
    SERVER = "server"
    UNKNOWN = "unknown"


_TRANSIENT_CATEGORIES = {
    GraphErrorCategory.RATE_LIMIT,
    GraphErrorCategory.NETWORK,
    GraphErrorCategory.TIMEOUT,
    GraphErrorCategory.SERVER,
}


@dataclass(slots=True)
class GraphAPIError(Exception):
    message: str
    category: GraphErrorCategory = GraphErrorCategory.UNKNOWN
    status_code: int | None = None
    code: str | None = None
    retry_after: str | None = None
    inner_error: Exception | None = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.message

    @property
    def recovery_suggestion(self) -> str | None:
        if self.category is GraphErrorCategory.AUTHENTICATION:
            return "Sign out and sign back in with an account that has access."
        if self.category is GraphErrorCategory.PERMISSION:
            return "Request DeviceManagementApps.ReadWrite.All from your administrator."
        if self.category is GraphErrorCategory.RATE_LIMIT:
            if self.retry_after:
                return f"Microsoft Graph throttled the request. Retry after {self.retry_after} seconds."
            return "Microsoft Graph throttled the request. Retry with exponential backoff."
        if self.category in {GraphErrorCategory.NETWORK, GraphErrorCategory.TIMEOUT}:
            return "Check your internet connection and try again."
        if self.category is GraphErrorCategory.NOT_FOUND:
            return "The app or group no longer exists. Refresh and reselect it."
        if self.category is GraphErrorCategory.CONFLICT:
            return "The assignment conflicts with existing data. Refresh and verify the latest state."
        if self.category is GraphErrorCategory.VALIDATION:
            return "Microsoft Graph rejected the assignment payload. Review intent and settings."
        return None

    @property
    def is_retriable(self) -> bool:
        if self.category in _TRANSIENT_CATEGORIES:
            return True
        if self.status_code and 500 <= self.status_code <= 599:
            return True
        return False


class RateLimitError(GraphAPIError):
    def __init__(
        self, message: str = "Rate limited", retry_after: str | None = None
    ) -> None:
        super().__init__(
            message=message,
            category=GraphErrorCategory.RATE_LIMIT,
            status_code=429,
            retry_after=retry_after,
        )


class RequestTimeoutError(GraphAPIError):
    def __init__(
        self,
        message: str = "Timed out waiting for Microsoft Graph",
        inner_error: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=GraphErrorCategory.TIMEOUT,
            inner_error=inner_error,
        )


class AuthenticationError(GraphAPIError):
    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(
            message=message,
            category=GraphErrorCategory.AUTHENTICATION,
            status_code=401,
        )


class PermissionError(GraphAPIError):
    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(
            message=message,
            category=GraphErrorCategory.PERMISSION,
            status_code=403,
        )


class NotFoundError(GraphAPIError):
    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(
            message=message,
            category=GraphErrorCategory.NOT_FOUND,
            status_code=404,
        )


class TransientRemoteError(GraphAPIError):
    """Remote failure that may succeed on retry (5xx, dropped connection)."""

    def __init__(
        self, message: str = "Transient Microsoft Graph failure", status_code: int | None = None
    ) -> None:
        super().__init__(
            message=message,
            category=GraphErrorCategory.SERVER,
            status_code=status_code,
        )


class PermanentRemoteError(GraphAPIError):
    """Remote failure that a retry will not change (bad request and similar)."""

    def __init__(
        self,
        message: str = "Microsoft Graph rejected the request",
        status_code: int | None = 400,
        category: GraphErrorCategory = GraphErrorCategory.VALIDATION,
    ) -> None:
        super().__init__(message=message, category=category, status_code=status_code)

    @property
    def is_retriable(self) -> bool:
        return False


__all__ = [
    "GraphAPIError",
    "GraphErrorCategory",
    "RateLimitError",
    "RequestTimeoutError",
    "AuthenticationError",
    "PermissionError",
    "NotFoundError",
    "TransientRemoteError",
    "PermanentRemoteError",
]
