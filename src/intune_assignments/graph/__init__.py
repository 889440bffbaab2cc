"""Microsoft Graph transport, error taxonomy and rate limiting."""

from .client import GraphAPIVersion, GraphClient, GraphClientConfig
from .errors import (
    AuthenticationError,
    GraphAPIError,
    GraphErrorCategory,
    NotFoundError,
    PermanentRemoteError,
    PermissionError,
    RateLimitError,
    RequestTimeoutError,
    TransientRemoteError,
)
from .rate_limiter import RateLimiter, RateLimiterStatus
from .requests import GraphRequest, mobile_app_assign_request, mobile_app_assignments_request

__all__ = [
    "AuthenticationError",
    "GraphAPIError",
    "GraphAPIVersion",
    "GraphClient",
    "GraphClientConfig",
    "GraphErrorCategory",
    "GraphRequest",
    "NotFoundError",
    "PermanentRemoteError",
    "PermissionError",
    "RateLimitError",
    "RateLimiter",
    "RateLimiterStatus",
    "RequestTimeoutError",
    "TransientRemoteError",
    "mobile_app_assign_request",
    "mobile_app_assignments_request",
]
