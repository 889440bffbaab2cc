from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Sequence


GraphMethod = Literal["GET", "POST", "PATCH", "DELETE", "PUT"]
BETA_VERSION = "beta"


@dataclass(slots=True)
class GraphRequest:
    """Structured representation of a Microsoft Graph request."""

    method: GraphMethod
    url: str
    headers: dict[str, str] | None = None
    body: Any | None = None
    params: dict[str, Any] | None = None
    api_version: str | None = None

    @property
    def is_write(self) -> bool:
        return self.method in {"POST", "PATCH", "DELETE", "PUT"}


def mobile_app_assign_request(
    app_id: str,
    assignments: Sequence[dict[str, Any]],
) -> GraphRequest:
    """Builds the mobile app assign endpoint request.

    The assign action replaces the whole assignment set of the app, so the
    payload has to carry every assignment that should survive the call.
    """

    path = f"/deviceAppManagement/mobileApps/{app_id}/assign"
    return GraphRequest(
        method="POST",
        url=path,
        body={"mobileAppAssignments": list(assignments)},
        api_version=BETA_VERSION,
    )


def mobile_app_assignments_request(
    app_id: str,
    *,
    params: dict[str, Any] | None = None,
) -> GraphRequest:
    """Fetch the assignments collection for a given mobile app."""

    path = f"/deviceAppManagement/mobileApps/{app_id}/assignments"
    return GraphRequest(
        method="GET",
        url=path,
        params=params,
        api_version=BETA_VERSION,
    )


__all__ = [
    "BETA_VERSION",
    "GraphMethod",
    "GraphRequest",
    "mobile_app_assign_request",
    "mobile_app_assignments_request",
]
