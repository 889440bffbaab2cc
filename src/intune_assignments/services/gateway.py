from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from pydantic import ValidationError

from intune_assignments.data.models.assignment import MobileAppAssignment
from intune_assignments.graph.client import GraphClient
from intune_assignments.graph.requests import (
    mobile_app_assign_request,
    mobile_app_assignments_request,
)
from intune_assignments.utils.logging import get_logger


logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class AssignmentWrite:
    """One remote write: the complete assignment set an app should end up with.

    ``keep`` holds existing assignments that survive the write, ``add`` the
    new or overwriting ones produced by planning.
    """

    application_id: str
    application_name: str
    keep: tuple[MobileAppAssignment, ...]
    add: tuple[MobileAppAssignment, ...]
    assignment_ids: tuple[str, ...] = field(default=())

    @property
    def desired(self) -> tuple[MobileAppAssignment, ...]:
        return self.keep + self.add

    def payload(self) -> list[dict]:
        return [assignment.to_write_payload() for assignment in self.desired]


@dataclass(slots=True, frozen=True)
class AssignmentWriteResult:
    application_id: str
    assignments: tuple[MobileAppAssignment, ...]


class AssignmentGateway(Protocol):
    """Remote collaborator the bulk assignment service writes through."""

    async def fetch_current_assignments(
        self, application_id: str
    ) -> list[MobileAppAssignment]: ...

    async def execute(
        self, write: AssignmentWrite, *, timeout: float
    ) -> AssignmentWriteResult: ...


class GraphAssignmentGateway:
    """Gateway backed by the Microsoft Graph ``mobileApps/{id}/assign`` action."""

    def __init__(self, client: GraphClient) -> None:
        self._client = client

    async def fetch_current_assignments(
        self, application_id: str
    ) -> list[MobileAppAssignment]:
        request = mobile_app_assignments_request(application_id)
        assignments: list[MobileAppAssignment] = []
        async for item in self._client.iter_collection(
            request.method,
            request.url,
            params=request.params,
            api_version=request.api_version,
        ):
            try:
                assignments.append(MobileAppAssignment.from_graph(item))
            except ValidationError as exc:
                logger.warning(
                    "Skipping unparseable assignment",
                    app_id=application_id,
                    error=str(exc),
                )
        logger.debug(
            "Fetched current assignments",
            app_id=application_id,
            count=len(assignments),
        )
        return assignments

    async def execute(
        self, write: AssignmentWrite, *, timeout: float
    ) -> AssignmentWriteResult:
        request = mobile_app_assign_request(write.application_id, write.payload())
        await self._client.send(request, timeout=timeout)
        logger.info(
            "Assignments written",
            app_id=write.application_id,
            kept=len(write.keep),
            added=len(write.add),
        )
        return AssignmentWriteResult(
            application_id=write.application_id,
            assignments=write.desired,
        )


__all__ = [
    "AssignmentGateway",
    "AssignmentWrite",
    "AssignmentWriteResult",
    "GraphAssignmentGateway",
]
