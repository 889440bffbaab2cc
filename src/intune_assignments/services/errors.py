from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from intune_assignments.services.conflicts import ConflictDecision


class BulkAssignmentError(Exception):
    """Base class for failures raised by the bulk assignment service."""


class EmptySelectionError(BulkAssignmentError):
    def __init__(self, message: str = "Select at least one application and one group") -> None:
        super().__init__(message)


class BusyError(BulkAssignmentError):
    def __init__(self, message: str = "A bulk assignment is already in progress") -> None:
        super().__init__(message)


class NoFailedAssignmentsError(BulkAssignmentError):
    def __init__(self, message: str = "There are no failed assignments to retry") -> None:
        super().__init__(message)


class IntentValidationError(BulkAssignmentError):
    """Why a single (application, target) pair was rejected before any remote call.

    Recorded on the failed assignment; never raised for a whole operation.
    """

    def __init__(self, reason: str, *, application_id: str, group_id: str) -> None:
        super().__init__(reason)
        self.reason = reason
        self.application_id = application_id
        self.group_id = group_id


class AssignmentConflictError(BulkAssignmentError):
    """Informational record of a pair skipped because another intent already targets it."""

    def __init__(self, decision: "ConflictDecision", *, application_id: str, group_id: str) -> None:
        super().__init__(
            f"Existing assignment conflicts with the requested intent ({decision.kind.value})"
        )
        self.decision = decision
        self.application_id = application_id
        self.group_id = group_id


__all__ = [
    "AssignmentConflictError",
    "BulkAssignmentError",
    "BusyError",
    "EmptySelectionError",
    "IntentValidationError",
    "NoFailedAssignmentsError",
]
