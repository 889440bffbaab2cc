"""Bulk assignment planning and execution services."""

from .assignments import (
    AssignmentService,
    AssignmentServiceSnapshot,
    AssignmentWriteEvent,
    BulkAssignmentReport,
    OperationState,
    PlannedTask,
    SkippedPair,
)
from .base import EventHook, MutationStatus, ServiceErrorEvent, run_optimistic_mutation
from .conflicts import (
    AssignmentConflictDetector,
    CandidateAssignment,
    ConflictDecision,
    ConflictKind,
    ConflictSeverity,
    IntentConflict,
    IntentConflictType,
)
from .errors import (
    AssignmentConflictError,
    BulkAssignmentError,
    BusyError,
    EmptySelectionError,
    IntentValidationError,
    NoFailedAssignmentsError,
)
from .gateway import (
    AssignmentGateway,
    AssignmentWrite,
    AssignmentWriteResult,
    GraphAssignmentGateway,
)
from .intent_validator import AssignmentIntentValidator, IntentValidation
from .progress import AssignmentProgress, AssignmentProgressTracker

__all__ = [
    "AssignmentService",
    "AssignmentServiceSnapshot",
    "AssignmentWriteEvent",
    "BulkAssignmentReport",
    "OperationState",
    "PlannedTask",
    "SkippedPair",
    "EventHook",
    "MutationStatus",
    "ServiceErrorEvent",
    "run_optimistic_mutation",
    "AssignmentConflictDetector",
    "CandidateAssignment",
    "ConflictDecision",
    "ConflictKind",
    "ConflictSeverity",
    "IntentConflict",
    "IntentConflictType",
    "AssignmentConflictError",
    "BulkAssignmentError",
    "BusyError",
    "EmptySelectionError",
    "IntentValidationError",
    "NoFailedAssignmentsError",
    "AssignmentGateway",
    "AssignmentWrite",
    "AssignmentWriteResult",
    "GraphAssignmentGateway",
    "AssignmentIntentValidator",
    "IntentValidation",
    "AssignmentProgress",
    "AssignmentProgressTracker",
]
