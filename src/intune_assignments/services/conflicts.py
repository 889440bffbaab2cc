"""Classify candidate assignments against an app's existing assignment set.

Everything here is pure: no I/O, no mutation of the inputs.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from enum import StrEnum
from typing import Iterable, Sequence

from intune_assignments.data.models.assignment import (
    AssignmentIntent,
    AssignmentTargetType,
    MobileAppAssignment,
)


class ConflictKind(StrEnum):
    NEW = "new"
    DUPLICATE = "duplicate"
    CONFLICTING = "conflicting"


@dataclass(slots=True, frozen=True)
class ConflictDecision:
    kind: ConflictKind
    existing: MobileAppAssignment | None = None
    matches: tuple[MobileAppAssignment, ...] = ()

    @property
    def is_new(self) -> bool:
        return self.kind is ConflictKind.NEW

    @property
    def is_duplicate(self) -> bool:
        return self.kind is ConflictKind.DUPLICATE

    @property
    def is_conflicting(self) -> bool:
        return self.kind is ConflictKind.CONFLICTING


class IntentConflictType(StrEnum):
    CONFLICTING_INTENTS = "conflicting_intents"
    REDUNDANT_ASSIGNMENT = "redundant_assignment"
    LOGICAL_CONFLICT = "logical_conflict"


class ConflictSeverity(StrEnum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


@dataclass(slots=True, frozen=True)
class CandidateAssignment:
    target_type: AssignmentTargetType
    group_id: str | None
    intent: AssignmentIntent


@dataclass(slots=True, frozen=True)
class IntentConflict:
    """Advisory finding about intents that do not make sense together."""

    target_type: AssignmentTargetType
    group_id: str | None
    conflict_type: IntentConflictType
    severity: ConflictSeverity
    intents: tuple[AssignmentIntent, ...]
    resolution: str


TargetKey = tuple[AssignmentTargetType, str | None]


def target_key(target_type: AssignmentTargetType, group_id: str | None) -> TargetKey:
    """Identity of a target: built-ins are matched by type alone."""

    if target_type.is_builtin:
        return (target_type, None)
    return (target_type, group_id)


def _existing_key(assignment: MobileAppAssignment) -> TargetKey | None:
    target_type = assignment.target_type
    if target_type is None:
        return None
    return target_key(target_type, assignment.group_id)


class AssignmentConflictDetector:
    """Decide whether a planned assignment is new, a duplicate, or a conflict."""

    @staticmethod
    def classify(
        existing: Iterable[MobileAppAssignment],
        target_type: AssignmentTargetType,
        group_id: str | None,
        intent: AssignmentIntent,
    ) -> ConflictDecision:
        key = target_key(target_type, group_id)
        matches = tuple(item for item in existing if _existing_key(item) == key)
        if not matches:
            return ConflictDecision(kind=ConflictKind.NEW)
        for item in matches:
            if AssignmentIntent(item.intent) is intent:
                return ConflictDecision(
                    kind=ConflictKind.DUPLICATE, existing=item, matches=matches
                )
        return ConflictDecision(
            kind=ConflictKind.CONFLICTING, existing=matches[0], matches=matches
        )

    @staticmethod
    def review(
        existing: Iterable[MobileAppAssignment],
        pending: Sequence[CandidateAssignment],
    ) -> list[IntentConflict]:
        """Flag intent combinations on one app that Intune would reject or ignore.

        Only targets touched by ``pending`` are reviewed, so stale combinations
        the operation does not change are not reported.
        """

        intents_by_target: dict[TargetKey, set[AssignmentIntent]] = defaultdict(set)
        for item in existing:
            key = _existing_key(item)
            if key is not None:
                intents_by_target[key].add(AssignmentIntent(item.intent))

        pending_keys: list[TargetKey] = []
        for candidate in pending:
            key = target_key(candidate.target_type, candidate.group_id)
            intents_by_target[key].add(candidate.intent)
            if key not in pending_keys:
                pending_keys.append(key)

        findings: list[IntentConflict] = []
        for key in pending_keys:
            intents = intents_by_target[key]
            if len(intents) < 2:
                continue
            findings.extend(_check_intents(key, intents))
        return findings


def _check_intents(key: TargetKey, intents: set[AssignmentIntent]) -> list[IntentConflict]:
    target_type, group_id = key
    label = group_id or target_type.display_name
    findings: list[IntentConflict] = []

    if AssignmentIntent.REQUIRED in intents and AssignmentIntent.UNINSTALL in intents:
        findings.append(
            IntentConflict(
                target_type=target_type,
                group_id=group_id,
                conflict_type=IntentConflictType.CONFLICTING_INTENTS,
                severity=ConflictSeverity.CRITICAL,
                intents=(AssignmentIntent.REQUIRED, AssignmentIntent.UNINSTALL),
                resolution=(
                    f"Cannot have both 'Required' and 'Uninstall' intents assigned to {label}. "
                    "Choose one intent."
                ),
            )
        )
    if AssignmentIntent.REQUIRED in intents and AssignmentIntent.AVAILABLE in intents:
        findings.append(
            IntentConflict(
                target_type=target_type,
                group_id=group_id,
                conflict_type=IntentConflictType.REDUNDANT_ASSIGNMENT,
                severity=ConflictSeverity.WARNING,
                intents=(AssignmentIntent.REQUIRED, AssignmentIntent.AVAILABLE),
                resolution=(
                    f"'Required' makes 'Available' redundant for {label}. "
                    "Consider using only 'Required'."
                ),
            )
        )
    if (
        AssignmentIntent.AVAILABLE_WITHOUT_ENROLLMENT in intents
        and AssignmentIntent.REQUIRED in intents
    ):
        findings.append(
            IntentConflict(
                target_type=target_type,
                group_id=group_id,
                conflict_type=IntentConflictType.LOGICAL_CONFLICT,
                severity=ConflictSeverity.CRITICAL,
                intents=(
                    AssignmentIntent.AVAILABLE_WITHOUT_ENROLLMENT,
                    AssignmentIntent.REQUIRED,
                ),
                resolution=(
                    f"'Available without enrollment' targets unenrolled devices while "
                    f"'Required' needs enrollment; pick one for {label}."
                ),
            )
        )
    return findings


__all__ = [
    "AssignmentConflictDetector",
    "CandidateAssignment",
    "ConflictDecision",
    "ConflictKind",
    "ConflictSeverity",
    "IntentConflict",
    "IntentConflictType",
    "target_key",
]
