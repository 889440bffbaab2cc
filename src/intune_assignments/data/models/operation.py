from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Iterable, Sequence

from pydantic import Field

from intune_assignments.config.settings import ConflictPolicy
from intune_assignments.utils.app_types import AppType

from .application import MobileApp
from .assignment import (
    AssignmentFilterType,
    AssignmentIntent,
    AssignmentSettings,
    AssignmentTargetType,
)
from .common import LocalModel
from .group import DirectoryGroup


class AssignmentMode(StrEnum):
    INCLUDE = "include"
    EXCLUDE = "exclude"


class GroupAssignmentSettings(LocalModel):
    """Per-group override applied while a group is part of the selection.

    ``app_type`` records which kind of app the override was authored for;
    when set, the override only applies to apps of that type.
    """

    group_id: str
    group_name: str
    intent: AssignmentIntent
    app_type: AppType | None = None
    assignment_mode: AssignmentMode = AssignmentMode.INCLUDE
    filter_id: str | None = None
    filter_mode: AssignmentFilterType | None = None
    settings: AssignmentSettings | None = None

    def applies_to(self, app: MobileApp) -> bool:
        return self.app_type is None or self.app_type == app.app_type

    def target_type_for(self, group: DirectoryGroup) -> AssignmentTargetType:
        if self.assignment_mode is AssignmentMode.EXCLUDE:
            return AssignmentTargetType.EXCLUSION_GROUP
        return group.target_type


def _unique_by_id(items: Iterable[MobileApp | DirectoryGroup]) -> list:
    seen: set[str] = set()
    unique = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


class BulkAssignmentOperation(LocalModel):
    """Frozen request to assign every selected app to every selected group.

    Build instances through :meth:`snapshot` so the operation never shares
    collections with the caller's live selection state.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    applications: tuple[MobileApp, ...]
    groups: tuple[DirectoryGroup, ...]
    intent: AssignmentIntent
    settings: AssignmentSettings | None = None
    group_settings: tuple[GroupAssignmentSettings, ...] = ()
    conflict_policy: ConflictPolicy | None = None
    scheduled_date: datetime | None = None

    @classmethod
    def snapshot(
        cls,
        applications: Iterable[MobileApp],
        groups: Iterable[DirectoryGroup],
        intent: AssignmentIntent,
        *,
        settings: AssignmentSettings | None = None,
        group_settings: Iterable[GroupAssignmentSettings] | None = None,
        conflict_policy: ConflictPolicy | None = None,
        scheduled_date: datetime | None = None,
    ) -> "BulkAssignmentOperation":
        apps = [app.model_copy(deep=True) for app in _unique_by_id(applications)]
        targets = [group.model_copy(deep=True) for group in _unique_by_id(groups)]
        overrides = tuple(item.model_copy(deep=True) for item in group_settings or ())
        return cls(
            applications=tuple(apps),
            groups=tuple(targets),
            intent=intent,
            settings=settings.model_copy(deep=True) if settings else None,
            group_settings=overrides,
            conflict_policy=conflict_policy,
            scheduled_date=scheduled_date,
        )

    @property
    def total_operations(self) -> int:
        return len(self.applications) * len(self.groups)

    @property
    def is_empty(self) -> bool:
        return not self.applications or not self.groups

    def override_for(
        self, app: MobileApp, group: DirectoryGroup
    ) -> GroupAssignmentSettings | None:
        """Return the most specific override for the pair, if any."""

        generic: GroupAssignmentSettings | None = None
        for item in self.group_settings:
            if item.group_id != group.id or not item.applies_to(app):
                continue
            if item.app_type is not None:
                return item
            if generic is None:
                generic = item
        return generic

    def application_ids(self) -> Sequence[str]:
        return [app.id for app in self.applications]


__all__ = ["AssignmentMode", "BulkAssignmentOperation", "GroupAssignmentSettings"]
