from __future__ import annotations

import time
from pathlib import Path
from typing import Iterable

from intune_assignments.auth.types import AccessToken
from intune_assignments.config.settings import AssignmentEngineSettings, Settings
from intune_assignments.data import (
    AssignmentIntent,
    AssignmentTargetType,
    BulkAssignmentOperation,
    DirectoryGroup,
    MobileApp,
    MobileAppAssignment,
    build_target,
)
from intune_assignments.utils.app_types import AppType


def make_access_token(token: str = "token", expires_in: int = 3600) -> AccessToken:
    """Return a short-lived access token suitable for Graph client tests."""

    return AccessToken(token=token, expires_on=int(time.time()) + expires_in)


def make_settings(**overrides: object) -> Settings:
    settings = Settings(
        tenant_id="contoso.onmicrosoft.com",
        client_id="00000000-0000-0000-0000-000000000000",
    )
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


def make_engine_settings(tmp_path: Path, **overrides: object) -> AssignmentEngineSettings:
    """Engine settings with instant backoff and a history file under ``tmp_path``."""

    values: dict[str, object] = {
        "base_retry_delay": 0.0,
        "max_retry_delay": 0.0,
        "write_timeout": 0.2,
        "history_path": tmp_path / "assignment_history.json",
    }
    values.update(overrides)
    return AssignmentEngineSettings(**values)


def make_app(
    app_id: str = "app-1",
    *,
    app_type: AppType = AppType.WIN32_LOB,
    name: str | None = None,
    assignments: Iterable[MobileAppAssignment] | None = None,
) -> MobileApp:
    return MobileApp(
        id=app_id,
        display_name=name or f"App {app_id}",
        app_type=app_type,
        assignments=tuple(assignments) if assignments is not None else None,
    )


def make_group(group_id: str = "group-1", name: str | None = None) -> DirectoryGroup:
    return DirectoryGroup(id=group_id, display_name=name or f"Group {group_id}")


def make_existing(
    intent: AssignmentIntent = AssignmentIntent.REQUIRED,
    *,
    group_id: str | None = "group-1",
    target_type: AssignmentTargetType = AssignmentTargetType.GROUP,
    assignment_id: str | None = None,
) -> MobileAppAssignment:
    """Construct an assignment as Graph would return it for an app."""

    target = build_target(
        target_type, group_id if target_type.requires_group_id else None
    )
    return MobileAppAssignment(
        id=assignment_id or f"existing-{intent.value}-{group_id or target_type.display_name}",
        intent=intent,
        target=target,
    )


def make_operation(
    applications: Iterable[MobileApp],
    groups: Iterable[DirectoryGroup],
    intent: AssignmentIntent = AssignmentIntent.REQUIRED,
    **kwargs: object,
) -> BulkAssignmentOperation:
    return BulkAssignmentOperation.snapshot(applications, groups, intent, **kwargs)
