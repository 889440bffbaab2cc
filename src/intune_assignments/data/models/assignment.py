from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from intune_assignments.utils.app_types import AppType

from .common import GraphBaseModel, LocalModel


class AssignmentIntent(StrEnum):
    REQUIRED = "required"
    AVAILABLE = "available"
    UNINSTALL = "uninstall"
    AVAILABLE_WITHOUT_ENROLLMENT = "availableWithoutEnrollment"

    @property
    def display_name(self) -> str:
        if self is AssignmentIntent.AVAILABLE_WITHOUT_ENROLLMENT:
            return "Available without enrollment"
        return self.value.capitalize()


class AssignmentStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    RETRYING = "retrying"

    @property
    def is_terminal(self) -> bool:
        return self in {
            AssignmentStatus.COMPLETED,
            AssignmentStatus.FAILED,
            AssignmentStatus.CANCELLED,
        }


class AssignmentFilterType(StrEnum):
    """Filter mode for assignment targeting.

    - NONE: No filter applied
    - INCLUDE: Include only devices that match the filter
    - EXCLUDE: Exclude devices that match the filter
    """

    NONE = "none"
    INCLUDE = "include"
    EXCLUDE = "exclude"


class AssignmentTargetType(StrEnum):
    """Graph assignment target kinds, valued by their ``@odata.type``."""

    GROUP = "#microsoft.graph.groupAssignmentTarget"
    EXCLUSION_GROUP = "#microsoft.graph.exclusionGroupAssignmentTarget"
    ALL_DEVICES = "#microsoft.graph.allDevicesAssignmentTarget"
    ALL_LICENSED_USERS = "#microsoft.graph.allLicensedUsersAssignmentTarget"

    @property
    def requires_group_id(self) -> bool:
        return self in {AssignmentTargetType.GROUP, AssignmentTargetType.EXCLUSION_GROUP}

    @property
    def is_builtin(self) -> bool:
        return not self.requires_group_id

    @property
    def is_user_target(self) -> bool:
        return self is AssignmentTargetType.ALL_LICENSED_USERS

    @property
    def display_name(self) -> str:
        return {
            AssignmentTargetType.GROUP: "Group",
            AssignmentTargetType.EXCLUSION_GROUP: "Excluded group",
            AssignmentTargetType.ALL_DEVICES: "All devices",
            AssignmentTargetType.ALL_LICENSED_USERS: "All users",
        }[self]


# ----------------------------------------------------------------- Graph shape


class AssignmentTarget(GraphBaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True,
        extra="allow",
        frozen=True,
    )

    odata_type: str = Field(alias="@odata.type")

    @property
    def target_type(self) -> AssignmentTargetType | None:
        try:
            return AssignmentTargetType(self.odata_type)
        except ValueError:
            return None

    @property
    def target_group_id(self) -> str | None:
        value = getattr(self, "group_id", None)
        return value if isinstance(value, str) else None


class _FilterableTarget(AssignmentTarget):
    assignment_filter_id: str | None = Field(
        default=None,
        alias="deviceAndAppManagementAssignmentFilterId",
    )
    assignment_filter_type: AssignmentFilterType = Field(
        default=AssignmentFilterType.NONE,
        alias="deviceAndAppManagementAssignmentFilterType",
    )


class GroupAssignmentTarget(_FilterableTarget):
    odata_type: Literal["#microsoft.graph.groupAssignmentTarget"] = Field(
        default="#microsoft.graph.groupAssignmentTarget",
        alias="@odata.type",
    )
    group_id: str = Field(alias="groupId")


class ExclusionGroupAssignmentTarget(AssignmentTarget):
    odata_type: Literal["#microsoft.graph.exclusionGroupAssignmentTarget"] = Field(
        default="#microsoft.graph.exclusionGroupAssignmentTarget",
        alias="@odata.type",
    )
    group_id: str = Field(alias="groupId")


class AllDevicesAssignmentTarget(_FilterableTarget):
    odata_type: Literal["#microsoft.graph.allDevicesAssignmentTarget"] = Field(
        default="#microsoft.graph.allDevicesAssignmentTarget",
        alias="@odata.type",
    )


class AllLicensedUsersAssignmentTarget(_FilterableTarget):
    odata_type: Literal["#microsoft.graph.allLicensedUsersAssignmentTarget"] = Field(
        default="#microsoft.graph.allLicensedUsersAssignmentTarget",
        alias="@odata.type",
    )


_TARGET_MODELS: dict[str, type[AssignmentTarget]] = {
    AssignmentTargetType.GROUP.value: GroupAssignmentTarget,
    AssignmentTargetType.EXCLUSION_GROUP.value: ExclusionGroupAssignmentTarget,
    AssignmentTargetType.ALL_DEVICES.value: AllDevicesAssignmentTarget,
    AssignmentTargetType.ALL_LICENSED_USERS.value: AllLicensedUsersAssignmentTarget,
}


class AppAssignmentSettings(GraphBaseModel):
    """Graph ``mobileAppAssignmentSettings`` payload.

    Only the type discriminator is modelled; every other key is preserved
    as-is so that existing assignments can be written back unchanged.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True,
        extra="allow",
        frozen=True,
    )

    odata_type: str | None = Field(default=None, alias="@odata.type")


class MobileAppAssignment(GraphBaseModel):
    model_config = ConfigDict(use_enum_values=False)

    odata_type: str = Field(
        default="#microsoft.graph.mobileAppAssignment", alias="@odata.type"
    )
    id: str | None = None
    intent: AssignmentIntent
    target: AssignmentTarget
    settings: AppAssignmentSettings | None = None

    @field_validator("target", mode="before")
    @classmethod
    def _coerce_target(cls, value: Any) -> Any:
        if isinstance(value, AssignmentTarget):
            return value
        if not isinstance(value, dict):
            return value

        odata_type = value.get("@odata.type") or value.get("odata_type")
        if not isinstance(odata_type, str):
            return value

        target_model = _TARGET_MODELS.get(odata_type)
        if target_model is None:
            return AssignmentTarget.model_validate(value)

        try:
            return target_model.model_validate(value)
        except ValidationError:
            # Cached payloads may be missing required fields (e.g. groupId).
            return AssignmentTarget.model_validate(value)

    @property
    def target_type(self) -> AssignmentTargetType | None:
        return self.target.target_type

    @property
    def group_id(self) -> str | None:
        return self.target.target_group_id

    def to_write_payload(self) -> dict[str, Any]:
        payload = self.to_graph()
        payload.pop("id", None)
        if self.intent == AssignmentIntent.UNINSTALL:
            payload.pop("settings", None)
        return payload


def build_target(
    target_type: AssignmentTargetType,
    group_id: str | None = None,
    *,
    filter_id: str | None = None,
    filter_type: AssignmentFilterType = AssignmentFilterType.NONE,
) -> AssignmentTarget:
    """Construct the Graph target model for a planned assignment."""

    if target_type.requires_group_id and not group_id:
        raise ValueError(f"{target_type.display_name} target requires a group id")
    filter_kwargs: dict[str, Any] = {}
    if filter_id and filter_type is not AssignmentFilterType.NONE:
        filter_kwargs = {
            "assignment_filter_id": filter_id,
            "assignment_filter_type": filter_type,
        }
    match target_type:
        case AssignmentTargetType.GROUP:
            return GroupAssignmentTarget(group_id=group_id, **filter_kwargs)
        case AssignmentTargetType.EXCLUSION_GROUP:
            # Graph does not accept filters on exclusion targets.
            return ExclusionGroupAssignmentTarget(group_id=group_id)
        case AssignmentTargetType.ALL_DEVICES:
            return AllDevicesAssignmentTarget(**filter_kwargs)
        case AssignmentTargetType.ALL_LICENSED_USERS:
            return AllLicensedUsersAssignmentTarget(**filter_kwargs)
    raise ValueError(f"Unsupported target type: {target_type}")


# ----------------------------------------------------------------- Local shape


class NotificationSetting(StrEnum):
    SHOW_ALL = "showAll"
    SHOW_REBOOT = "showReboot"
    HIDE_ALL = "hideAll"


class RestartSettings(LocalModel):
    grace_period_in_minutes: int | None = None
    countdown_display_before_restart_in_minutes: int | None = None
    restart_notification_snooze_duration_in_minutes: int | None = None


class InstallTimeSettings(LocalModel):
    use_local_time: bool | None = None
    start_date_time: datetime | None = None
    deadline_date_time: datetime | None = None


class AssignmentSettings(LocalModel):
    """Per-assignment deployment options chosen for a bulk operation."""

    notification_enabled: bool | None = None
    restart_settings: RestartSettings | None = None
    install_time_settings: InstallTimeSettings | None = None
    uninstall_on_device_removal: bool | None = None
    vpn_configuration_id: str | None = None
    use_device_licensing: bool | None = None

    def to_graph_settings(self, app_type: AppType) -> AppAssignmentSettings | None:
        """Render the platform-specific Graph settings for ``app_type``.

        App types without a settings payload return ``None``.
        """

        payload: dict[str, Any]
        match app_type:
            case AppType.IOS_VPP:
                payload = {
                    "@odata.type": "#microsoft.graph.iosVppAppAssignmentSettings",
                    "useDeviceLicensing": (
                        True if self.use_device_licensing is None else self.use_device_licensing
                    ),
                }
                if self.vpn_configuration_id:
                    payload["vpnConfigurationId"] = self.vpn_configuration_id
                if self.uninstall_on_device_removal:
                    payload["uninstallOnDeviceRemoval"] = True
            case AppType.IOS_LOB | AppType.MANAGED_IOS_LOB:
                payload = {"@odata.type": "#microsoft.graph.iosLobAppAssignmentSettings"}
                if self.vpn_configuration_id:
                    payload["vpnConfigurationId"] = self.vpn_configuration_id
                if self.uninstall_on_device_removal:
                    payload["uninstallOnDeviceRemoval"] = True
            case AppType.IOS_STORE:
                payload = {"@odata.type": "#microsoft.graph.iosStoreAppAssignmentSettings"}
                if self.vpn_configuration_id:
                    payload["vpnConfigurationId"] = self.vpn_configuration_id
                if self.uninstall_on_device_removal:
                    payload["uninstallOnDeviceRemoval"] = True
            case AppType.MACOS_VPP:
                payload = {
                    "@odata.type": "#microsoft.graph.macOsVppAppAssignmentSettings",
                    "useDeviceLicensing": (
                        True if self.use_device_licensing is None else self.use_device_licensing
                    ),
                }
                if self.uninstall_on_device_removal:
                    payload["uninstallOnDeviceRemoval"] = True
            case AppType.WIN32_LOB | AppType.WINGET:
                odata = (
                    "#microsoft.graph.win32LobAppAssignmentSettings"
                    if app_type is AppType.WIN32_LOB
                    else "#microsoft.graph.winGetAppAssignmentSettings"
                )
                payload = {
                    "@odata.type": odata,
                    "notifications": (
                        NotificationSetting.HIDE_ALL.value
                        if self.notification_enabled is False
                        else NotificationSetting.SHOW_ALL.value
                    ),
                }
                if self.restart_settings is not None:
                    payload["restartSettings"] = self.restart_settings.to_json_dict()
                if self.install_time_settings is not None:
                    payload["installTimeSettings"] = self.install_time_settings.to_json_dict()
            case _:
                return None
        return AppAssignmentSettings.model_validate(payload)


class AssignmentFilter(LocalModel):
    filter_id: str | None = None
    filter_type: AssignmentFilterType = AssignmentFilterType.NONE
    filter_expression: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Assignment(BaseModel):
    """One planned application-to-target binding and its outcome.

    Records are created during planning and mutated in place as the remote
    write progresses; they are the unit returned to callers and persisted to
    the history file.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        validate_assignment=True,
    )

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    application_id: str
    application_name: str
    group_id: str
    group_name: str
    target_type: AssignmentTargetType = AssignmentTargetType.GROUP
    intent: AssignmentIntent
    settings: AssignmentSettings | None = None
    filter: AssignmentFilter | None = None
    status: AssignmentStatus = AssignmentStatus.PENDING
    created_date: datetime = Field(default_factory=_utcnow)
    modified_date: datetime = Field(default_factory=_utcnow)
    completed_date: datetime | None = None
    failure_timestamp: datetime | None = None
    error_message: str | None = None
    error_category: str | None = None
    retry_count: int = 0
    batch_id: str | None = None

    @property
    def pair_key(self) -> tuple[str, str, str]:
        return (self.application_id, self.target_type.value, self.group_id)

    def mark(
        self,
        status: AssignmentStatus,
        *,
        error_message: str | None = None,
        error_category: str | None = None,
    ) -> None:
        now = _utcnow()
        self.status = status
        self.modified_date = now
        if status is AssignmentStatus.COMPLETED:
            self.completed_date = now
            self.error_message = None
            self.error_category = None
        elif status is AssignmentStatus.FAILED:
            self.failure_timestamp = now
            self.error_message = error_message
            self.error_category = error_category
        elif error_message is not None:
            self.error_message = error_message

    @classmethod
    def from_json_dict(cls, payload: dict[str, Any]) -> "Assignment":
        return cls.model_validate(payload)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


__all__ = [
    "AppAssignmentSettings",
    "AllDevicesAssignmentTarget",
    "AllLicensedUsersAssignmentTarget",
    "Assignment",
    "AssignmentFilter",
    "AssignmentFilterType",
    "AssignmentIntent",
    "AssignmentSettings",
    "AssignmentStatus",
    "AssignmentTarget",
    "AssignmentTargetType",
    "ExclusionGroupAssignmentTarget",
    "GroupAssignmentTarget",
    "InstallTimeSettings",
    "MobileAppAssignment",
    "NotificationSetting",
    "RestartSettings",
    "build_target",
]
