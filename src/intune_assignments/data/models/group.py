from __future__ import annotations

from enum import StrEnum

from pydantic import AliasChoices, Field

from .assignment import AssignmentTargetType
from .common import TimestampedResource


ALL_DEVICES_GROUP_ID = "intune-all-devices"
ALL_USERS_GROUP_ID = "intune-all-users"

_BUILTIN_TARGETS: dict[str, AssignmentTargetType] = {
    ALL_DEVICES_GROUP_ID: AssignmentTargetType.ALL_DEVICES,
    ALL_USERS_GROUP_ID: AssignmentTargetType.ALL_LICENSED_USERS,
}


class GroupType(StrEnum):
    UNIFIED = "Unified"
    DYNAMIC_MEMBERSHIP = "DynamicMembership"


class DirectoryGroup(TimestampedResource):
    display_name: str = Field(
        alias="displayName",
        validation_alias=AliasChoices("displayName", "name"),
    )
    description: str | None = None
    mail_enabled: bool | None = Field(default=None, alias="mailEnabled")
    security_enabled: bool | None = Field(default=None, alias="securityEnabled")
    group_types: tuple[str, ...] | None = Field(default=None, alias="groupTypes")
    membership_rule: str | None = Field(default=None, alias="membershipRule")

    @property
    def is_dynamic(self) -> bool:
        return bool(self.group_types and GroupType.DYNAMIC_MEMBERSHIP in self.group_types)

    @property
    def is_builtin_target(self) -> bool:
        return self.id in _BUILTIN_TARGETS

    @property
    def target_type(self) -> AssignmentTargetType:
        """Target kind this group maps to when included in an assignment."""
        return _BUILTIN_TARGETS.get(self.id, AssignmentTargetType.GROUP)

    @classmethod
    def all_devices(cls) -> "DirectoryGroup":
        return cls(
            id=ALL_DEVICES_GROUP_ID,
            display_name="All Devices",
            description="Built-in Intune target covering every enrolled device",
            security_enabled=True,
        )

    @classmethod
    def all_users(cls) -> "DirectoryGroup":
        return cls(
            id=ALL_USERS_GROUP_ID,
            display_name="All Users",
            description="Built-in Intune target covering every licensed user",
            security_enabled=True,
        )

    @classmethod
    def builtin_targets(cls) -> tuple["DirectoryGroup", "DirectoryGroup"]:
        return cls.all_devices(), cls.all_users()


__all__ = [
    "ALL_DEVICES_GROUP_ID",
    "ALL_USERS_GROUP_ID",
    "DirectoryGroup",
    "GroupType",
]
