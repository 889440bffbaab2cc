"""Value models for apps, groups, assignments and bulk operations."""

from .application import MobileApp
from .assignment import (
    AllDevicesAssignmentTarget,
    AllLicensedUsersAssignmentTarget,
    AppAssignmentSettings,
    Assignment,
    AssignmentFilter,
    AssignmentFilterType,
    AssignmentIntent,
    AssignmentSettings,
    AssignmentStatus,
    AssignmentTarget,
    AssignmentTargetType,
    ExclusionGroupAssignmentTarget,
    GroupAssignmentTarget,
    InstallTimeSettings,
    MobileAppAssignment,
    NotificationSetting,
    RestartSettings,
    build_target,
)
from .common import GraphBaseModel, GraphResource, LocalModel, TimestampedResource
from .group import ALL_DEVICES_GROUP_ID, ALL_USERS_GROUP_ID, DirectoryGroup, GroupType
from .operation import AssignmentMode, BulkAssignmentOperation, GroupAssignmentSettings

__all__ = [
    "ALL_DEVICES_GROUP_ID",
    "ALL_USERS_GROUP_ID",
    "AllDevicesAssignmentTarget",
    "AllLicensedUsersAssignmentTarget",
    "AppAssignmentSettings",
    "Assignment",
    "AssignmentFilter",
    "AssignmentFilterType",
    "AssignmentIntent",
    "AssignmentMode",
    "AssignmentSettings",
    "AssignmentStatus",
    "AssignmentTarget",
    "AssignmentTargetType",
    "BulkAssignmentOperation",
    "DirectoryGroup",
    "ExclusionGroupAssignmentTarget",
    "GraphBaseModel",
    "GraphResource",
    "GroupAssignmentSettings",
    "GroupAssignmentTarget",
    "GroupType",
    "InstallTimeSettings",
    "LocalModel",
    "MobileApp",
    "MobileAppAssignment",
    "NotificationSetting",
    "RestartSettings",
    "TimestampedResource",
    "build_target",
]
