from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from intune_assignments.config.settings import ConflictPolicy
from intune_assignments.data import (
    AllDevicesAssignmentTarget,
    Assignment,
    AssignmentFilter,
    AssignmentFilterType,
    AssignmentIntent,
    AssignmentMode,
    AssignmentSettings,
    AssignmentStatus,
    AssignmentTarget,
    AssignmentTargetType,
    DirectoryGroup,
    GroupAssignmentSettings,
    GroupAssignmentTarget,
    MobileApp,
    MobileAppAssignment,
    RestartSettings,
    build_target,
)
from intune_assignments.utils.app_types import AppType, DevicePlatform
from tests.factories import make_app, make_existing, make_group, make_operation


def test_mobile_app_derives_type_and_platforms_from_odata_type() -> None:
    app = MobileApp.from_graph(
        {
            "id": "app-1",
            "@odata.type": "#microsoft.graph.iosVppApp",
            "displayName": "Pages",
        }
    )

    assert app.app_type is AppType.IOS_VPP
    assert app.supported_platforms == frozenset({DevicePlatform.IOS})
    assert app.assignments is None
    assert not app.assignments_known


def test_mobile_app_with_unrecognised_type_is_unknown() -> None:
    app = MobileApp.from_graph(
        {"id": "app-2", "@odata.type": "#microsoft.graph.quantumApp", "name": "Q"}
    )

    assert app.app_type is AppType.UNKNOWN
    assert app.display_name == "Q"


def test_with_assignments_marks_assignments_known() -> None:
    app = make_app()
    updated = app.with_assignments([])

    assert updated.assignments == ()
    assert updated.assignments_known
    assert app.assignments is None


def test_mobile_app_assignment_parses_typed_targets() -> None:
    assignment = MobileAppAssignment.from_graph(
        {
            "id": "a-1",
            "intent": "availableWithoutEnrollment",
            "target": {
                "@odata.type": "#microsoft.graph.groupAssignmentTarget",
                "groupId": "group-1",
                "deviceAndAppManagementAssignmentFilterId": "filter-1",
                "deviceAndAppManagementAssignmentFilterType": "include",
            },
        }
    )

    assert isinstance(assignment.target, GroupAssignmentTarget)
    assert assignment.intent is AssignmentIntent.AVAILABLE_WITHOUT_ENROLLMENT
    assert assignment.target_type is AssignmentTargetType.GROUP
    assert assignment.group_id == "group-1"


def test_unknown_target_type_is_kept_generic() -> None:
    assignment = MobileAppAssignment.from_graph(
        {
            "intent": "required",
            "target": {"@odata.type": "#microsoft.graph.somethingNewTarget", "x": 1},
        }
    )

    assert type(assignment.target) is AssignmentTarget
    assert assignment.target_type is None
    assert assignment.group_id is None


def test_mobile_app_assignment_rejects_unknown_intent() -> None:
    with pytest.raises(ValidationError):
        MobileAppAssignment.from_graph(
            {"intent": "sometimes", "target": {"@odata.type": "#microsoft.graph.allDevicesAssignmentTarget"}}
        )


def test_write_payload_strips_id_and_uninstall_settings() -> None:
    settings = AssignmentSettings(notification_enabled=False).to_graph_settings(
        AppType.WIN32_LOB
    )
    required = MobileAppAssignment(
        id="a-1",
        intent=AssignmentIntent.REQUIRED,
        target=AllDevicesAssignmentTarget(),
        settings=settings,
    )
    uninstall = required.model_copy(update={"intent": AssignmentIntent.UNINSTALL})

    payload = required.to_write_payload()
    assert "id" not in payload
    assert payload["intent"] == "required"
    assert payload["target"]["@odata.type"] == AssignmentTargetType.ALL_DEVICES.value
    assert payload["settings"]["notifications"] == "hideAll"
    assert "settings" not in uninstall.to_write_payload()


def test_build_target_applies_filters_except_on_exclusions() -> None:
    included = build_target(
        AssignmentTargetType.GROUP,
        "group-1",
        filter_id="filter-1",
        filter_type=AssignmentFilterType.EXCLUDE,
    )
    excluded = build_target(
        AssignmentTargetType.EXCLUSION_GROUP,
        "group-1",
        filter_id="filter-1",
        filter_type=AssignmentFilterType.EXCLUDE,
    )

    assert included.to_graph()["deviceAndAppManagementAssignmentFilterId"] == "filter-1"
    assert included.to_graph()["deviceAndAppManagementAssignmentFilterType"] == "exclude"
    assert "deviceAndAppManagementAssignmentFilterId" not in excluded.to_graph()
    assert excluded.target_type is AssignmentTargetType.EXCLUSION_GROUP


def test_build_target_requires_group_for_group_targets() -> None:
    with pytest.raises(ValueError):
        build_target(AssignmentTargetType.GROUP)


def test_vpp_settings_default_to_device_licensing() -> None:
    settings = AssignmentSettings(uninstall_on_device_removal=True).to_graph_settings(
        AppType.IOS_VPP
    )

    assert settings is not None
    payload = settings.to_graph()
    assert payload["@odata.type"] == "#microsoft.graph.iosVppAppAssignmentSettings"
    assert payload["useDeviceLicensing"] is True
    assert payload["uninstallOnDeviceRemoval"] is True


def test_settings_without_graph_shape_render_none() -> None:
    assert AssignmentSettings().to_graph_settings(AppType.WEB) is None


def test_win32_settings_include_restart_options() -> None:
    settings = AssignmentSettings(
        restart_settings=RestartSettings(grace_period_in_minutes=30)
    ).to_graph_settings(AppType.WIN32_LOB)

    assert settings is not None
    payload = settings.to_graph()
    assert payload["notifications"] == "showAll"
    assert payload["restartSettings"] == {"gracePeriodInMinutes": 30}


def test_assignment_json_round_trip() -> None:
    assignment = Assignment(
        application_id="app-1",
        application_name="Company Portal",
        group_id="group-1",
        group_name="Pilot",
        intent=AssignmentIntent.AVAILABLE,
        filter=AssignmentFilter(filter_id="f-1", filter_type=AssignmentFilterType.INCLUDE),
    )
    assignment.mark(AssignmentStatus.FAILED, error_message="boom", error_category="server")

    payload = assignment.to_json_dict()
    restored = Assignment.from_json_dict(payload)

    assert payload["applicationId"] == "app-1"
    assert payload["status"] == "failed"
    assert payload["filter"]["filterType"] == "include"
    assert restored.to_json_dict() == payload
    assert restored.filter == assignment.filter
    assert restored.failure_timestamp == assignment.failure_timestamp


def test_mark_completed_clears_error_details() -> None:
    assignment = Assignment(
        application_id="app-1",
        application_name="App",
        group_id="group-1",
        group_name="Group",
        intent=AssignmentIntent.REQUIRED,
    )
    assignment.mark(AssignmentStatus.FAILED, error_message="boom", error_category="server")
    assignment.mark(AssignmentStatus.COMPLETED)

    assert assignment.error_message is None
    assert assignment.error_category is None
    assert assignment.completed_date is not None
    assert assignment.failure_timestamp is not None
    assert assignment.status.is_terminal


def test_assignment_rejects_invalid_status_on_update() -> None:
    assignment = Assignment(
        application_id="app-1",
        application_name="App",
        group_id="group-1",
        group_name="Group",
        intent=AssignmentIntent.REQUIRED,
    )

    with pytest.raises(ValidationError):
        assignment.status = "exploded"


def test_builtin_groups_map_to_builtin_targets() -> None:
    all_devices, all_users = DirectoryGroup.builtin_targets()

    assert all_devices.target_type is AssignmentTargetType.ALL_DEVICES
    assert all_users.target_type is AssignmentTargetType.ALL_LICENSED_USERS
    assert make_group().target_type is AssignmentTargetType.GROUP
    assert DirectoryGroup.from_graph(
        {"id": "g", "displayName": "Dyn", "groupTypes": ["DynamicMembership"]}
    ).is_dynamic


def test_snapshot_deduplicates_and_detaches_inputs() -> None:
    app = make_app("app-1", assignments=[make_existing()])
    apps = [app, make_app("app-2"), app]
    groups = [make_group("group-1"), make_group("group-1")]

    operation = make_operation(
        apps,
        groups,
        AssignmentIntent.REQUIRED,
        conflict_policy=ConflictPolicy.SKIP,
        scheduled_date=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    apps.clear()

    assert operation.application_ids() == ["app-1", "app-2"]
    assert [group.id for group in operation.groups] == ["group-1"]
    assert operation.total_operations == 2
    assert operation.applications[0] is not app
    assert operation.applications[0].assignments == app.assignments
    assert operation.conflict_policy is ConflictPolicy.SKIP


def test_empty_operation() -> None:
    assert make_operation([], [make_group()]).is_empty
    assert make_operation([make_app()], []).is_empty
    assert not make_operation([make_app()], [make_group()]).is_empty


def test_override_prefers_app_type_specific_entry() -> None:
    win32 = make_app("app-1", app_type=AppType.WIN32_LOB)
    web = make_app("app-2", app_type=AppType.WEB)
    group = make_group("group-1")
    generic = GroupAssignmentSettings(
        group_id="group-1", group_name="Group", intent=AssignmentIntent.AVAILABLE
    )
    specific = GroupAssignmentSettings(
        group_id="group-1",
        group_name="Group",
        intent=AssignmentIntent.UNINSTALL,
        app_type=AppType.WIN32_LOB,
        assignment_mode=AssignmentMode.EXCLUDE,
    )
    operation = make_operation(
        [win32, web], [group], group_settings=[generic, specific]
    )

    assert operation.override_for(win32, group) == specific
    assert operation.override_for(web, group) == generic
    assert operation.override_for(web, make_group("group-2")) is None
    assert specific.target_type_for(group) is AssignmentTargetType.EXCLUSION_GROUP
    assert generic.target_type_for(group) is AssignmentTargetType.GROUP
