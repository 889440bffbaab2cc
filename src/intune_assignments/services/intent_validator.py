from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from intune_assignments.data.models.assignment import AssignmentIntent, AssignmentTargetType
from intune_assignments.utils.app_types import AppType, DevicePlatform


# Types that require enrollment before they can be installed.
_ENROLLMENT_ONLY_AWE: dict[AppType, str] = {
    AppType.IOS_VPP: "VPP apps require device enrollment for licensing",
    AppType.MACOS_VPP: "VPP apps require device enrollment for licensing",
    AppType.MANAGED_IOS_STORE: "Managed store apps require device enrollment",
    AppType.MANAGED_MACOS_STORE: "Managed store apps require device enrollment",
    AppType.MANAGED_ANDROID_STORE: "Managed store apps require device enrollment",
    AppType.ANDROID_MANAGED_STORE: "Managed store apps require device enrollment",
    AppType.IOS_LOB: "Line-of-business apps require device enrollment for installation",
    AppType.MANAGED_IOS_LOB: "Line-of-business apps require device enrollment for installation",
    AppType.MANAGED_ANDROID_LOB: "Line-of-business apps require device enrollment for installation",
    AppType.ANDROID_LOB: "Line-of-business apps require device enrollment for installation",
    AppType.MACOS_LOB: "Line-of-business apps require device enrollment for installation",
    AppType.MACOS_DMG: "Line-of-business apps require device enrollment for installation",
    AppType.MACOS_PKG: "Line-of-business apps require device enrollment for installation",
}

_FULL_ENROLLMENT_PLATFORMS = frozenset({DevicePlatform.MACOS, DevicePlatform.WINDOWS})


@dataclass(slots=True, frozen=True)
class IntentValidation:
    valid: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.valid


_VALID = IntentValidation(valid=True)


class AssignmentIntentValidator:
    """Rule table deciding which intents Intune accepts per app type and target."""

    @classmethod
    def validate(
        cls,
        intent: AssignmentIntent,
        app_type: AppType,
        target_type: AssignmentTargetType,
        platforms: Iterable[DevicePlatform] = (),
    ) -> IntentValidation:
        reason = cls._app_type_reason(intent, app_type, frozenset(platforms))
        if reason is None:
            reason = cls._target_reason(intent, app_type, target_type)
        if reason is None:
            return _VALID
        return IntentValidation(valid=False, reason=reason)

    @classmethod
    def is_valid(
        cls,
        intent: AssignmentIntent,
        app_type: AppType,
        target_type: AssignmentTargetType,
        platforms: Iterable[DevicePlatform] = (),
    ) -> bool:
        return cls.validate(intent, app_type, target_type, platforms).valid

    @classmethod
    def valid_intents(
        cls,
        app_type: AppType,
        target_type: AssignmentTargetType,
        platforms: Iterable[DevicePlatform] = (),
    ) -> list[AssignmentIntent]:
        platform_set = frozenset(platforms)
        return [
            intent
            for intent in AssignmentIntent
            if cls.is_valid(intent, app_type, target_type, platform_set)
        ]

    @classmethod
    def suggested_intents(
        cls,
        app_type: AppType,
        target_type: AssignmentTargetType,
        preferred: AssignmentIntent | None = None,
    ) -> list[AssignmentIntent]:
        """Valid intents ordered so the closest alternative to ``preferred`` comes first."""

        valid = cls.valid_intents(app_type, target_type)
        if preferred is None:
            return valid
        if preferred in valid:
            return [preferred, *(intent for intent in valid if intent is not preferred)]

        fallback: AssignmentIntent | None = None
        if preferred is AssignmentIntent.AVAILABLE_WITHOUT_ENROLLMENT:
            fallback = AssignmentIntent.AVAILABLE
        elif (
            preferred is AssignmentIntent.AVAILABLE
            and target_type is AssignmentTargetType.ALL_DEVICES
        ):
            fallback = AssignmentIntent.REQUIRED
        if fallback is not None and fallback in valid:
            return [fallback, *(intent for intent in valid if intent is not fallback)]
        return valid

    # ------------------------------------------------------------- Rules

    @staticmethod
    def _app_type_reason(
        intent: AssignmentIntent,
        app_type: AppType,
        platforms: frozenset[DevicePlatform],
    ) -> str | None:
        if app_type is AppType.UNKNOWN:
            if intent in {AssignmentIntent.REQUIRED, AssignmentIntent.AVAILABLE}:
                return None
            return (
                f"'{intent.display_name}' cannot be used for apps of unknown type; "
                "refresh the app catalog and try again"
            )

        match intent:
            case AssignmentIntent.REQUIRED | AssignmentIntent.AVAILABLE:
                return None
            case AssignmentIntent.UNINSTALL:
                if app_type.is_web_link:
                    return "Web apps cannot be uninstalled as they are just web links"
                if app_type.is_public_store:
                    return "Public store apps cannot be silently uninstalled via Intune"
                return None
            case AssignmentIntent.AVAILABLE_WITHOUT_ENROLLMENT:
                if app_type in _ENROLLMENT_ONLY_AWE:
                    return (
                        f"{_ENROLLMENT_ONLY_AWE[app_type]} and cannot be assigned as "
                        "'Available without enrollment'"
                    )
                if not (app_type.is_web_link or app_type.is_public_store):
                    return (
                        f"{app_type.display_name} apps do not support "
                        "'Available without enrollment'"
                    )
                if (
                    not app_type.is_web_link
                    and platforms
                    and platforms <= _FULL_ENROLLMENT_PLATFORMS
                ):
                    return (
                        "macOS and Windows devices require full enrollment; "
                        "'Available without enrollment' is not supported"
                    )
                return None
        return None

    @staticmethod
    def _target_reason(
        intent: AssignmentIntent,
        app_type: AppType,
        target_type: AssignmentTargetType,
    ) -> str | None:
        if intent is AssignmentIntent.AVAILABLE:
            if target_type is AssignmentTargetType.ALL_DEVICES and not app_type.is_vpp:
                return (
                    "'Available' intent is not supported for 'All Devices' target with "
                    "non-VPP apps. Use 'Required' instead for device-wide deployments"
                )
            return None
        if intent is AssignmentIntent.AVAILABLE_WITHOUT_ENROLLMENT:
            if not target_type.is_user_target:
                return (
                    "'Available without enrollment' cannot be used with device-based "
                    "targets as devices must be enrolled to receive assignments"
                )
        return None


__all__ = ["AssignmentIntentValidator", "IntentValidation"]
