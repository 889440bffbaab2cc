"""App type utilities for Microsoft Graph mobile app types.

This module maps Microsoft Graph ``@odata.type`` values for mobile apps onto
the :class:`AppType` enum used by the assignment engine, and each app type
onto the device platform it is deployed to.
"""

from __future__ import annotations

from enum import StrEnum


ODATA_PREFIX = "#microsoft.graph."


class DevicePlatform(StrEnum):
    IOS = "ios"
    MACOS = "macOS"
    ANDROID = "android"
    WINDOWS = "windows"
    WEB = "web"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object):
        if isinstance(value, str):
            normalised = value.lower()
            for member in cls:
                if member.value.lower() == normalised:
                    return member
        return None


class AppType(StrEnum):
    """Mobile app types, valued by their Graph ``@odata.type`` suffix."""

    # iOS
    IOS_STORE = "iosStoreApp"
    IOS_LOB = "iosLobApp"
    IOS_VPP = "iosVppApp"
    MANAGED_IOS_STORE = "managedIOSStoreApp"
    MANAGED_IOS_LOB = "managedIOSLobApp"
    # macOS
    MACOS_LOB = "macOSLobApp"
    MACOS_VPP = "macOsVppApp"
    MACOS_PKG = "macOSPkgApp"
    MACOS_DMG = "macOSDmgApp"
    MACOS_OFFICE_SUITE = "macOSOfficeSuiteApp"
    MACOS_EDGE = "macOSMicrosoftEdgeApp"
    MACOS_DEFENDER = "macOSMicrosoftDefenderApp"
    MANAGED_MACOS_STORE = "managedMacOSStoreApp"
    # Android
    ANDROID_STORE = "androidStoreApp"
    ANDROID_LOB = "androidLobApp"
    ANDROID_MANAGED_STORE = "androidManagedStoreApp"
    MANAGED_ANDROID_STORE = "managedAndroidStoreApp"
    MANAGED_ANDROID_LOB = "managedAndroidLobApp"
    # Windows
    WIN32_LOB = "win32LobApp"
    WINDOWS_MSI = "windowsMobileMSI"
    WINGET = "winGetApp"
    WINDOWS_UNIVERSAL_APPX = "windowsUniversalAppX"
    OFFICE_SUITE = "officeSuiteApp"
    STORE_FOR_BUSINESS = "microsoftStoreForBusinessApp"
    WINDOWS_WEB = "windowsWebApp"
    # Cross-platform
    WEB = "webApp"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object):
        if isinstance(value, str):
            normalised = value.replace(ODATA_PREFIX, "").lower()
            for member in cls:
                if member.value.lower() == normalised:
                    return member
        return None

    @classmethod
    def from_odata_type(cls, odata_type: str | None) -> "AppType":
        """Parse a Graph ``@odata.type`` value, falling back to ``UNKNOWN``.

        Examples:
            >>> AppType.from_odata_type("#microsoft.graph.iosVppApp")
            <AppType.IOS_VPP: 'iosVppApp'>
            >>> AppType.from_odata_type("#microsoft.graph.somethingNew")
            <AppType.UNKNOWN: 'unknown'>
        """
        if not odata_type or not isinstance(odata_type, str):
            return cls.UNKNOWN
        try:
            return cls(odata_type)
        except ValueError:
            return cls.UNKNOWN

    @property
    def odata_type(self) -> str | None:
        if self is AppType.UNKNOWN:
            return None
        return f"{ODATA_PREFIX}{self.value}"

    @property
    def platform(self) -> DevicePlatform:
        return APP_TYPE_PLATFORMS.get(self, DevicePlatform.UNKNOWN)

    @property
    def is_vpp(self) -> bool:
        return self in {AppType.IOS_VPP, AppType.MACOS_VPP}

    @property
    def is_web_link(self) -> bool:
        return self in {AppType.WEB, AppType.WINDOWS_WEB}

    @property
    def is_public_store(self) -> bool:
        return self in {AppType.IOS_STORE, AppType.ANDROID_STORE}

    @property
    def display_name(self) -> str:
        return APP_TYPE_DISPLAY_NAMES.get(self, self.value)


APP_TYPE_PLATFORMS: dict[AppType, DevicePlatform] = {
    AppType.IOS_STORE: DevicePlatform.IOS,
    AppType.IOS_LOB: DevicePlatform.IOS,
    AppType.IOS_VPP: DevicePlatform.IOS,
    AppType.MANAGED_IOS_STORE: DevicePlatform.IOS,
    AppType.MANAGED_IOS_LOB: DevicePlatform.IOS,
    AppType.MACOS_LOB: DevicePlatform.MACOS,
    AppType.MACOS_VPP: DevicePlatform.MACOS,
    AppType.MACOS_PKG: DevicePlatform.MACOS,
    AppType.MACOS_DMG: DevicePlatform.MACOS,
    AppType.MACOS_OFFICE_SUITE: DevicePlatform.MACOS,
    AppType.MACOS_EDGE: DevicePlatform.MACOS,
    AppType.MACOS_DEFENDER: DevicePlatform.MACOS,
    AppType.MANAGED_MACOS_STORE: DevicePlatform.MACOS,
    AppType.ANDROID_STORE: DevicePlatform.ANDROID,
    AppType.ANDROID_LOB: DevicePlatform.ANDROID,
    AppType.ANDROID_MANAGED_STORE: DevicePlatform.ANDROID,
    AppType.MANAGED_ANDROID_STORE: DevicePlatform.ANDROID,
    AppType.MANAGED_ANDROID_LOB: DevicePlatform.ANDROID,
    AppType.WIN32_LOB: DevicePlatform.WINDOWS,
    AppType.WINDOWS_MSI: DevicePlatform.WINDOWS,
    AppType.WINGET: DevicePlatform.WINDOWS,
    AppType.WINDOWS_UNIVERSAL_APPX: DevicePlatform.WINDOWS,
    AppType.OFFICE_SUITE: DevicePlatform.WINDOWS,
    AppType.STORE_FOR_BUSINESS: DevicePlatform.WINDOWS,
    AppType.WINDOWS_WEB: DevicePlatform.WINDOWS,
    AppType.WEB: DevicePlatform.WEB,
}

APP_TYPE_DISPLAY_NAMES: dict[AppType, str] = {
    AppType.IOS_STORE: "iOS Store",
    AppType.IOS_LOB: "iOS Line-of-Business",
    AppType.IOS_VPP: "iOS VPP",
    AppType.MANAGED_IOS_STORE: "Managed iOS Store",
    AppType.MANAGED_IOS_LOB: "Managed iOS Line-of-Business",
    AppType.MACOS_LOB: "macOS Line-of-Business",
    AppType.MACOS_VPP: "macOS VPP",
    AppType.MACOS_PKG: "macOS PKG",
    AppType.MACOS_DMG: "macOS DMG",
    AppType.MACOS_OFFICE_SUITE: "macOS Office Suite",
    AppType.MACOS_EDGE: "macOS Edge",
    AppType.MACOS_DEFENDER: "macOS Defender",
    AppType.MANAGED_MACOS_STORE: "Managed macOS Store",
    AppType.ANDROID_STORE: "Android Store",
    AppType.ANDROID_LOB: "Android Line-of-Business",
    AppType.ANDROID_MANAGED_STORE: "Android Managed Store",
    AppType.MANAGED_ANDROID_STORE: "Managed Android Store",
    AppType.MANAGED_ANDROID_LOB: "Managed Android Line-of-Business",
    AppType.WIN32_LOB: "Windows Win32",
    AppType.WINDOWS_MSI: "Windows MSI",
    AppType.WINGET: "Windows WinGet",
    AppType.WINDOWS_UNIVERSAL_APPX: "Windows Universal AppX",
    AppType.OFFICE_SUITE: "Microsoft 365 Apps",
    AppType.STORE_FOR_BUSINESS: "Microsoft Store for Business",
    AppType.WINDOWS_WEB: "Windows Web Link",
    AppType.WEB: "Web Link",
    AppType.UNKNOWN: "Unknown",
}


def platforms_for(app_type: AppType) -> frozenset[DevicePlatform]:
    """Return the device platforms an app type can be deployed to.

    Web links open on any platform, so they report every concrete platform.

    Examples:
        >>> sorted(platforms_for(AppType.IOS_VPP))
        [<DevicePlatform.IOS: 'ios'>]
    """
    if app_type is AppType.WEB:
        return frozenset(
            {
                DevicePlatform.IOS,
                DevicePlatform.MACOS,
                DevicePlatform.ANDROID,
                DevicePlatform.WINDOWS,
                DevicePlatform.WEB,
            }
        )
    return frozenset({app_type.platform})


__all__ = [
    "AppType",
    "DevicePlatform",
    "APP_TYPE_PLATFORMS",
    "APP_TYPE_DISPLAY_NAMES",
    "platforms_for",
]
