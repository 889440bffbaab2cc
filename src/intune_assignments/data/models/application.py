from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, ConfigDict, Field, model_validator

from intune_assignments.utils.app_types import AppType, DevicePlatform, platforms_for

from .assignment import MobileAppAssignment
from .common import TimestampedResource


class MobileApp(TimestampedResource):
    """Managed application as seen by the assignment engine.

    ``assignments`` is ``None`` until the current assignment set has been
    fetched; an empty tuple means the app is known to have none.
    """

    model_config = ConfigDict(use_enum_values=False)

    display_name: str = Field(
        alias="displayName",
        validation_alias=AliasChoices("displayName", "name"),
    )
    publisher: str | None = None
    app_type: AppType = Field(default=AppType.UNKNOWN, alias="appType")
    supported_platforms: frozenset[DevicePlatform] = Field(
        default_factory=frozenset, alias="supportedPlatforms"
    )
    assignments: tuple[MobileAppAssignment, ...] | None = None

    @model_validator(mode="before")
    @classmethod
    def _derive_type_and_platforms(cls, data: Any) -> Any:
        """Derive ``app_type`` from ``@odata.type`` and platforms from the type.

        Graph returns ``@odata.type`` like ``#microsoft.graph.iosStoreApp``
        which is enough to know both the app type and where it can run.
        """
        if not isinstance(data, dict):
            return data

        data = dict(data)
        if data.get("appType") is None and data.get("app_type") is None:
            data["appType"] = AppType.from_odata_type(data.get("@odata.type"))

        raw_type = data.get("appType", data.get("app_type"))
        if not data.get("supportedPlatforms") and not data.get("supported_platforms"):
            app_type = raw_type if isinstance(raw_type, AppType) else AppType.from_odata_type(
                str(raw_type)
            )
            data["supportedPlatforms"] = platforms_for(app_type)
        return data

    @property
    def assignments_known(self) -> bool:
        return self.assignments is not None

    def with_assignments(self, assignments: list[MobileAppAssignment]) -> "MobileApp":
        return self.model_copy(update={"assignments": tuple(assignments)})


__all__ = ["MobileApp"]
