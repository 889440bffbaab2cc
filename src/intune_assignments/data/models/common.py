from __future__ import annotations

from datetime import datetime
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class GraphBaseModel(BaseModel):
    """Base class for Graph payload helpers."""

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True,
        extra="ignore",
        frozen=True,
    )

    @classmethod
    def from_graph(cls, payload: dict[str, Any]) -> Self:
        """Hydrate a model from a raw Graph response."""
        return cls.model_validate(payload)

    def to_graph(self) -> dict[str, Any]:
        """Serialize to a Graph-friendly payload."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude_none=True,
            serialize_as_any=True,
        )


class GraphResource(GraphBaseModel):
    """Shared identifier for Graph resources."""

    id: str = Field(alias="id")


class TimestampedResource(GraphResource):
    """Graph resource including creation/update timestamps."""

    created_date_time: datetime | None = Field(default=None, alias="createdDateTime")
    last_modified_date_time: datetime | None = Field(
        default=None, alias="lastModifiedDateTime"
    )


class LocalModel(BaseModel):
    """Engine-owned value serialised with camelCase keys.

    Unlike Graph payloads these are written to the local history file, so
    the JSON shape must round-trip losslessly.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    @classmethod
    def from_json_dict(cls, payload: dict[str, Any]) -> Self:
        return cls.model_validate(payload)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


__all__ = ["GraphBaseModel", "GraphResource", "LocalModel", "TimestampedResource"]
