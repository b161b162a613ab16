"""Building (map configuration), level and marker models."""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator

from pyindoormap._constants import BUILDING_TYPE, INDOOR_POSITION_FRAGMENT
from pyindoormap.models._base import IndoorMapBaseModel


class GeoPoint(IndoorMapBaseModel):
    lat: float
    lng: float


class Dimensions(IndoorMapBaseModel):
    width: float
    height: float


class ImageDetails(IndoorMapBaseModel):
    dimensions: Dimensions | None = None
    corners: list[GeoPoint] = Field(default_factory=list)


class Level(IndoorMapBaseModel):
    """One selectable floor of a building."""

    name: str = ""
    binary_id: str | None = None
    """Inventory binary id of the floor-plan image."""
    image_details: ImageDetails = Field(default_factory=ImageDetails)
    markers: list[str] = Field(default_factory=list)
    """Device ids placed on this level, unique, in configured order."""

    @field_validator("markers", mode="before")
    @classmethod
    def _dedupe_markers(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        seen: dict[str, None] = {}
        for item in value:
            seen.setdefault(str(item), None)
        return list(seen)

    @property
    def bounds(self) -> tuple[tuple[float, float], tuple[float, float]]:
        """Image bounds in the simple (y, x) coordinate system of the map."""
        dimensions = self.image_details.dimensions
        if dimensions is None:
            return (0.0, 0.0), (0.0, 0.0)
        return (0.0, 0.0), (dimensions.height, dimensions.width)

    @property
    def center(self) -> tuple[float, float]:
        """Geometric center of the floor plan."""
        (_, _), (height, width) = self.bounds
        return height * 0.5, width * 0.5


class Building(IndoorMapBaseModel):
    """Map configuration: a building with its ordered levels."""

    id: str
    name: str = ""
    type: str = BUILDING_TYPE
    location: str | None = None
    asset_type: str | None = None
    coordinates: list[GeoPoint] = Field(default_factory=list)
    levels: list[Level] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    def level(self, index: int) -> Level:
        return self.levels[index]


def is_map_configuration(payload: Any) -> bool:
    """Whether an inventory payload describes a building map configuration."""
    return isinstance(payload, dict) and "levels" in payload and payload.get("type") == BUILDING_TYPE


class Marker(IndoorMapBaseModel):
    """Spatial representation of one device on a level.

    Only configuration data lives here; runtime telemetry is kept in
    :class:`pyindoormap.state.store.LiveStateStore`.
    """

    device_id: str = Field(alias="id")
    name: str = ""
    position: GeoPoint | None = Field(default=None, alias=INDOOR_POSITION_FRAGMENT)

    @field_validator("device_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value
