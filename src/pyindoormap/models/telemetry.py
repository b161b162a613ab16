"""Telemetry models: datapoints, measurements and events."""

from __future__ import annotations

from datetime import datetime

from pydantic import field_validator

from pyindoormap.models._base import IndoorMapBaseModel


class Datapoint(IndoorMapBaseModel):
    """A measurement stream addressed by ``fragment.series``."""

    fragment: str
    series: str

    @property
    def key(self) -> str:
        """Stable identity of the datapoint, e.g. ``"c8y_Temperature.T"``."""
        return f"{self.fragment}.{self.series}"

    @classmethod
    def from_key(cls, key: str) -> Datapoint:
        fragment, sep, series = key.partition(".")
        if not sep or not fragment or not series:
            raise ValueError(f"datapoint key must look like 'fragment.series', got {key!r}")
        return cls(fragment=fragment, series=series)


class Measurement(IndoorMapBaseModel):
    """Single value of one datapoint."""

    value: float
    unit: str | None = None
    datapoint: Datapoint
    time: datetime | None = None

    def display_value(self) -> str:
        """Value with unit appended, as shown in marker popups."""
        value = int(self.value) if self.value.is_integer() else self.value
        if self.unit:
            return f"{value}{self.unit}"
        return f"{value}"


class Event(IndoorMapBaseModel):
    """Platform event (e.g. a door contact opening)."""

    id: str | None = None
    type: str | None = None
    text: str = ""
    time: datetime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value

    def same_as(self, other: Event | None) -> bool:
        """Whether *other* describes the same platform event."""
        if other is None:
            return False
        if self.id is not None and other.id is not None:
            return self.id == other.id
        return (self.type, self.text, self.time) == (other.type, other.text, other.time)
