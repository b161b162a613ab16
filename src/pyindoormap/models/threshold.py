"""Threshold models.

A threshold maps either a numeric range (``measurement``) or an exact event
match (``event``) to a marker color. Thresholds are kept in one ordered list
per widget; the order is the evaluation priority.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import Field, TypeAdapter, model_validator

from pyindoormap.models._base import IndoorMapBaseModel


class _ThresholdBase(IndoorMapBaseModel):
    id: str
    label: str = ""
    color: str


class MeasurementThreshold(_ThresholdBase):
    """Inclusive ``[min, max]`` range match against the primary measurement."""

    type: Literal["measurement"] = "measurement"
    min: float
    max: float

    @model_validator(mode="after")
    def _check_range(self) -> MeasurementThreshold:
        if self.min > self.max:
            raise ValueError(f"threshold {self.id!r}: min ({self.min}) is greater than max ({self.max})")
        return self

    def matches(self, value: float) -> bool:
        return self.min <= value <= self.max


class EventThreshold(_ThresholdBase):
    """Exact ``(text, event_type)`` match against the primary event.

    A threshold without ``event_type`` only matches events without a type.
    """

    type: Literal["event"] = "event"
    text: str
    event_type: str | None = None

    def matches(self, text: str, event_type: str | None) -> bool:
        return self.text == text and self.event_type == event_type


Threshold = Annotated[MeasurementThreshold | EventThreshold, Field(discriminator="type")]

_THRESHOLD_LIST_ADAPTER: TypeAdapter[list[MeasurementThreshold | EventThreshold]] = TypeAdapter(list[Threshold])


def parse_thresholds(raw: list[dict]) -> list[MeasurementThreshold | EventThreshold]:
    """Parse a stored threshold list, keeping its order."""
    thresholds = _THRESHOLD_LIST_ADAPTER.validate_python(raw)
    ensure_unique_ids(thresholds)
    return thresholds


def ensure_unique_ids(thresholds: list[MeasurementThreshold | EventThreshold]) -> None:
    seen: set[str] = set()
    for threshold in thresholds:
        if threshold.id in seen:
            raise ValueError(f"duplicate threshold id {threshold.id!r}")
        seen.add(threshold.id)
