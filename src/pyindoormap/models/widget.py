"""Persisted widget configuration."""

from __future__ import annotations

from pydantic import Field, field_validator

from pyindoormap._constants import DEFAULT_ZOOM_LEVEL
from pyindoormap.models._base import IndoorMapBaseModel
from pyindoormap.models.telemetry import Datapoint
from pyindoormap.models.threshold import EventThreshold, MeasurementThreshold, Threshold, ensure_unique_ids


class MapSettings(IndoorMapBaseModel):
    zoom_level: float = DEFAULT_ZOOM_LEVEL


class Legend(IndoorMapBaseModel):
    title: str = ""
    thresholds: list[Threshold] = Field(default_factory=list)

    @field_validator("thresholds")
    @classmethod
    def _unique_ids(
        cls, value: list[MeasurementThreshold | EventThreshold]
    ) -> list[MeasurementThreshold | EventThreshold]:
        ensure_unique_ids(value)
        return value


class DatapointPopup(IndoorMapBaseModel):
    """Secondary datapoint shown in a marker popup."""

    measurement: Datapoint
    label: str = ""


class WidgetConfiguration(IndoorMapBaseModel):
    """Configuration of one map widget instance.

    ``measurement`` is the primary datapoint driving marker colors;
    ``datapoints_popup`` lists secondary datapoints only shown in popups.
    """

    map_configuration_id: str
    measurement: Datapoint
    map_settings: MapSettings = Field(default_factory=MapSettings)
    legend: Legend | None = None
    datapoints_popup: list[DatapointPopup] = Field(default_factory=list)

    @property
    def thresholds(self) -> list[MeasurementThreshold | EventThreshold]:
        if self.legend is None:
            return []
        return list(self.legend.thresholds)

    @property
    def event_thresholds(self) -> list[EventThreshold]:
        return [t for t in self.thresholds if isinstance(t, EventThreshold)]

    @property
    def secondary_datapoints(self) -> list[Datapoint]:
        return [popup.measurement for popup in self.datapoints_popup]

    @property
    def default_zoom(self) -> float:
        return self.map_settings.zoom_level
