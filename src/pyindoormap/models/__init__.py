"""Data models for map configurations, telemetry and render output."""

from pyindoormap.models._base import IndoorMapBaseModel
from pyindoormap.models.building import (
    Building,
    Dimensions,
    GeoPoint,
    ImageDetails,
    Level,
    Marker,
    is_map_configuration,
)
from pyindoormap.models.telemetry import Datapoint, Event, Measurement
from pyindoormap.models.threshold import EventThreshold, MeasurementThreshold, Threshold, parse_thresholds
from pyindoormap.models.view import LegendEntry, LegendView, LevelView, MarkerView, ViewState
from pyindoormap.models.widget import DatapointPopup, Legend, MapSettings, WidgetConfiguration

__all__ = [
    "Building",
    "Datapoint",
    "DatapointPopup",
    "Dimensions",
    "Event",
    "EventThreshold",
    "GeoPoint",
    "ImageDetails",
    "IndoorMapBaseModel",
    "Legend",
    "LegendEntry",
    "LegendView",
    "Level",
    "LevelView",
    "MapSettings",
    "Marker",
    "MarkerView",
    "Measurement",
    "MeasurementThreshold",
    "Threshold",
    "ViewState",
    "WidgetConfiguration",
    "is_map_configuration",
    "parse_thresholds",
]
