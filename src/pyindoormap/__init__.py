"""pyindoormap - Async live-state engine for indoor floor-plan maps."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyindoormap")
except PackageNotFoundError:
    __version__ = "0+local"
from pyindoormap._cache import ImageCache, ImageHandle
from pyindoormap._mqtt import MqttMeasurementStream
from pyindoormap.client import PlatformClient
from pyindoormap.config import IndoorMapConfig
from pyindoormap.controller import ControllerState, LevelSwitchController, MapSurface
from pyindoormap.exceptions import (
    ApiError,
    ControllerStateError,
    ImageLoadError,
    IndoorMapConfigError,
    IndoorMapError,
    LevelNotFoundError,
    MapLoadError,
    MarkerNotFoundError,
    NotFoundError,
    TransportError,
)
from pyindoormap.feeds import FeedHandle, RealtimeFeedManager
from pyindoormap.models import (
    Building,
    Datapoint,
    Event,
    EventThreshold,
    Level,
    Marker,
    Measurement,
    MeasurementThreshold,
    ViewState,
    WidgetConfiguration,
)
from pyindoormap.state import (
    JsonFileKeyValueStore,
    LiveState,
    LiveStateStore,
    ViewStatePersistence,
    resolve,
)

__all__ = [
    "ApiError",
    "Building",
    "ControllerState",
    "ControllerStateError",
    "Datapoint",
    "Event",
    "EventThreshold",
    "FeedHandle",
    "ImageCache",
    "ImageHandle",
    "ImageLoadError",
    "IndoorMapConfig",
    "IndoorMapConfigError",
    "IndoorMapError",
    "JsonFileKeyValueStore",
    "Level",
    "LevelNotFoundError",
    "LevelSwitchController",
    "LiveState",
    "LiveStateStore",
    "MapLoadError",
    "MapSurface",
    "Marker",
    "MarkerNotFoundError",
    "Measurement",
    "MeasurementThreshold",
    "MqttMeasurementStream",
    "NotFoundError",
    "PlatformClient",
    "RealtimeFeedManager",
    "TransportError",
    "ViewState",
    "ViewStatePersistence",
    "WidgetConfiguration",
    "resolve",
]
