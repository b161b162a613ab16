"""Level switch orchestration.

:class:`LevelSwitchController` owns one viewing session of a building map:
the live state store, the image cache and the realtime feeds. It moves
through ``IDLE -> LOADING -> ACTIVE -> LOADING -> ACTIVE ... -> DISPOSED``.

Every activation increments a generation counter. Anything awaited during
an activation, and every popup fetch, captures the generation first and
drops its result when the counter has moved on.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Sequence
from enum import StrEnum
from typing import Any, Protocol

from pyindoormap._cache import ImageCache
from pyindoormap.config import IndoorMapConfig
from pyindoormap.exceptions import (
    ControllerStateError,
    LevelNotFoundError,
    MapLoadError,
    MarkerNotFoundError,
)
from pyindoormap.feeds import EventSource, FeedHandle, MeasurementStream, RealtimeFeedManager
from pyindoormap.models.building import Building, Level, Marker
from pyindoormap.models.telemetry import Datapoint, Measurement
from pyindoormap.models.view import LegendView, LevelView, MarkerView, ViewState
from pyindoormap.models.widget import WidgetConfiguration
from pyindoormap.render import build_legend, popup_content
from pyindoormap.state.resolver import resolve
from pyindoormap.state.store import LiveState, LiveStateField, LiveStateStore
from pyindoormap.state.view_state import ViewStatePersistence

_logger = logging.getLogger(__name__)


class ConfigurationStore(Protocol):
    async def load_building(self, map_configuration_id: str) -> Building: ...

    async def load_markers(self, device_ids: Sequence[str]) -> list[Marker]: ...


class TelemetryService(Protocol):
    async def latest_measurement(self, device_id: str, datapoint: Datapoint) -> Measurement | None: ...


class BinaryService(Protocol):
    async def download_binary(self, binary_id: str) -> bytes: ...


class MapSurface(Protocol):
    """External 2-D map surface consuming render output."""

    def show_level(self, level: LevelView) -> None: ...

    def render_markers(self, markers: list[MarkerView]) -> None: ...

    def update_marker_color(self, device_id: str, color: str) -> None: ...

    def render_legend(self, legend: LegendView | None) -> None: ...

    def open_popup(self, device_id: str, content: str) -> None: ...

    def update_popup(self, device_id: str, content: str) -> None: ...


class ControllerState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    ACTIVE = "active"
    DISPOSED = "disposed"


class LevelSwitchController:
    """Keeps marker state of the active level correct across level switches.

    Usage::

        async with LevelSwitchController(widget, configuration=client, telemetry=client,
                                         surface=surface) as controller:
            await controller.start()
            await controller.switch_level(1)
    """

    def __init__(
        self,
        widget: WidgetConfiguration,
        *,
        configuration: ConfigurationStore,
        telemetry: TelemetryService,
        surface: MapSurface,
        stream: MeasurementStream | None = None,
        events: EventSource | None = None,
        binaries: BinaryService | None = None,
        view_states: ViewStatePersistence | None = None,
        image_cache: ImageCache | None = None,
        config: IndoorMapConfig | None = None,
    ) -> None:
        self._widget = widget
        self._config = config or IndoorMapConfig()
        self._configuration = configuration
        self._telemetry = telemetry
        self._surface = surface
        self._binaries = binaries
        self._view_states = view_states or ViewStatePersistence()
        self._images = image_cache or ImageCache()
        self._store = LiveStateStore(on_change=self._on_live_change)
        self._feeds = RealtimeFeedManager(
            self._store,
            stream=stream,
            events=events,
            poll_interval=self._config.event_poll_interval,
        )

        self._state = ControllerState.IDLE
        self._generation = 0
        self._building: Building | None = None
        self._markers_by_level: list[dict[str, Marker]] = []
        self._level_index: int | None = None
        self._feed_handle: FeedHandle | None = None
        self._colors: dict[str, str] = {}
        self._popup_device: str | None = None
        self._popups_loaded: set[str] = set()
        self._popup_refresh_suspended = False

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> LevelSwitchController:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def level_index(self) -> int | None:
        return self._level_index

    @property
    def building(self) -> Building | None:
        return self._building

    @property
    def feed_handle(self) -> FeedHandle | None:
        return self._feed_handle

    def markers(self) -> list[Marker]:
        """Markers of the active level."""
        return list(self._active_markers().values())

    def live_state(self, device_id: str) -> LiveState:
        return self._store.get(device_id)

    def marker_color(self, device_id: str) -> str | None:
        return self._colors.get(device_id)

    def _active_markers(self) -> dict[str, Marker]:
        if self._level_index is None or self._level_index >= len(self._markers_by_level):
            return {}
        return self._markers_by_level[self._level_index]

    def _resolve(self, device_id: str) -> str:
        return resolve(self._store.get(device_id), self._widget.thresholds, self._config.default_marker_color)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(self, level_index: int = 0) -> None:
        """Initial mount: load the building and its markers, then activate a level.

        Raises :class:`MapLoadError` when the map configuration or its
        markers cannot be loaded; the controller then stays in ``LOADING``
        and ``start`` may be called again.
        """
        if self._state is ControllerState.DISPOSED:
            raise ControllerStateError("Controller is disposed")
        if self._building is not None:
            raise ControllerStateError("Controller already started; use switch_level()")

        self._state = ControllerState.LOADING
        generation = self._generation
        map_configuration_id = self._widget.map_configuration_id
        try:
            building = await self._configuration.load_building(map_configuration_id)
            marker_lists = await asyncio.gather(
                *(self._configuration.load_markers(level.markers) for level in building.levels)
            )
        except Exception as exc:
            raise MapLoadError(f"Could not load map configuration {map_configuration_id}: {exc}") from exc

        if generation != self._generation:
            _logger.debug("Map configuration %s loaded after teardown; ignoring", map_configuration_id)
            return
        if not building.levels:
            raise MapLoadError(f"Map configuration {map_configuration_id} has no levels")

        self._building = building
        self._markers_by_level = [{marker.device_id: marker for marker in markers} for markers in marker_lists]
        _logger.debug(
            "Building %s loaded levels=%d markers=%d",
            building.id,
            len(building.levels),
            sum(len(markers) for markers in self._markers_by_level),
        )
        await self._activate(building, level_index)

    async def switch_level(self, level_index: int) -> None:
        """Tear down the active level and activate *level_index*."""
        if self._state is ControllerState.DISPOSED:
            raise ControllerStateError("Controller is disposed")
        building = self._building
        if building is None:
            raise ControllerStateError("Controller not started")
        await self._activate(building, level_index)

    async def _activate(self, building: Building, level_index: int) -> None:
        if not 0 <= level_index < len(building.levels):
            raise LevelNotFoundError(level_index, len(building.levels))

        # Teardown of the previous scope completes before anything is awaited.
        if self._feed_handle is not None:
            self._feeds.stop(self._feed_handle)
            self._feed_handle = None
        self._generation += 1
        generation = self._generation
        self._state = ControllerState.LOADING
        self._level_index = level_index
        self._popup_device = None
        self._popups_loaded.clear()
        self._colors = {}

        level = building.level(level_index)
        markers = self._markers_by_level[level_index]
        device_ids = list(markers)
        self._store.retain(device_ids)
        _logger.debug("Activating level %s (%s) generation=%s", level_index, level.name, generation)

        measurements, image_url = await asyncio.gather(
            self._load_primary_measurements(device_ids),
            self._load_level_image(level),
        )
        if generation != self._generation:
            _logger.debug("Activation of level %s superseded", level_index)
            return

        for device_id, measurement in measurements.items():
            self._store.upsert_primary_measurement(device_id, measurement)
        self._colors = {device_id: self._resolve(device_id) for device_id in device_ids}

        # LOADING -> ACTIVE
        self._feed_handle = self._feeds.start(
            device_ids,
            self._widget.measurement,
            self._widget.secondary_datapoints,
            self._widget.event_thresholds,
        )
        self._state = ControllerState.ACTIVE

        view = self._view_states.load(building.id, level_index)
        if view is None:
            view = ViewState(zoom=self._widget.default_zoom, center=level.center)
        self._surface.show_level(
            LevelView(
                level_index=level_index,
                name=level.name,
                image_url=image_url,
                bounds=level.bounds,
                view=view,
            )
        )
        self._surface.render_markers(
            [
                MarkerView(
                    device_id=marker.device_id,
                    name=marker.name,
                    position=(marker.position.lat, marker.position.lng),
                    color=self._colors[marker.device_id],
                )
                for marker in markers.values()
                if marker.position is not None
            ]
        )
        self._surface.render_legend(build_legend(self._widget))

    async def _load_primary_measurements(self, device_ids: list[str]) -> dict[str, Measurement]:
        datapoint = self._widget.measurement
        results = await asyncio.gather(
            *(self._telemetry.latest_measurement(device_id, datapoint) for device_id in device_ids),
            return_exceptions=True,
        )
        loaded: dict[str, Measurement] = {}
        for device_id, result in zip(device_ids, results, strict=True):
            if isinstance(result, BaseException):
                _logger.warning(
                    "Latest %s for device %s could not be loaded",
                    datapoint.key,
                    device_id,
                    exc_info=result,
                )
                continue
            if result is not None:
                loaded[device_id] = result
        return loaded

    async def _load_level_image(self, level: Level) -> str | None:
        if not level.binary_id or self._binaries is None:
            return None
        loader = functools.partial(self._binaries.download_binary, level.binary_id)
        try:
            return await self._images.acquire(level.binary_id, loader)
        except Exception:
            if self._images.closed:
                _logger.debug("Image %s load abandoned: controller disposed", level.binary_id)
                return None
            _logger.warning(
                "Image %s for level %s could not be loaded; rendering without background",
                level.binary_id,
                level.name,
                exc_info=True,
            )
            return None

    async def aclose(self) -> None:
        """Dispose the session: stop feeds, release images, flush view state."""
        if self._state is ControllerState.DISPOSED:
            return
        self._state = ControllerState.DISPOSED
        self._generation += 1
        self._popup_device = None

        if self._feed_handle is not None:
            self._feeds.stop(self._feed_handle)
            self._feed_handle = None
        await self._feeds.shutdown()
        self._images.close()
        self._store.reset()
        self._view_states.flush()
        _logger.debug("Controller disposed")

    # ------------------------------------------------------------------
    # Live updates
    # ------------------------------------------------------------------

    def _on_live_change(self, device_id: str, changed: LiveStateField) -> None:
        if self._state is not ControllerState.ACTIVE:
            return
        markers = self._active_markers()
        if device_id not in markers:
            return

        if changed is LiveStateField.MEASUREMENT:
            if device_id == self._popup_device and not self._popup_refresh_suspended:
                content = popup_content(markers[device_id], self._store.get(device_id), self._widget)
                self._surface.update_popup(device_id, content)
            return

        color = self._resolve(device_id)
        if self._colors.get(device_id) == color:
            return
        self._colors[device_id] = color
        self._surface.update_marker_color(device_id, color)

    # ------------------------------------------------------------------
    # Popups and viewport
    # ------------------------------------------------------------------

    async def open_popup(self, device_id: str) -> str | None:
        """Marker click: show the popup and load secondary datapoint values.

        Returns the final popup content, or ``None`` when the level changed
        while values were loading (the result is then discarded).
        """
        if self._state is not ControllerState.ACTIVE:
            raise ControllerStateError(f"Cannot open popup while {self._state.value}")
        marker = self._active_markers().get(device_id)
        if marker is None:
            raise MarkerNotFoundError(device_id)

        generation = self._generation
        self._popup_device = device_id
        content = popup_content(marker, self._store.get(device_id), self._widget)
        self._surface.open_popup(device_id, content)

        datapoints = self._widget.secondary_datapoints
        if device_id in self._popups_loaded or not datapoints:
            return content

        results = await asyncio.gather(
            *(self._telemetry.latest_measurement(device_id, datapoint) for datapoint in datapoints),
            return_exceptions=True,
        )
        if generation != self._generation:
            _logger.debug("Discarding popup values for device %s: level changed", device_id)
            return None

        failed = False
        self._popup_refresh_suspended = True
        try:
            for datapoint, result in zip(datapoints, results, strict=True):
                if isinstance(result, BaseException):
                    failed = True
                    _logger.warning(
                        "Latest %s for device %s could not be loaded",
                        datapoint.key,
                        device_id,
                        exc_info=result,
                    )
                    continue
                if result is not None:
                    self._store.upsert_measurement(device_id, datapoint.key, result)
        finally:
            self._popup_refresh_suspended = False
        if not failed:
            self._popups_loaded.add(device_id)

        content = popup_content(marker, self._store.get(device_id), self._widget)
        if self._popup_device == device_id:
            self._surface.update_popup(device_id, content)
        return content

    def close_popup(self) -> None:
        self._popup_device = None

    def on_viewport_changed(self, zoom: float, center: tuple[float, float]) -> None:
        """Persist zoom/pan of the active level (ignored unless ``ACTIVE``)."""
        if self._state is not ControllerState.ACTIVE or self._building is None or self._level_index is None:
            return
        self._view_states.save(self._building.id, self._level_index, ViewState(zoom=zoom, center=center))
