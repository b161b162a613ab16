from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from pyindoormap._cache import ImageCache
from pyindoormap.config import IndoorMapConfig
from pyindoormap.controller import ControllerState, LevelSwitchController
from pyindoormap.exceptions import (
    ControllerStateError,
    LevelNotFoundError,
    MapLoadError,
    MarkerNotFoundError,
    NotFoundError,
    TransportError,
)
from pyindoormap.feeds import MeasurementCallback
from pyindoormap.models.building import Building, Marker
from pyindoormap.models.telemetry import Datapoint, Measurement
from pyindoormap.models.view import LegendView, LevelView, MarkerView, ViewState
from pyindoormap.models.widget import WidgetConfiguration
from pyindoormap.state.view_state import InMemoryKeyValueStore, JsonFileKeyValueStore, ViewStatePersistence

_TEMPERATURE = "c8y_Temperature.T"
_HUMIDITY = "c8y_Humidity.h"
_PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 8


def _building() -> Building:
    return Building.model_validate(
        {
            "id": "b1",
            "name": "HQ",
            "type": "c8y_Building",
            "levels": [
                {
                    "name": "Ground",
                    "binaryId": "img-0",
                    "imageDetails": {"dimensions": {"width": 200, "height": 100}},
                    "markers": ["1", "2"],
                },
                {
                    "name": "First",
                    "binaryId": "img-1",
                    "imageDetails": {"dimensions": {"width": 400, "height": 300}},
                    "markers": ["2", "3"],
                },
            ],
        }
    )


def _widget() -> WidgetConfiguration:
    return WidgetConfiguration.model_validate(
        {
            "mapConfigurationId": "b1",
            "measurement": {"fragment": "c8y_Temperature", "series": "T"},
            "mapSettings": {"zoomLevel": 2},
            "legend": {
                "title": "Temperature",
                "thresholds": [
                    {"id": "ok", "type": "measurement", "min": 0, "max": 25, "color": "green", "label": "OK"},
                    {"id": "hot", "type": "measurement", "min": 25.01, "max": 100, "color": "red", "label": "Hot"},
                ],
            },
            "datapointsPopup": [{"measurement": {"fragment": "c8y_Humidity", "series": "h"}, "label": "Humidity"}],
        }
    )


@dataclass
class _FakeConfigurationStore:
    building: Building = field(default_factory=_building)
    fail_building: bool = False
    markers: dict[str, Marker] = field(
        default_factory=lambda: {
            "1": Marker.model_validate({"id": "1", "name": "Sensor 1", "c8y_IndoorPosition": {"lat": 10, "lng": 20}}),
            "2": Marker.model_validate({"id": "2", "name": "Sensor 2", "c8y_IndoorPosition": {"lat": 30, "lng": 40}}),
            "3": Marker.model_validate({"id": "3", "name": "Sensor 3"}),
        }
    )

    async def load_building(self, map_configuration_id: str) -> Building:
        if self.fail_building:
            raise NotFoundError(f"{map_configuration_id} not found")
        return self.building

    async def load_markers(self, device_ids: Sequence[str]) -> list[Marker]:
        return [self.markers[device_id] for device_id in device_ids if device_id in self.markers]


@dataclass
class _FakeTelemetry:
    values: dict[tuple[str, str], float] = field(default_factory=dict)
    gates: dict[tuple[str, str], asyncio.Event] = field(default_factory=dict)
    failing: set[str] = field(default_factory=set)
    calls: list[tuple[str, str]] = field(default_factory=list)

    async def latest_measurement(self, device_id: str, datapoint: Datapoint) -> Measurement | None:
        key = (device_id, datapoint.key)
        self.calls.append(key)
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()
        if device_id in self.failing:
            raise TransportError("measurement query failed")
        value = self.values.get(key)
        if value is None:
            return None
        unit = "%" if datapoint.key == _HUMIDITY else "C"
        return Measurement(value=value, unit=unit, datapoint=datapoint)


@dataclass
class _FakeBinaries:
    missing: set[str] = field(default_factory=set)
    calls: list[str] = field(default_factory=list)
    gates: dict[str, asyncio.Event] = field(default_factory=dict)

    async def download_binary(self, binary_id: str) -> bytes:
        self.calls.append(binary_id)
        gate = self.gates.get(binary_id)
        if gate is not None:
            await gate.wait()
        if binary_id in self.missing:
            raise NotFoundError(f"{binary_id} not found")
        return _PNG


@dataclass(eq=False)
class _FakeSubscription:
    stream: _FakeStream
    device_id: str
    callback: MeasurementCallback

    def unsubscribe(self) -> None:
        self.stream.subscriptions.remove(self)


@dataclass
class _FakeStream:
    subscriptions: list[_FakeSubscription] = field(default_factory=list)

    def subscribe(self, device_id: str, callback: MeasurementCallback) -> _FakeSubscription:
        subscription = _FakeSubscription(self, device_id, callback)
        self.subscriptions.append(subscription)
        return subscription

    def publish(self, device_id: str, payload: dict[str, Any]) -> None:
        for subscription in list(self.subscriptions):
            if subscription.device_id == device_id:
                subscription.callback(payload)


@dataclass
class _RecordingSurface:
    calls: list[tuple[str, Any]] = field(default_factory=list)

    def show_level(self, level: LevelView) -> None:
        self.calls.append(("show_level", level))

    def render_markers(self, markers: list[MarkerView]) -> None:
        self.calls.append(("render_markers", markers))

    def update_marker_color(self, device_id: str, color: str) -> None:
        self.calls.append(("update_marker_color", (device_id, color)))

    def render_legend(self, legend: LegendView | None) -> None:
        self.calls.append(("render_legend", legend))

    def open_popup(self, device_id: str, content: str) -> None:
        self.calls.append(("open_popup", (device_id, content)))

    def update_popup(self, device_id: str, content: str) -> None:
        self.calls.append(("update_popup", (device_id, content)))

    def of(self, name: str) -> list[Any]:
        return [arg for call, arg in self.calls if call == name]


@dataclass
class _Harness:
    controller: LevelSwitchController
    configuration: _FakeConfigurationStore
    telemetry: _FakeTelemetry
    binaries: _FakeBinaries
    stream: _FakeStream
    surface: _RecordingSurface
    images: ImageCache


def _harness(tmp_path: Path, *, view_states: ViewStatePersistence | None = None) -> _Harness:
    configuration = _FakeConfigurationStore()
    telemetry = _FakeTelemetry(
        values={("1", _TEMPERATURE): 20.0, ("2", _TEMPERATURE): 30.0, ("3", _TEMPERATURE): 5.0, ("1", _HUMIDITY): 40.0}
    )
    binaries = _FakeBinaries()
    stream = _FakeStream()
    surface = _RecordingSurface()
    images = ImageCache(tmp_path / "images")
    controller = LevelSwitchController(
        _widget(),
        configuration=configuration,
        telemetry=telemetry,
        surface=surface,
        stream=stream,
        binaries=binaries,
        view_states=view_states or ViewStatePersistence(InMemoryKeyValueStore()),
        image_cache=images,
        config=IndoorMapConfig(event_poll_interval=0.01),
    )
    return _Harness(controller, configuration, telemetry, binaries, stream, surface, images)


def _measurement_payload(fragment: str, series: str, value: float) -> dict[str, Any]:
    return {"time": "2026-01-01T10:00:00.000Z", fragment: {series: {"value": value, "unit": "C"}}}


@pytest.mark.asyncio
async def test_start_renders_level_with_resolved_colors(tmp_path: Path) -> None:
    h = _harness(tmp_path)
    assert h.controller.state is ControllerState.IDLE

    await h.controller.start()

    assert h.controller.state is ControllerState.ACTIVE
    assert h.controller.level_index == 0
    (level,) = h.surface.of("show_level")
    assert level.name == "Ground"
    assert level.bounds == ((0.0, 0.0), (100.0, 200.0))
    assert level.image_url is not None and level.image_url.startswith("file://")
    assert level.view == ViewState(zoom=2.0, center=(50.0, 100.0))

    (markers,) = h.surface.of("render_markers")
    assert [(m.device_id, m.color, m.position) for m in markers] == [
        ("1", "green", (10.0, 20.0)),
        ("2", "red", (30.0, 40.0)),
    ]
    (legend,) = h.surface.of("render_legend")
    assert legend is not None
    assert legend.title == "Temperature"
    assert [(e.label, e.color) for e in legend.entries] == [("OK", "green"), ("Hot", "red")]
    assert sorted(s.device_id for s in h.stream.subscriptions) == ["1", "2"]
    await h.controller.aclose()


@pytest.mark.asyncio
async def test_measurement_failure_for_one_device_is_tolerated(tmp_path: Path) -> None:
    h = _harness(tmp_path)
    h.telemetry.failing.add("2")

    await h.controller.start()

    assert h.controller.marker_color("1") == "green"
    assert h.controller.marker_color("2") == "#1776BF"
    await h.controller.aclose()


@pytest.mark.asyncio
async def test_image_failure_renders_without_background(tmp_path: Path) -> None:
    h = _harness(tmp_path)
    h.binaries.missing.add("img-0")

    await h.controller.start()

    (level,) = h.surface.of("show_level")
    assert level.image_url is None
    assert h.controller.state is ControllerState.ACTIVE
    assert len(h.surface.of("render_markers")) == 1
    await h.controller.aclose()


@pytest.mark.asyncio
async def test_initial_load_failure_raises_and_stays_loading(tmp_path: Path) -> None:
    h = _harness(tmp_path)
    h.configuration.fail_building = True

    with pytest.raises(MapLoadError) as exc_info:
        await h.controller.start()

    assert isinstance(exc_info.value.__cause__, NotFoundError)
    assert h.controller.state is ControllerState.LOADING
    assert h.surface.calls == []

    h.configuration.fail_building = False
    await h.controller.start()
    assert h.controller.state is ControllerState.ACTIVE
    await h.controller.aclose()


@pytest.mark.asyncio
async def test_building_without_levels_fails_to_load(tmp_path: Path) -> None:
    h = _harness(tmp_path)
    h.configuration.building = Building(id="b1", levels=[])

    with pytest.raises(MapLoadError):
        await h.controller.start()
    assert h.surface.calls == []


@pytest.mark.asyncio
async def test_switch_level_replaces_scope(tmp_path: Path) -> None:
    h = _harness(tmp_path)
    await h.controller.start()
    first_handle = h.controller.feed_handle
    h.stream.publish("1", _measurement_payload("c8y_Humidity", "h", 55))

    await h.controller.switch_level(1)

    assert first_handle is not None and not first_handle.active
    assert h.controller.level_index == 1
    assert sorted(s.device_id for s in h.stream.subscriptions) == ["2", "3"]
    assert h.controller.live_state("1").measurements == {}
    show_calls = h.surface.of("show_level")
    assert [level.name for level in show_calls] == ["Ground", "First"]
    assert show_calls[1].view == ViewState(zoom=2.0, center=(150.0, 200.0))
    # Device 3 has no indoor position and is not drawn.
    assert [m.device_id for m in h.surface.of("render_markers")[1]] == ["2"]
    assert h.controller.marker_color("3") == "green"

    with pytest.raises(LevelNotFoundError):
        await h.controller.switch_level(5)
    await h.controller.aclose()


@pytest.mark.asyncio
async def test_superseded_activation_renders_nothing(tmp_path: Path) -> None:
    h = _harness(tmp_path)
    await h.controller.start()
    gate = asyncio.Event()
    h.telemetry.gates[("3", _TEMPERATURE)] = gate

    slow_switch = asyncio.create_task(h.controller.switch_level(1))
    await asyncio.sleep(0.01)
    assert h.controller.state is ControllerState.LOADING

    await h.controller.switch_level(0)
    gate.set()
    await slow_switch

    assert h.controller.level_index == 0
    assert h.controller.state is ControllerState.ACTIVE
    assert [level.name for level in h.surface.of("show_level")] == ["Ground", "Ground"]
    assert sorted(s.device_id for s in h.stream.subscriptions) == ["1", "2"]
    assert h.controller.live_state("3").primary_measurement is None
    await h.controller.aclose()


@pytest.mark.asyncio
async def test_live_update_pushes_color_only_on_change(tmp_path: Path) -> None:
    h = _harness(tmp_path)
    await h.controller.start()

    h.stream.publish("1", _measurement_payload("c8y_Temperature", "T", 50))
    h.stream.publish("1", _measurement_payload("c8y_Temperature", "T", 60))
    h.stream.publish("2", _measurement_payload("c8y_Temperature", "T", 70))

    assert h.surface.of("update_marker_color") == [("1", "red")]
    assert h.controller.marker_color("1") == "red"
    await h.controller.aclose()


@pytest.mark.asyncio
async def test_popup_loads_secondary_values_once(tmp_path: Path) -> None:
    h = _harness(tmp_path)
    await h.controller.start()

    content = await h.controller.open_popup("1")

    (opened,) = h.surface.of("open_popup")
    assert opened[0] == "1"
    assert '<a href="#/device/1"><h5>Sensor 1</h5></a><hr />' in opened[1]
    assert "Loading measurements..." in opened[1]
    assert content is not None
    assert '<p>Humidity: <span class="measurement-value">40%</span></p>' in content
    assert h.surface.of("update_popup") == [("1", content)]

    calls = len(h.telemetry.calls)
    again = await h.controller.open_popup("1")
    assert again == content
    assert len(h.telemetry.calls) == calls
    await h.controller.aclose()


@pytest.mark.asyncio
async def test_open_popup_refreshes_on_live_secondary_update(tmp_path: Path) -> None:
    h = _harness(tmp_path)
    await h.controller.start()
    await h.controller.open_popup("1")

    h.stream.publish("1", {"c8y_Humidity": {"h": {"value": 41, "unit": "%"}}})
    assert "41%" in h.surface.of("update_popup")[-1][1]

    h.controller.close_popup()
    h.stream.publish("1", {"c8y_Humidity": {"h": {"value": 42, "unit": "%"}}})
    assert "42%" not in h.surface.of("update_popup")[-1][1]
    await h.controller.aclose()


@pytest.mark.asyncio
async def test_popup_result_after_level_switch_is_discarded(tmp_path: Path) -> None:
    h = _harness(tmp_path)
    await h.controller.start()
    gate = asyncio.Event()
    h.telemetry.gates[("1", _HUMIDITY)] = gate

    popup = asyncio.create_task(h.controller.open_popup("1"))
    await asyncio.sleep(0.01)
    await h.controller.switch_level(1)
    gate.set()

    assert await popup is None
    assert h.surface.of("update_popup") == []
    assert h.controller.live_state("1").measurements == {}
    await h.controller.aclose()


@pytest.mark.asyncio
async def test_popup_requires_marker_on_active_level(tmp_path: Path) -> None:
    h = _harness(tmp_path)
    with pytest.raises(ControllerStateError):
        await h.controller.open_popup("1")

    await h.controller.start()
    with pytest.raises(MarkerNotFoundError):
        await h.controller.open_popup("3")
    await h.controller.aclose()


@pytest.mark.asyncio
async def test_viewport_is_restored_per_level(tmp_path: Path) -> None:
    h = _harness(tmp_path)
    await h.controller.start()

    h.controller.on_viewport_changed(3.5, (12.0, 34.0))
    await h.controller.switch_level(1)
    await h.controller.switch_level(0)

    views = [level.view for level in h.surface.of("show_level")]
    assert views[-1] == ViewState(zoom=3.5, center=(12.0, 34.0))
    assert views[1] == ViewState(zoom=2.0, center=(150.0, 200.0))
    await h.controller.aclose()


@pytest.mark.asyncio
async def test_aclose_disposes_session(tmp_path: Path) -> None:
    path = tmp_path / "views.json"
    h = _harness(tmp_path, view_states=ViewStatePersistence(JsonFileKeyValueStore(path)))

    async with h.controller as controller:
        await controller.start()
        controller.on_viewport_changed(1.0, (1.0, 2.0))
        assert "img-0" in h.images

    assert h.controller.state is ControllerState.DISPOSED
    assert h.images.closed
    assert len(h.images) == 0
    assert h.stream.subscriptions == []
    assert path.exists()

    await h.controller.aclose()
    with pytest.raises(ControllerStateError):
        await h.controller.switch_level(0)
    with pytest.raises(ControllerStateError):
        await h.controller.start()
    h.controller.on_viewport_changed(9.0, (0.0, 0.0))


@pytest.mark.asyncio
async def test_aclose_during_initial_image_load_is_quiet(tmp_path: Path) -> None:
    h = _harness(tmp_path)
    gate = asyncio.Event()
    h.binaries.gates["img-0"] = gate

    start = asyncio.create_task(h.controller.start())
    await asyncio.sleep(0.01)
    assert h.controller.state is ControllerState.LOADING

    await h.controller.aclose()
    gate.set()
    await start

    assert h.controller.state is ControllerState.DISPOSED
    assert h.surface.calls == []
    assert h.stream.subscriptions == []
    assert h.controller.feed_handle is None


@pytest.mark.asyncio
async def test_aclose_during_level_switch_is_quiet(tmp_path: Path) -> None:
    h = _harness(tmp_path)
    await h.controller.start()
    gate = asyncio.Event()
    h.binaries.gates["img-1"] = gate

    switch = asyncio.create_task(h.controller.switch_level(1))
    await asyncio.sleep(0.01)

    await h.controller.aclose()
    gate.set()
    await switch

    assert h.controller.state is ControllerState.DISPOSED
    assert [level.name for level in h.surface.of("show_level")] == ["Ground"]
    assert h.stream.subscriptions == []


@pytest.mark.asyncio
async def test_switch_level_before_start_raises(tmp_path: Path) -> None:
    h = _harness(tmp_path)
    with pytest.raises(ControllerStateError):
        await h.controller.switch_level(0)
    assert h.controller.state is ControllerState.IDLE
    assert h.surface.calls == []
