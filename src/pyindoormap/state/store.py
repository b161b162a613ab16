"""In-memory live state store.

This is the only component allowed to hold runtime telemetry for devices.
Configuration objects (buildings, markers) never carry live values.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from pyindoormap.models.telemetry import Event, Measurement

_logger = logging.getLogger(__name__)


class LiveStateField(StrEnum):
    PRIMARY_MEASUREMENT = "primary_measurement"
    PRIMARY_EVENT = "primary_event"
    MEASUREMENT = "measurement"


class LiveState(BaseModel):
    """Latest telemetry seen for one device during this session."""

    model_config = ConfigDict(extra="forbid")

    primary_measurement: Measurement | None = None
    primary_event: Event | None = None
    measurements: dict[str, Measurement] = Field(default_factory=dict)
    """Secondary measurements keyed by datapoint key."""


ChangeListener = Callable[[str, LiveStateField], None]


class LiveStateStore:
    """Per-device latest-value cache.

    Updates are overwriting merges keyed by datapoint; nothing is dropped
    except through :meth:`retain` or :meth:`reset`.
    """

    def __init__(self, *, on_change: ChangeListener | None = None) -> None:
        self._devices: dict[str, LiveState] = {}
        self._on_change = on_change

    def set_listener(self, on_change: ChangeListener | None) -> None:
        self._on_change = on_change

    def _device(self, device_id: str) -> LiveState:
        state = self._devices.get(device_id)
        if state is None:
            state = LiveState()
            self._devices[device_id] = state
        return state

    def _notify(self, device_id: str, changed: LiveStateField) -> None:
        listener = self._on_change
        if listener is None:
            return
        try:
            listener(device_id, changed)
        except Exception:
            _logger.warning("Live state listener failed for device %s", device_id, exc_info=True)

    def upsert_measurement(self, device_id: str, datapoint_key: str, measurement: Measurement) -> None:
        self._device(device_id).measurements[datapoint_key] = measurement
        self._notify(device_id, LiveStateField.MEASUREMENT)

    def upsert_primary_measurement(self, device_id: str, measurement: Measurement) -> None:
        self._device(device_id).primary_measurement = measurement
        self._notify(device_id, LiveStateField.PRIMARY_MEASUREMENT)

    def upsert_primary_event(self, device_id: str, event: Event) -> None:
        self._device(device_id).primary_event = event
        self._notify(device_id, LiveStateField.PRIMARY_EVENT)

    def get(self, device_id: str) -> LiveState:
        """Snapshot of a device's live state (empty when nothing is known)."""
        state = self._devices.get(device_id)
        if state is None:
            return LiveState()
        return state.model_copy(deep=True)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    def retain(self, device_ids: Iterable[str]) -> None:
        """Drop entries for every device not in *device_ids*."""
        keep = set(device_ids)
        for device_id in list(self._devices):
            if device_id not in keep:
                del self._devices[device_id]

    def reset(self) -> None:
        self._devices.clear()
