"""Deterministic marker color resolution.

This module contains *no* state. Colors are a pure function of a device's
live state and the ordered threshold list.
"""

from __future__ import annotations

from collections.abc import Sequence

from pyindoormap._constants import DEFAULT_MARKER_COLOR
from pyindoormap.models.threshold import EventThreshold, MeasurementThreshold
from pyindoormap.state.store import LiveState


def match_measurement(
    live_state: LiveState,
    thresholds: Sequence[MeasurementThreshold | EventThreshold],
) -> int | None:
    """Index of the first measurement threshold containing the primary value."""
    measurement = live_state.primary_measurement
    if measurement is None:
        return None
    for index, threshold in enumerate(thresholds):
        if isinstance(threshold, MeasurementThreshold) and threshold.matches(measurement.value):
            return index
    return None


def match_event(
    live_state: LiveState,
    thresholds: Sequence[MeasurementThreshold | EventThreshold],
) -> int | None:
    """Index of the first event threshold matching the primary event."""
    event = live_state.primary_event
    if event is None:
        return None
    for index, threshold in enumerate(thresholds):
        if isinstance(threshold, EventThreshold) and threshold.matches(event.text, event.type):
            return index
    return None


def resolve(
    live_state: LiveState | None,
    thresholds: Sequence[MeasurementThreshold | EventThreshold],
    default_color: str = DEFAULT_MARKER_COLOR,
) -> str:
    """Return the marker color for *live_state*.

    Policy:
    - at most one measurement match and one event match, each the first of
      its kind in list order;
    - when both match, the one with the lower index in the combined list wins;
    - nothing matches (or no live state): *default_color*.
    """
    if live_state is None or not thresholds:
        return default_color

    candidates = [
        index
        for index in (match_measurement(live_state, thresholds), match_event(live_state, thresholds))
        if index is not None
    ]
    if not candidates:
        return default_color
    return thresholds[min(candidates)].color
