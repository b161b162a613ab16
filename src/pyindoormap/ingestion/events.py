"""Event payload ingestion and threshold-driven event filtering."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from pyindoormap.models.telemetry import Event
from pyindoormap.models.threshold import EventThreshold

_logger = logging.getLogger(__name__)


def parse_event(payload: Any) -> Event | None:
    if not isinstance(payload, dict):
        return None
    try:
        return Event.model_validate(payload)
    except ValidationError:
        _logger.debug("Event payload failed validation", exc_info=True)
        return None


def event_types_for(thresholds: Iterable[EventThreshold]) -> tuple[str, ...] | None:
    """Event types to poll for, derived from the configured event thresholds.

    Returns ``None`` when at least one threshold has no type: the latest
    event is then fetched without a type filter and matched exactly by the
    resolver.
    """
    types: dict[str, None] = {}
    for threshold in thresholds:
        if threshold.event_type is None:
            return None
        types.setdefault(threshold.event_type, None)
    return tuple(types)
