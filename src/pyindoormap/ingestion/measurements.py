"""Measurement payload ingestion.

Platform measurements carry values nested as
``{fragment: {series: {"value": ..., "unit": ...}}}``; a single payload may
hold several datapoints.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from pyindoormap.ingestion.normalize import get_path, has_path, safe_float, safe_str
from pyindoormap.models.telemetry import Datapoint, Measurement

_logger = logging.getLogger(__name__)


def extract_measurement(payload: Any, datapoint: Datapoint) -> Measurement | None:
    """Extract one datapoint's value from a measurement payload.

    Returns ``None`` when the payload does not carry the datapoint or its
    value is not numeric.
    """
    if not has_path(payload, datapoint.key):
        return None
    value = safe_float(get_path(payload, f"{datapoint.key}.value"))
    if value is None:
        _logger.debug("Measurement for %s has no numeric value", datapoint.key)
        return None
    try:
        return Measurement(
            value=value,
            unit=safe_str(get_path(payload, f"{datapoint.key}.unit")),
            datapoint=datapoint,
            time=get_path(payload, "time"),
            raw=payload if isinstance(payload, dict) else {},
        )
    except ValidationError:
        _logger.debug("Measurement for %s failed validation", datapoint.key, exc_info=True)
        return None


def extract_measurements(payload: Any, datapoints: Iterable[Datapoint]) -> dict[str, Measurement]:
    """Extract every listed datapoint present in *payload*, keyed by datapoint key."""
    found: dict[str, Measurement] = {}
    for datapoint in datapoints:
        measurement = extract_measurement(payload, datapoint)
        if measurement is not None:
            found[datapoint.key] = measurement
    return found
