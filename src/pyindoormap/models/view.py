"""Viewport and render-output models.

These are the values handed to the external map surface; the library never
draws anything itself.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict


class ViewState(BaseModel):
    """Zoom and center of the map for one (building, level) pair."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    zoom: float
    center: tuple[float, float]


@dataclass(frozen=True, slots=True)
class LevelView:
    level_index: int
    name: str
    image_url: str | None
    bounds: tuple[tuple[float, float], tuple[float, float]]
    view: ViewState


@dataclass(frozen=True, slots=True)
class MarkerView:
    device_id: str
    name: str
    position: tuple[float, float]
    color: str


@dataclass(frozen=True, slots=True)
class LegendEntry:
    label: str
    color: str


@dataclass(frozen=True, slots=True)
class LegendView:
    title: str
    entries: tuple[LegendEntry, ...]
