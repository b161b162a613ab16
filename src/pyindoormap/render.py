"""Popup and legend content for the external map surface."""

from __future__ import annotations

from html import escape

from pyindoormap._constants import POPUP_LOADING_TEXT
from pyindoormap.models.building import Marker
from pyindoormap.models.view import LegendEntry, LegendView
from pyindoormap.models.widget import WidgetConfiguration
from pyindoormap.state.store import LiveState


def popup_header(marker: Marker) -> str:
    """Device name linking to the device page."""
    return f'<a href="#/device/{escape(marker.device_id)}"><h5>{escape(marker.name)}</h5></a><hr />'


def popup_content(marker: Marker, live_state: LiveState, config: WidgetConfiguration) -> str:
    """HTML shown in a marker popup.

    Secondary measurements are listed in the configured popup order; while
    none is known the popup shows a loading hint.
    """
    content = popup_header(marker)

    rows: list[str] = []
    for popup in config.datapoints_popup:
        measurement = live_state.measurements.get(popup.measurement.key)
        if measurement is None:
            continue
        rows.append(
            f"<p>{escape(popup.label)}: "
            f'<span class="measurement-value">{escape(measurement.display_value())}</span></p>'
        )

    if not rows:
        return content + f'<p style="text-align:center">{POPUP_LOADING_TEXT}</p>'
    return content + "".join(rows)


def build_legend(config: WidgetConfiguration) -> LegendView | None:
    """Legend entries in threshold order, or ``None`` without thresholds."""
    thresholds = config.thresholds
    if not thresholds:
        return None
    title = config.legend.title if config.legend is not None else ""
    return LegendView(
        title=title,
        entries=tuple(LegendEntry(label=t.label, color=t.color) for t in thresholds),
    )
