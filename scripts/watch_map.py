#!/usr/bin/env python3
"""Watch a map widget's marker colors live.

Loads a widget configuration JSON file, mounts it against the platform
configured through ``INDOORMAP_*`` environment variables and prints every
surface update (level, markers, color changes, popups) to stdout.

Use this to verify thresholds and feed behaviour against a real tenant.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pyindoormap import (  # noqa: E402
    IndoorMapConfig,
    IndoorMapError,
    LevelSwitchController,
    MqttMeasurementStream,
    PlatformClient,
    WidgetConfiguration,
)
from pyindoormap.models import LegendView, LevelView, MarkerView  # noqa: E402
from pyindoormap.state import JsonFileKeyValueStore, ViewStatePersistence  # noqa: E402


class PrintingSurface:
    """Map surface that prints what a real map would draw."""

    def show_level(self, level: LevelView) -> None:
        print(f"[watch] level {level.level_index} {level.name!r}")
        print(f"[watch]   image  : {level.image_url or '-'}")
        print(f"[watch]   bounds : {level.bounds}")
        print(f"[watch]   view   : zoom={level.view.zoom} center={level.view.center}")

    def render_markers(self, markers: list[MarkerView]) -> None:
        for marker in markers:
            print(f"[watch]   marker {marker.device_id:>10} {marker.color} {marker.name} @ {marker.position}")

    def update_marker_color(self, device_id: str, color: str) -> None:
        print(f"[watch] color {device_id} -> {color}")

    def render_legend(self, legend: LegendView | None) -> None:
        if legend is None:
            return
        print(f"[watch] legend {legend.title!r}")
        for entry in legend.entries:
            print(f"[watch]   {entry.color} {entry.label}")

    def open_popup(self, device_id: str, content: str) -> None:
        print(f"[watch] popup {device_id}: {content}")

    def update_popup(self, device_id: str, content: str) -> None:
        print(f"[watch] popup {device_id} updated: {content}")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Watch marker colors of an indoor map widget.",
    )
    parser.add_argument(
        "widget",
        type=Path,
        help="Path to the widget configuration JSON.",
    )
    parser.add_argument(
        "--level",
        type=int,
        default=0,
        help="Level index to activate first.",
    )
    parser.add_argument(
        "--cycle-seconds",
        type=int,
        default=0,
        help="Switch to the next level every N seconds (0 = stay on one level).",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--popup",
        action="append",
        default=[],
        metavar="DEVICE_ID",
        help="Open the popup of this device after activation (repeatable).",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


async def _watch(args: argparse.Namespace, config: IndoorMapConfig, widget: WidgetConfiguration) -> None:
    loop = asyncio.get_running_loop()
    stream = MqttMeasurementStream.from_config(config, loop=loop) if config.mqtt_enabled else None
    view_store = JsonFileKeyValueStore(config.view_state_path) if config.view_state_path else None

    async with PlatformClient(config) as client:
        if stream is not None:
            stream.start()
        try:
            async with LevelSwitchController(
                widget,
                configuration=client,
                telemetry=client,
                surface=PrintingSurface(),
                stream=stream,
                events=client,
                binaries=client,
                view_states=ViewStatePersistence(view_store),
                config=config,
            ) as controller:
                await controller.start(args.level)
                for device_id in args.popup:
                    await controller.open_popup(device_id)

                started = loop.time()
                while args.duration <= 0 or loop.time() - started < args.duration:
                    if args.cycle_seconds > 0:
                        await asyncio.sleep(args.cycle_seconds)
                        building = controller.building
                        if building is not None and controller.level_index is not None:
                            await controller.switch_level((controller.level_index + 1) % len(building.levels))
                    else:
                        await asyncio.sleep(1.0)
        finally:
            if stream is not None:
                stream.stop()


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        widget = WidgetConfiguration.model_validate(json.loads(args.widget.read_text(encoding="utf-8")))
    except (OSError, ValueError) as exc:
        print(f"[watch] Cannot read widget configuration: {exc}", file=sys.stderr)
        return 2

    config = IndoorMapConfig.from_env()
    try:
        asyncio.run(_watch(args, config, widget))
    except KeyboardInterrupt:
        pass
    except IndoorMapError as exc:  # pragma: no cover - network/system interaction
        print(f"[watch] {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
