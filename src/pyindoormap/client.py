"""High-level async client for the platform REST API.

:class:`PlatformClient` implements the HTTP-backed collaborators of the
level-switch controller: configuration store, latest-measurement queries,
latest-event polling and binary downloads.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

import aiohttp
from pydantic import ValidationError

from pyindoormap._constants import MEASUREMENTS_DATE_FROM
from pyindoormap._transport import PlatformTransport, Transport
from pyindoormap.config import IndoorMapConfig
from pyindoormap.exceptions import ApiError, IndoorMapConfigError, IndoorMapError
from pyindoormap.ingestion.events import parse_event
from pyindoormap.ingestion.measurements import extract_measurement
from pyindoormap.models.building import Building, Marker, is_map_configuration
from pyindoormap.models.telemetry import Datapoint, Event, Measurement

_logger = logging.getLogger(__name__)

_PAGE_SIZE = "2000"


def _id_filter_query(device_ids: Sequence[str]) -> str:
    clauses = " or ".join(f"id eq '{device_id}'" for device_id in device_ids)
    return f"$filter=({clauses})"


def _newest(events: list[Event]) -> Event | None:
    dated = [event for event in events if event.time is not None]
    if dated:
        return max(dated, key=lambda event: event.time)  # type: ignore[arg-type, return-value]
    return events[0] if events else None


class PlatformClient:
    """Async client for the platform REST API.

    Usage::

        async with PlatformClient(config) as client:
            building = await client.load_building("4711")
    """

    def __init__(
        self,
        config: IndoorMapConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._transport: Transport | None = transport

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> PlatformClient:
        if self._transport is None:
            if not self._config.base_url:
                raise IndoorMapConfigError("base_url is required to talk to the platform")
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = PlatformTransport(self._config, self._http_session)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._transport = None

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise IndoorMapError("Client not initialized. Use 'async with PlatformClient(...) as client:'")
        return self._transport

    # ------------------------------------------------------------------
    # Configuration store
    # ------------------------------------------------------------------

    async def load_building(self, map_configuration_id: str) -> Building:
        """Load the building (map configuration) assigned to a widget."""
        if not map_configuration_id:
            raise IndoorMapConfigError("Missing map configuration id")

        endpoint = f"/inventory/managedObjects/{quote(map_configuration_id, safe='')}"
        payload = await self._require_transport().get_json(endpoint)
        if not is_map_configuration(payload):
            raise ApiError(f"Managed object {map_configuration_id} is not a map configuration", endpoint=endpoint)
        try:
            return Building.model_validate(payload)
        except ValidationError as exc:
            raise ApiError(f"Invalid map configuration {map_configuration_id}: {exc}", endpoint=endpoint) from exc

    async def load_markers(self, device_ids: Sequence[str]) -> list[Marker]:
        """Load the managed objects for *device_ids*, keeping the requested order."""
        if not device_ids:
            return []

        payload = await self._require_transport().get_json(
            "/inventory/managedObjects",
            {"query": _id_filter_query(device_ids), "pageSize": _PAGE_SIZE, "withParents": "false"},
        )
        by_id: dict[str, Marker] = {}
        for item in payload.get("managedObjects") or []:
            try:
                marker = Marker.model_validate(item)
            except ValidationError:
                _logger.debug("Skipping unparsable marker object", exc_info=True)
                continue
            by_id[marker.device_id] = marker

        missing = [device_id for device_id in device_ids if device_id not in by_id]
        if missing:
            _logger.warning("Marker devices not found: %s", ", ".join(missing))
        return [by_id[device_id] for device_id in device_ids if device_id in by_id]

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    async def latest_measurement(self, device_id: str, datapoint: Datapoint) -> Measurement | None:
        """Most recent value of *datapoint* for *device_id*, if any."""
        payload = await self._require_transport().get_json(
            "/measurement/measurements",
            {
                "source": device_id,
                "dateFrom": MEASUREMENTS_DATE_FROM,
                "dateTo": datetime.now(UTC).isoformat(),
                "valueFragmentType": datapoint.fragment,
                "valueFragmentSeries": datapoint.series,
                "pageSize": "1",
                "revert": "true",
            },
        )
        items = payload.get("measurements")
        if not isinstance(items, list) or len(items) != 1:
            return None
        return extract_measurement(items[0], datapoint)

    async def latest_event(self, device_id: str, event_types: tuple[str, ...] | None) -> Event | None:
        """Most recent event of the given types (any type when ``None``)."""
        if event_types is None:
            return await self._latest_event_of_type(device_id, None)
        if not event_types:
            return None
        results = await asyncio.gather(*(self._latest_event_of_type(device_id, t) for t in event_types))
        return _newest([event for event in results if event is not None])

    async def _latest_event_of_type(self, device_id: str, event_type: str | None) -> Event | None:
        params = {"source": device_id, "pageSize": "1"}
        if event_type is not None:
            params["type"] = event_type
        payload = await self._require_transport().get_json("/event/events", params)
        items = payload.get("events")
        if not isinstance(items, list) or not items:
            return None
        return parse_event(items[0])

    # ------------------------------------------------------------------
    # Binaries
    # ------------------------------------------------------------------

    async def download_binary(self, binary_id: str) -> bytes:
        return await self._require_transport().get_bytes(f"/inventory/binaries/{quote(binary_id, safe='')}")
