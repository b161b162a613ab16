"""Realtime feed lifecycle.

Owns the two telemetry feeds for one scope (the device set of the active
level) at a time:

- push feed: one measurement subscription per device
- poll feed: one event-polling task per device

Both feeds write into :class:`pyindoormap.state.store.LiveStateStore`.
After :meth:`RealtimeFeedManager.stop` returns, no callback attributable to
the stopped handle mutates the store.
"""

from __future__ import annotations

import asyncio
import functools
import itertools
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from pyindoormap._constants import DEFAULT_EVENT_POLL_INTERVAL
from pyindoormap.ingestion.events import event_types_for
from pyindoormap.ingestion.measurements import extract_measurement, extract_measurements
from pyindoormap.models.telemetry import Datapoint, Event
from pyindoormap.models.threshold import EventThreshold
from pyindoormap.state.store import LiveStateStore

_logger = logging.getLogger(__name__)

MeasurementCallback = Callable[[dict[str, Any]], None]


class Subscription(Protocol):
    def unsubscribe(self) -> None:
        """Stop delivery synchronously; no callback may run after this returns."""
        ...


class MeasurementStream(Protocol):
    """Live measurement subscription per device."""

    def subscribe(self, device_id: str, callback: MeasurementCallback) -> Subscription: ...


class EventSource(Protocol):
    """Latest-event query used for polling."""

    async def latest_event(self, device_id: str, event_types: tuple[str, ...] | None) -> Event | None: ...


_handle_ids = itertools.count(1)


@dataclass(eq=False)
class FeedHandle:
    """One started scope. Only :class:`RealtimeFeedManager` mutates it."""

    device_ids: frozenset[str]
    primary_datapoint: Datapoint
    secondary_datapoints: tuple[Datapoint, ...]
    event_thresholds: tuple[EventThreshold, ...]
    handle_id: int = field(default_factory=lambda: next(_handle_ids))
    active: bool = True
    subscriptions: list[Subscription] = field(default_factory=list)
    poll_tasks: list[asyncio.Task[None]] = field(default_factory=list)


class RealtimeFeedManager:
    """Start/stop push and poll feeds for a device scope."""

    def __init__(
        self,
        store: LiveStateStore,
        *,
        stream: MeasurementStream | None = None,
        events: EventSource | None = None,
        poll_interval: float = DEFAULT_EVENT_POLL_INTERVAL,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {poll_interval}")
        self._store = store
        self._stream = stream
        self._events = events
        self._poll_interval = poll_interval
        self._handles: set[FeedHandle] = set()
        self._stopped_tasks: set[asyncio.Task[None]] = set()

    @property
    def active_handles(self) -> frozenset[FeedHandle]:
        return frozenset(self._handles)

    def start(
        self,
        device_ids: Iterable[str],
        primary_datapoint: Datapoint,
        secondary_datapoints: Iterable[Datapoint] = (),
        event_thresholds: Iterable[EventThreshold] = (),
    ) -> FeedHandle:
        """Subscribe and start polling for every device in *device_ids*.

        Must be called from the running event loop when event polling is
        configured.
        """
        handle = FeedHandle(
            device_ids=frozenset(device_ids),
            primary_datapoint=primary_datapoint,
            secondary_datapoints=tuple(secondary_datapoints),
            event_thresholds=tuple(event_thresholds),
        )
        self._handles.add(handle)
        _logger.debug(
            "Feed %s start devices=%d secondary=%d event_thresholds=%d",
            handle.handle_id,
            len(handle.device_ids),
            len(handle.secondary_datapoints),
            len(handle.event_thresholds),
        )

        if self._stream is not None:
            for device_id in sorted(handle.device_ids):
                callback = functools.partial(self._on_measurement, handle, device_id)
                try:
                    handle.subscriptions.append(self._stream.subscribe(device_id, callback))
                except Exception:
                    # Push feed problems are not fatal; the marker keeps its last known state.
                    _logger.warning("Measurement subscription failed for device %s", device_id, exc_info=True)

        if self._events is not None and handle.event_thresholds:
            event_types = event_types_for(handle.event_thresholds)
            for device_id in sorted(handle.device_ids):
                task = asyncio.create_task(
                    self._poll_events(self._events, handle, device_id, event_types),
                    name=f"pyindoormap-events-{handle.handle_id}-{device_id}",
                )
                handle.poll_tasks.append(task)

        return handle

    def stop(self, handle: FeedHandle) -> None:
        """Tear down *handle*. Idempotent.

        The push feed is unsubscribed synchronously and poll tasks are
        cancelled; callbacks already queued on the loop observe
        ``handle.active == False`` and return without touching the store.
        """
        if not handle.active:
            return
        handle.active = False
        self._handles.discard(handle)

        for subscription in handle.subscriptions:
            try:
                subscription.unsubscribe()
            except Exception:
                _logger.warning("Unsubscribe failed for feed %s", handle.handle_id, exc_info=True)
        handle.subscriptions.clear()

        for task in handle.poll_tasks:
            if not task.done():
                task.cancel()
                self._stopped_tasks.add(task)
                task.add_done_callback(self._stopped_tasks.discard)
        handle.poll_tasks.clear()
        _logger.debug("Feed %s stopped", handle.handle_id)

    async def shutdown(self) -> None:
        """Stop every handle and wait for cancelled poll tasks to finish."""
        for handle in list(self._handles):
            self.stop(handle)
        pending = list(self._stopped_tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _on_measurement(self, handle: FeedHandle, device_id: str, payload: dict[str, Any]) -> None:
        if not handle.active:
            return

        primary = extract_measurement(payload, handle.primary_datapoint)
        if primary is not None:
            self._store.upsert_primary_measurement(device_id, primary)

        for datapoint_key, measurement in extract_measurements(payload, handle.secondary_datapoints).items():
            if not handle.active:
                return
            self._store.upsert_measurement(device_id, datapoint_key, measurement)

    async def _poll_events(
        self,
        events: EventSource,
        handle: FeedHandle,
        device_id: str,
        event_types: tuple[str, ...] | None,
    ) -> None:
        last_seen: Event | None = None

        while handle.active:
            try:
                event = await events.latest_event(device_id, event_types)
            except asyncio.CancelledError:
                raise
            except Exception:
                _logger.warning("Event poll failed for device %s; retrying next tick", device_id, exc_info=True)
                event = None

            # Cancellation token: the handle may have been stopped while we awaited.
            if not handle.active:
                return

            if event is not None and not event.same_as(last_seen):
                last_seen = event
                self._store.upsert_primary_event(device_id, event)

            await asyncio.sleep(self._poll_interval)
