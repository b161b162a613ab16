"""State layer.

This package is the single source of truth for runtime marker state: the
per-device live telemetry store, the pure color resolver, and per-level
viewport persistence.
"""

from pyindoormap.state.resolver import resolve
from pyindoormap.state.store import LiveState, LiveStateField, LiveStateStore
from pyindoormap.state.view_state import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    ViewStatePersistence,
)

__all__ = [
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "LiveState",
    "LiveStateField",
    "LiveStateStore",
    "ViewStatePersistence",
    "resolve",
]
