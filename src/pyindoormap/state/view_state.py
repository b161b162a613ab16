"""Per-level zoom/pan persistence.

View states are stored as JSON strings in a key-value substrate, keyed by
the configuration identifier (building id) and level index.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from pyindoormap.models.view import ViewState

_logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Structural interface of the persistence substrate."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def flush(self) -> None: ...


class InMemoryKeyValueStore:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def flush(self) -> None:
        return None


class JsonFileKeyValueStore:
    """Key-value store backed by one JSON object on disk.

    Writes are buffered in memory and persisted on :meth:`flush`; the file is
    replaced atomically so a crash never leaves a half-written document.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._data: dict[str, str] = self._read()
        self._dirty = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def dirty(self) -> bool:
        return self._dirty

    def _read(self) -> dict[str, str]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            loaded = json.loads(text)
        except json.JSONDecodeError:
            _logger.warning("Ignoring unreadable view state file %s", self._path, exc_info=True)
            return {}
        if not isinstance(loaded, dict):
            _logger.warning("Ignoring view state file %s: top level is not an object", self._path)
            return {}
        return {str(key): value for key, value in loaded.items() if isinstance(value, str)}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self._data.get(key) == value:
            return
        self._data[key] = value
        self._dirty = True

    def flush(self) -> None:
        if not self._dirty:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        tmp_path.write_text(json.dumps(self._data, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, self._path)
        self._dirty = False
        _logger.debug("View state flushed to %s (%d keys)", self._path, len(self._data))


class ViewStatePersistence:
    """Load/save :class:`ViewState` per (building id, level index).

    Last write wins; there is no merging of partial states.
    """

    def __init__(self, store: KeyValueStore | None = None) -> None:
        self._store: KeyValueStore = store if store is not None else InMemoryKeyValueStore()

    @staticmethod
    def key(building_id: str, level_index: int) -> str:
        return f"{building_id}-{level_index}-view"

    def load(self, building_id: str, level_index: int) -> ViewState | None:
        """Stored view state, or ``None`` when none was saved (or it is unreadable)."""
        raw = self._store.get(self.key(building_id, level_index))
        if raw is None:
            return None
        try:
            return ViewState.model_validate_json(raw)
        except ValidationError:
            _logger.warning(
                "Discarding invalid view state for building=%s level=%s",
                building_id,
                level_index,
                exc_info=True,
            )
            return None

    def save(self, building_id: str, level_index: int, view_state: ViewState) -> None:
        self._store.set(self.key(building_id, level_index), view_state.model_dump_json())

    def flush(self) -> None:
        self._store.flush()
