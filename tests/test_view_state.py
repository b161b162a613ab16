from __future__ import annotations

import json
from pathlib import Path

from pyindoormap.models.view import ViewState
from pyindoormap.state.view_state import InMemoryKeyValueStore, JsonFileKeyValueStore, ViewStatePersistence


def test_unsaved_key_loads_as_absent() -> None:
    persistence = ViewStatePersistence()
    assert persistence.load("b1", 0) is None


def test_save_load_round_trip_and_last_write_wins() -> None:
    persistence = ViewStatePersistence(InMemoryKeyValueStore())
    persistence.save("b1", 0, ViewState(zoom=1.0, center=(10.0, 20.0)))
    persistence.save("b1", 0, ViewState(zoom=2.5, center=(11.0, 21.0)))

    assert persistence.load("b1", 0) == ViewState(zoom=2.5, center=(11.0, 21.0))
    assert persistence.load("b1", 1) is None
    assert persistence.load("b2", 0) is None


def test_key_format() -> None:
    assert ViewStatePersistence.key("4711", 2) == "4711-2-view"


def test_invalid_stored_value_loads_as_absent() -> None:
    store = InMemoryKeyValueStore()
    store.set(ViewStatePersistence.key("b1", 0), '{"zoom": "far"}')
    assert ViewStatePersistence(store).load("b1", 0) is None


def test_json_file_store_persists_on_flush(tmp_path: Path) -> None:
    path = tmp_path / "views" / "state.json"
    persistence = ViewStatePersistence(JsonFileKeyValueStore(path))
    persistence.save("b1", 1, ViewState(zoom=3.0, center=(1.5, 2.5)))

    assert not path.exists()
    persistence.flush()
    assert path.exists()

    reloaded = ViewStatePersistence(JsonFileKeyValueStore(path))
    assert reloaded.load("b1", 1) == ViewState(zoom=3.0, center=(1.5, 2.5))


def test_json_file_store_skips_unchanged_writes(tmp_path: Path) -> None:
    store = JsonFileKeyValueStore(tmp_path / "state.json")
    store.set("k", "v")
    store.flush()
    assert not store.dirty

    store.set("k", "v")
    assert not store.dirty


def test_json_file_store_ignores_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")

    store = JsonFileKeyValueStore(path)
    assert store.get("anything") is None

    store.set("k", "v")
    store.flush()
    assert json.loads(path.read_text(encoding="utf-8")) == {"k": "v"}
