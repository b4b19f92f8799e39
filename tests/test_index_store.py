"""Tests for IndexStore and the plugin data blob it persists to."""

from __future__ import annotations

import json
import threading
from typing import TYPE_CHECKING

import pytest

from oraculum.indexer.persistence import (
    IndexEntry,
    IndexSettings,
    PluginData,
    PluginDataStore,
    StoreUnavailableError,
)
from oraculum.indexer.store import IndexStore

if TYPE_CHECKING:
    from pathlib import Path


SETTINGS = IndexSettings(provider="openai", model="text-embedding-3-small", dimensions=3)


def _entry(marker: int, *values: float) -> IndexEntry:
    return IndexEntry(staleness_marker=marker, embedding=list(values) or [1.0, 0.0, 0.0])


@pytest.fixture
def data_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "data.json"


@pytest.fixture
def store(data_path: Path) -> IndexStore:
    return IndexStore(PluginDataStore(data_path), SETTINGS)


class FailingPersistence:
    """PluginDataStore stand-in whose writes always fail."""

    def __init__(self) -> None:
        self.attempts = 0

    def load_blob(self) -> PluginData | None:
        return None

    def save_blob(self, data: PluginData) -> None:
        from pathlib import Path

        self.attempts += 1
        raise StoreUnavailableError("disk full", Path("data.json"))


# ---------------------------------------------------------------------------
# Tests — PluginDataStore
# ---------------------------------------------------------------------------


class TestPluginDataStore:
    def test_missing_file_returns_none(self, data_path: Path) -> None:
        assert PluginDataStore(data_path).load_blob() is None

    def test_save_creates_parent_dirs(self, data_path: Path) -> None:
        PluginDataStore(data_path).save_blob(PluginData(settings=SETTINGS))
        assert data_path.exists()

    def test_persisted_layout(self, data_path: Path) -> None:
        data = PluginData(settings=SETTINGS, index={"a.md": _entry(1700, 0.5, 0.25, 0.0)})
        PluginDataStore(data_path).save_blob(data)

        raw = json.loads(data_path.read_text())
        assert raw["settings"]["model"] == "text-embedding-3-small"
        assert raw["index"]["a.md"] == {"stalenessMarker": 1700, "embedding": [0.5, 0.25, 0.0]}

    def test_load_reads_camel_case_layout(self, data_path: Path) -> None:
        data_path.parent.mkdir(parents=True)
        data_path.write_text(
            json.dumps(
                {
                    "settings": {"provider": "openai", "model": "m", "dimensions": 2},
                    "index": {"n.md": {"stalenessMarker": 42, "embedding": [0.1, 0.2]}},
                }
            )
        )
        blob = PluginDataStore(data_path).load_blob()
        assert blob is not None
        assert blob.index["n.md"].staleness_marker == 42

    def test_corrupt_file_raises_store_unavailable(self, data_path: Path) -> None:
        data_path.parent.mkdir(parents=True)
        data_path.write_text("{not json")
        with pytest.raises(StoreUnavailableError):
            PluginDataStore(data_path).load_blob()

    def test_overwrite_leaves_no_temp_files(self, data_path: Path) -> None:
        blob_store = PluginDataStore(data_path)
        blob_store.save_blob(PluginData(settings=SETTINGS))
        blob_store.save_blob(PluginData(settings=SETTINGS, index={"a.md": _entry(1)}))
        assert [p.name for p in data_path.parent.iterdir()] == ["data.json"]


# ---------------------------------------------------------------------------
# Tests — IndexStore mapping operations
# ---------------------------------------------------------------------------


class TestMapping:
    def test_get_missing(self, store: IndexStore) -> None:
        assert store.get("nope.md") is None

    def test_put_get(self, store: IndexStore) -> None:
        store.put("a.md", _entry(10))
        entry = store.get("a.md")
        assert entry is not None
        assert entry.staleness_marker == 10

    def test_put_overwrites(self, store: IndexStore) -> None:
        store.put("a.md", _entry(10))
        store.put("a.md", _entry(20))
        assert store.get("a.md").staleness_marker == 20  # type: ignore[union-attr]
        assert len(store) == 1

    def test_rename_moves_entry(self, store: IndexStore) -> None:
        original = _entry(10, 0.1, 0.2, 0.3)
        store.put("a.md", original)
        assert store.rename("a.md", "folder/b.md") is True
        assert store.get("a.md") is None
        assert store.get("folder/b.md") == original

    def test_rename_missing_is_noop(self, store: IndexStore) -> None:
        store.put("other.md", _entry(1))
        assert store.rename("ghost.md", "new.md") is False
        assert store.get("new.md") is None
        assert len(store) == 1

    def test_remove(self, store: IndexStore) -> None:
        store.put("a.md", _entry(1))
        assert store.remove("a.md") is True
        assert store.remove("a.md") is False
        assert "a.md" not in store

    def test_all_entries_in_insertion_order(self, store: IndexStore) -> None:
        for name in ("c.md", "a.md", "b.md"):
            store.put(name, _entry(1))
        assert [note_id for note_id, _ in store.all_entries()] == ["c.md", "a.md", "b.md"]

    def test_all_entries_is_a_snapshot(self, store: IndexStore) -> None:
        store.put("a.md", _entry(1))
        snapshot = store.all_entries()
        store.put("b.md", _entry(2))
        store.remove("a.md")
        assert [note_id for note_id, _ in snapshot] == ["a.md"]

    def test_clear(self, store: IndexStore) -> None:
        store.put("a.md", _entry(1))
        store.clear()
        assert len(store) == 0


# ---------------------------------------------------------------------------
# Tests — IndexStore persistence
# ---------------------------------------------------------------------------


class TestPersistence:
    def test_save_and_load_roundtrip(self, data_path: Path) -> None:
        first = IndexStore(PluginDataStore(data_path), SETTINGS)
        first.put("a.md", _entry(100, 1.0, 2.0, 3.0))
        first.put("b.md", _entry(200, 0.0, 1.0, 0.0))
        assert first.save() is True

        second = IndexStore(PluginDataStore(data_path), SETTINGS)
        assert second.load() == 2
        assert second.get("a.md") == first.get("a.md")
        assert second.get("b.md").staleness_marker == 200  # type: ignore[union-attr]

    def test_load_without_file_is_empty(self, store: IndexStore) -> None:
        assert store.load() == 0
        assert len(store) == 0

    def test_load_discards_index_from_other_model(self, data_path: Path) -> None:
        old = IndexStore(
            PluginDataStore(data_path),
            IndexSettings(provider="gemini", model="text-embedding-004", dimensions=3),
        )
        old.put("a.md", _entry(1))
        old.save()

        current = IndexStore(PluginDataStore(data_path), SETTINGS)
        assert current.load() == 0
        assert current.get("a.md") is None

    def test_load_discards_index_with_other_dimensions(self, data_path: Path) -> None:
        old = IndexStore(
            PluginDataStore(data_path),
            IndexSettings(provider="openai", model="text-embedding-3-small", dimensions=4),
        )
        old.put("a.md", _entry(1, 1.0, 0.0, 0.0, 0.0))
        old.save()

        current = IndexStore(PluginDataStore(data_path), SETTINGS)
        assert current.load() == 0
        assert len(current) == 0

    def test_load_corrupt_blob_starts_empty(self, data_path: Path) -> None:
        data_path.parent.mkdir(parents=True)
        data_path.write_text("garbage")
        store = IndexStore(PluginDataStore(data_path), SETTINGS)
        assert store.load() == 0

    def test_save_failure_keeps_memory_index(self) -> None:
        persistence = FailingPersistence()
        store = IndexStore(persistence, SETTINGS)  # type: ignore[arg-type]
        store.put("a.md", _entry(1))

        assert store.save() is False
        assert persistence.attempts == 1
        assert store.get("a.md") is not None

    def test_save_writes_whole_snapshot(self, data_path: Path, store: IndexStore) -> None:
        store.put("a.md", _entry(1))
        store.save()
        store.remove("a.md")
        store.put("b.md", _entry(2))
        store.save()

        raw = json.loads(data_path.read_text())
        assert list(raw["index"]) == ["b.md"]

    def test_save_concurrent_with_mutation(self, data_path: Path, store: IndexStore) -> None:
        for i in range(200):
            store.put(f"n{i}.md", _entry(i))

        errors: list[BaseException] = []

        def _save_loop() -> None:
            try:
                for _ in range(10):
                    store.save()
            except BaseException as e:  # noqa: BLE001
                errors.append(e)

        saver = threading.Thread(target=_save_loop)
        saver.start()
        for i in range(200, 400):
            store.put(f"n{i}.md", _entry(i))
            store.remove(f"n{i - 200}.md")
        saver.join()

        assert errors == []
        store.save()
        reloaded = IndexStore(PluginDataStore(data_path), SETTINGS)
        assert reloaded.load() == 200
