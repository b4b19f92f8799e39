"""Shared stand-ins for the vault and the embedding provider."""

from __future__ import annotations

import itertools
import threading
from typing import TYPE_CHECKING

import pytest

from oraculum.indexer.persistence import IndexSettings, PluginDataStore
from oraculum.indexer.store import IndexStore
from oraculum.vault.models import DocumentRef

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path


class FakeSchedulerConfig:
    """SchedulerConfig stand-in: no backoff delay, generous budget."""

    def __init__(
        self,
        max_attempts: int = 5,
        base_delay_seconds: float = 0.0,
        max_delay_seconds: float = 0.0,
        window_cap: int = 1000,
        window_seconds: float = 60.0,
    ) -> None:
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.window_cap = window_cap
        self.window_seconds = window_seconds


class FakeDocuments:
    """In-memory DocumentStore. Modification times tick on every write."""

    def __init__(self) -> None:
        self._notes: dict[str, tuple[int, str]] = {}
        self._clock = itertools.count(1_700_000_000_000, 1000)
        self._lock = threading.Lock()
        self.unreadable: set[str] = set()
        self.related: dict[str, list[str]] = {}

    def add(self, note_id: str, content: str = "") -> DocumentRef:
        with self._lock:
            self._notes[note_id] = (next(self._clock), content)
        return self.ref(note_id)  # type: ignore[return-value]

    def touch(self, note_id: str, content: str | None = None) -> DocumentRef:
        _, old = self._notes[note_id]
        return self.add(note_id, old if content is None else content)

    def rename(self, old_id: str, new_id: str) -> None:
        with self._lock:
            self._notes[new_id] = self._notes.pop(old_id)

    def remove(self, note_id: str) -> None:
        with self._lock:
            self._notes.pop(note_id, None)

    def list_documents(self) -> list[DocumentRef]:
        with self._lock:
            items = sorted(self._notes.items())
        return [DocumentRef(id=nid, modified_at=mtime) for nid, (mtime, _) in items]

    def ref(self, note_id: str) -> DocumentRef | None:
        with self._lock:
            note = self._notes.get(note_id)
        if note is None:
            return None
        return DocumentRef(id=note_id, modified_at=note[0])

    def read_content(self, note_id: str) -> str:
        if note_id in self.unreadable:
            raise PermissionError(f"Permission denied: {note_id}")
        with self._lock:
            note = self._notes.get(note_id)
        if note is None:
            raise FileNotFoundError(note_id)
        return note[1]

    def write_related(self, note_id: str, related_ids: Sequence[str]) -> None:
        self.related[note_id] = list(related_ids)
        # Writing frontmatter bumps the file's mtime
        self.touch(note_id)


class FakeEmbedder:
    """EmbeddingClient stand-in recording every call.

    Vectors come from ``vectors`` keyed by note title (the first line of the
    embedded text); unknown titles get a vector derived from the text length.
    """

    provider_name = "fake"

    def __init__(self, vectors: dict[str, list[float]] | None = None) -> None:
        self.vectors = vectors or {}
        self.calls: list[list[str]] = []
        self.errors: list[Exception] = []
        self.drop_last = False

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.errors:
            raise self.errors.pop(0)
        vectors = [self._vector(text) for text in texts]
        if self.drop_last:
            vectors = vectors[:-1]
        return vectors

    @property
    def titles(self) -> list[list[str]]:
        """Note titles per call."""
        return [[text.split("\n\n", 1)[0] for text in call] for call in self.calls]

    def _vector(self, text: str) -> list[float]:
        title = text.split("\n\n", 1)[0]
        if title in self.vectors:
            return list(self.vectors[title])
        return [1.0, float(len(text)), 0.5]


@pytest.fixture()
def documents() -> FakeDocuments:
    return FakeDocuments()


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def index_store(tmp_path: Path) -> IndexStore:
    return IndexStore(
        PluginDataStore(tmp_path / "data.json"),
        IndexSettings(provider="fake", model="fake-embed", dimensions=3),
    )
