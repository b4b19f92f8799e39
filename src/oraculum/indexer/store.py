"""Embedding index — in-memory note id → IndexEntry mapping with snapshot persistence."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from oraculum.indexer.persistence import IndexSettings, PluginData, StoreUnavailableError

if TYPE_CHECKING:
    from oraculum.indexer.persistence import IndexEntry, PluginDataStore

logger = logging.getLogger(__name__)


class IndexStore:
    """Owns the embedding index for one vault.

    Mutations and snapshots share a lock, so ``save()`` can run in a worker
    thread while the event loop keeps updating entries or a ranking query
    iterates over ``all_entries()``. Every save writes the complete mapping;
    there is no partial-update path.
    """

    def __init__(self, persistence: PluginDataStore, settings: IndexSettings) -> None:
        self._persistence = persistence
        self._settings = settings
        self._entries: dict[str, IndexEntry] = {}
        self._lock = threading.RLock()
        self._save_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lookup and mutation
    # ------------------------------------------------------------------

    def get(self, note_id: str) -> IndexEntry | None:
        with self._lock:
            return self._entries.get(note_id)

    def put(self, note_id: str, entry: IndexEntry) -> None:
        with self._lock:
            self._entries[note_id] = entry

    def rename(self, old_id: str, new_id: str) -> bool:
        """Move the entry for *old_id* to *new_id*, keeping its embedding.

        Returns False (and logs) when *old_id* is not indexed.
        """
        with self._lock:
            entry = self._entries.pop(old_id, None)
            if entry is None:
                logger.debug("Rename %s -> %s: no index entry to move", old_id, new_id)
                return False
            self._entries[new_id] = entry
        logger.debug("Moved index entry %s -> %s", old_id, new_id)
        return True

    def remove(self, note_id: str) -> bool:
        with self._lock:
            return self._entries.pop(note_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def all_entries(self) -> list[tuple[str, IndexEntry]]:
        """Snapshot of all entries in insertion order."""
        with self._lock:
            return list(self._entries.items())

    def ids(self) -> set[str]:
        with self._lock:
            return set(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, note_id: object) -> bool:
        with self._lock:
            return note_id in self._entries

    @property
    def settings(self) -> IndexSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Replace in-memory entries with the persisted snapshot.

        An index built with a different provider, model or dimension count is
        discarded, since its vectors are not comparable with new ones. Returns the
        number of entries loaded.
        """
        try:
            data = self._persistence.load_blob()
        except StoreUnavailableError:
            logger.exception("Embedding index unavailable — starting with an empty index")
            return 0

        if data is None:
            return 0

        stored = data.settings
        if stored.provider and stored != self._settings:
            logger.warning(
                "Index was built with %s/%s/%d, current embedding is %s/%s/%d — "
                "discarding %d entries",
                stored.provider,
                stored.model,
                stored.dimensions,
                self._settings.provider,
                self._settings.model,
                self._settings.dimensions,
                len(data.index),
            )
            with self._lock:
                self._entries = {}
            return 0

        with self._lock:
            self._entries = dict(data.index)
        logger.info("Loaded embedding index: %d entries", len(data.index))
        return len(data.index)

    def save(self) -> bool:
        """Persist a snapshot of the whole index.

        Returns False if the blob could not be written; the in-memory index
        stays usable for the rest of the session.
        """
        # Snapshot under the save lock so an older snapshot never lands last
        with self._save_lock:
            with self._lock:
                snapshot = dict(self._entries)
            data = PluginData(settings=self._settings, index=snapshot)
            try:
                self._persistence.save_blob(data)
            except StoreUnavailableError:
                logger.exception("Failed to persist embedding index (%d entries)", len(snapshot))
                return False
        return True
