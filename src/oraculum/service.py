"""Related-notes service — the command surface over the embedding index.

Wires the document store, index, scheduler, builder and ranker together and
exposes the three user-facing operations:

* **rebuild index** — reconcile the whole vault and wait for the queue
* **related notes** — rank the notes most similar to one note, embedding
  that note first if needed (the rest of the vault backfills behind it)
* **reindex note** — re-embed one note right away

``subscribe()`` hooks the service onto a ``VaultEventBus`` so edits,
renames and deletes flow into the index incrementally.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from oraculum.indexer.builder import IndexBuilder
from oraculum.indexer.embedder import create_embedding_client
from oraculum.indexer.persistence import PluginDataStore
from oraculum.indexer.ranker import SimilarityRanker
from oraculum.indexer.scheduler import RateLimitedScheduler
from oraculum.indexer.store import IndexStore
from oraculum.vault.documents import VaultDocuments
from oraculum.vault.events import (
    NoteCreatedEvent,
    NoteDeletedEvent,
    NoteModifiedEvent,
    NoteOpenedEvent,
    NoteRenamedEvent,
)

if TYPE_CHECKING:
    from pathlib import Path

    from oraculum.config import Settings
    from oraculum.indexer.builder import RebuildReport
    from oraculum.indexer.embedder import EmbeddingClient
    from oraculum.indexer.persistence import IndexEntry
    from oraculum.indexer.ranker import RelatedNote
    from oraculum.vault.documents import DocumentStore
    from oraculum.vault.events import VaultEventBus
    from oraculum.vault.models import DocumentRef

logger = logging.getLogger(__name__)


class NoteNotFoundError(LookupError):
    """Raised when a command names a note that is not in the vault."""

    def __init__(self, note_id: str) -> None:
        self.note_id = note_id
        super().__init__(f"Note not found: {note_id}")


@dataclass(frozen=True, slots=True)
class IndexStats:
    """Snapshot of index health for display."""

    indexed: int
    queued: int
    failed: int
    data_path: Path | None


class RelatedNotesService:
    """Owns one vault's index and answers related-notes queries."""

    def __init__(
        self,
        documents: DocumentStore,
        store: IndexStore,
        scheduler: RateLimitedScheduler,
        client: EmbeddingClient,
        *,
        batch_size: int = 16,
        top_k: int = 5,
        data_path: Path | None = None,
    ) -> None:
        self.documents = documents
        self.store = store
        self.scheduler = scheduler
        self.builder = IndexBuilder(store, scheduler, client, documents, batch_size=batch_size)
        self.ranker = SimilarityRanker(store)
        self.top_k = top_k
        self._data_path = data_path

        # Latest ranking per opened note
        self._results: dict[str, list[RelatedNote]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: EmbeddingClient | None = None,
    ) -> RelatedNotesService:
        """Build the service from configuration and load the persisted index."""
        if client is None:
            client = create_embedding_client(settings.embedding, settings.embedding_api_key)

        data_path = settings.index.data_path
        store = IndexStore(PluginDataStore(data_path), settings.index_settings())
        store.load()

        return cls(
            documents=VaultDocuments(settings.vault),
            store=store,
            scheduler=RateLimitedScheduler(settings.scheduler),
            client=client,
            batch_size=settings.embedding.batch_size,
            top_k=settings.index.top_k,
            data_path=data_path,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def rebuild_index(self, *, full: bool = False) -> RebuildReport:
        """Reconcile the whole vault and wait until every embed has finished."""
        self._results.clear()
        report = await self.builder.rebuild(full=full)
        logger.info(
            "Index rebuilt: %d notes, %d embedded, %d removed, %d failed",
            report.documents,
            report.embedded,
            report.removed,
            report.failed,
        )
        return report

    async def related_notes(
        self,
        note_id: str,
        top_k: int | None = None,
        *,
        write: bool = False,
    ) -> list[RelatedNote]:
        """Notes most similar to *note_id*, best first.

        Embeds *note_id* first when its entry is missing or stale; provider
        failures for it are raised. With *write*, the result is also stored
        as wikilinks in the note's ``related`` frontmatter.
        """
        doc = self._require(note_id)
        await self.builder.ensure_indexed(doc)

        results = self.ranker.related(note_id, self.top_k if top_k is None else top_k)
        self._results[note_id] = results

        if write:
            await self._write_related(doc, [r.id for r in results])
        return results

    async def reindex(self, note_id: str) -> IndexEntry | None:
        """Re-embed *note_id* now, even if its entry looks fresh."""
        doc = self._require(note_id)
        self._results.pop(note_id, None)
        return await self.builder.ensure_indexed(doc, force=True)

    def get_results(self, note_id: str) -> list[RelatedNote]:
        """Last ranking computed for *note_id*, if any."""
        return self._results.get(note_id, [])

    def stats(self) -> IndexStats:
        return IndexStats(
            indexed=len(self.store),
            queued=self.builder.queued_count,
            failed=len(self.builder.failures),
            data_path=self._data_path,
        )

    async def wait_idle(self) -> None:
        """Wait until all queued embedding work has finished."""
        await self.builder.drain()

    async def close(self) -> None:
        self.builder.cancel_backfill()
        await self.scheduler.close()

    # ------------------------------------------------------------------
    # Event bus integration
    # ------------------------------------------------------------------

    def subscribe(self, bus: VaultEventBus) -> None:
        """Keep the index in step with vault change events."""
        bus.subscribe(NoteOpenedEvent, self.on_note_opened)  # type: ignore[arg-type]
        bus.subscribe(NoteCreatedEvent, self.on_note_changed)  # type: ignore[arg-type]
        bus.subscribe(NoteModifiedEvent, self.on_note_changed)  # type: ignore[arg-type]
        bus.subscribe(NoteRenamedEvent, self.on_note_renamed)  # type: ignore[arg-type]
        bus.subscribe(NoteDeletedEvent, self.on_note_deleted)  # type: ignore[arg-type]

    async def on_note_opened(self, event: NoteOpenedEvent) -> None:
        await self.related_notes(event.note_id)

    async def on_note_changed(self, event: NoteCreatedEvent | NoteModifiedEvent) -> None:
        doc = await asyncio.to_thread(self.documents.ref, event.note_id)
        if doc is None:
            return
        self._results.pop(event.note_id, None)
        self.builder.reconcile([doc])

    async def on_note_renamed(self, event: NoteRenamedEvent) -> None:
        self.builder.handle_rename(event.old_id, event.note_id)
        results = self._results.pop(event.old_id, None)
        if results is not None:
            self._results[event.note_id] = results

    async def on_note_deleted(self, event: NoteDeletedEvent) -> None:
        self.builder.handle_delete(event.note_id)
        self._results.pop(event.note_id, None)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, note_id: str) -> DocumentRef:
        doc = self.documents.ref(note_id)
        if doc is None:
            raise NoteNotFoundError(note_id)
        return doc

    async def _write_related(self, doc: DocumentRef, related_ids: list[str]) -> None:
        await asyncio.to_thread(self.documents.write_related, doc.id, related_ids)

        # Only frontmatter changed; the embedded body did not, so move the
        # entry's marker forward instead of re-embedding the note
        entry = self.store.get(doc.id)
        updated = self.documents.ref(doc.id)
        if entry is not None and updated is not None and entry.staleness_marker == doc.modified_at:
            self.store.put(doc.id, entry.model_copy(update={"staleness_marker": updated.modified_at}))
            await asyncio.to_thread(self.store.save)
