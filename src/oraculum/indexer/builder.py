"""Index builder — keeps the embedding index in step with the vault.

Staleness is decided by modification time: an entry is fresh only while
its ``staleness_marker`` equals the note's current ``modified_at``.  Stale
and missing notes are cut into batches and handed to the scheduler as
embed tasks.

Queued work is tracked per note id, so a rename or delete that arrives
while a batch is still waiting (or running) lands on the right key: the
result of an embed for ``a.md`` renamed to ``b.md`` is stored under
``b.md``, and the result for a deleted note is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from oraculum.indexer.embedder import MalformedResponseError
from oraculum.indexer.persistence import IndexEntry
from oraculum.indexer.scheduler import Priority, ScheduledTask, TaskState
from oraculum.vault.models import note_title
from oraculum.vault.security import PathTraversalError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from oraculum.indexer.embedder import EmbeddingClient
    from oraculum.indexer.scheduler import RateLimitedScheduler
    from oraculum.indexer.store import IndexStore
    from oraculum.vault.documents import DocumentStore
    from oraculum.vault.models import DocumentRef

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class _PendingEmbed:
    """One note waiting inside a queued batch."""

    note_id: str
    modified_at: int
    cancelled: bool = False


@dataclass(frozen=True, slots=True)
class RebuildReport:
    """Outcome of a full reconciliation pass."""

    documents: int
    embedded: int
    removed: int
    failed: int


def _embedding_text(note_id: str, content: str) -> str:
    """Title plus body, so empty notes still embed to something meaningful."""
    title = note_title(note_id)
    body = content.strip()
    return f"{title}\n\n{body}" if body else title


class IndexBuilder:
    """Diffs the vault against the index and schedules embedding work."""

    def __init__(
        self,
        store: IndexStore,
        scheduler: RateLimitedScheduler,
        client: EmbeddingClient,
        documents: DocumentStore,
        batch_size: int = 16,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._store = store
        self._scheduler = scheduler
        self._client = client
        self._documents = documents
        self.batch_size = batch_size

        # Current note id → its queued (not yet committed) embed
        self._in_flight: dict[str, _PendingEmbed] = {}
        # Note id → last terminal error message
        self.failures: dict[str, str] = {}
        self._backfill: asyncio.Task[int] | None = None

    # ------------------------------------------------------------------
    # Staleness
    # ------------------------------------------------------------------

    def is_stale(self, doc: DocumentRef) -> bool:
        entry = self._store.get(doc.id)
        return entry is None or entry.staleness_marker != doc.modified_at

    def is_queued(self, doc: DocumentRef) -> bool:
        pending = self._in_flight.get(doc.id)
        return pending is not None and pending.modified_at == doc.modified_at

    @property
    def queued_count(self) -> int:
        return len(self._in_flight)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def reconcile(
        self,
        documents: Sequence[DocumentRef],
        priority: Priority = Priority.BACKGROUND,
    ) -> int:
        """Queue embed batches for every stale note. Returns the number of tasks queued.

        Notes already queued at the same modification time are skipped, so
        calling this twice without changes queues nothing the second time.
        """
        stale = [doc for doc in documents if self.is_stale(doc) and not self.is_queued(doc)]
        if not stale:
            logger.debug("Reconcile: %d notes, all fresh", len(documents))
            return 0

        tasks = 0
        for start in range(0, len(stale), self.batch_size):
            self._queue_batch(stale[start : start + self.batch_size], priority)
            tasks += 1

        logger.info(
            "Reconcile: %d/%d notes stale, queued %d embed tasks",
            len(stale),
            len(documents),
            tasks,
        )
        return tasks

    def _queue_batch(self, docs: Sequence[DocumentRef], priority: Priority) -> ScheduledTask:
        batch: list[_PendingEmbed] = []
        for doc in docs:
            superseded = self._in_flight.get(doc.id)
            if superseded is not None:
                superseded.cancelled = True
            pending = _PendingEmbed(note_id=doc.id, modified_at=doc.modified_at)
            self._in_flight[doc.id] = pending
            batch.append(pending)

        if len(batch) == 1:
            name = f"embed {batch[0].note_id}"
        else:
            name = f"embed batch of {len(batch)} ({batch[0].note_id}, ...)"

        async def _run() -> int:
            return await self._embed_batch(batch)

        def _on_done(task: ScheduledTask) -> None:
            if task.state is TaskState.FAILED:
                self._release_failed(batch, task.error)

        return self._scheduler.enqueue(
            ScheduledTask(name=name, run=_run, priority=priority, on_done=_on_done)
        )

    # ------------------------------------------------------------------
    # Embed task body
    # ------------------------------------------------------------------

    async def _embed_batch(self, batch: list[_PendingEmbed]) -> int:
        """Embed the live members of *batch* and commit them. Returns entries written."""
        targets: list[_PendingEmbed] = []
        texts: list[str] = []
        for pending in batch:
            if pending.cancelled:
                continue
            try:
                content = await asyncio.to_thread(self._documents.read_content, pending.note_id)
            except (OSError, UnicodeDecodeError, PathTraversalError) as e:
                logger.warning("Cannot read %s — leaving it unindexed: %s", pending.note_id, e)
                self._forget(pending)
                self.failures[pending.note_id] = f"unreadable: {e}"
                continue
            targets.append(pending)
            texts.append(_embedding_text(pending.note_id, content))

        if not texts:
            return 0

        vectors = await asyncio.to_thread(self._client.embed, texts)
        if len(vectors) != len(texts):
            raise MalformedResponseError(
                f"Provider returned {len(vectors)} vectors for {len(texts)} texts",
                provider=self._client.provider_name,
            )
        expected = self._store.settings.dimensions
        for vector in vectors:
            if not vector or (expected and len(vector) != expected):
                raise MalformedResponseError(
                    f"Provider returned a {len(vector)}-dimensional vector, "
                    f"index expects {expected}",
                    provider=self._client.provider_name,
                )

        written = 0
        for pending, vector in zip(targets, vectors, strict=True):
            # Deleted, or superseded by newer work, while the call was in flight
            if pending.cancelled:
                continue
            self._store.put(
                pending.note_id,
                IndexEntry(staleness_marker=pending.modified_at, embedding=vector),
            )
            self._forget(pending)
            self.failures.pop(pending.note_id, None)
            written += 1

        if written:
            await asyncio.to_thread(self._store.save)
        logger.info("Indexed %d notes (%d in batch)", written, len(batch))
        return written

    def _forget(self, pending: _PendingEmbed) -> None:
        if self._in_flight.get(pending.note_id) is pending:
            del self._in_flight[pending.note_id]

    def _release_failed(self, batch: list[_PendingEmbed], error: BaseException | None) -> None:
        for pending in batch:
            if pending.cancelled or self._in_flight.get(pending.note_id) is not pending:
                continue
            self._forget(pending)
            self.failures[pending.note_id] = str(error) if error else "failed"
            logger.warning("Not indexed: %s (%s)", pending.note_id, error)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def ensure_indexed(self, doc: DocumentRef, *, force: bool = False) -> IndexEntry | None:
        """Interactive fast path: make sure *doc* itself is indexed, now.

        Embeds only *doc* (ahead of any background batches) when it is stale
        or *force* is set, and waits for it; a terminal failure is raised to
        the caller.  The rest of the vault is then reconciled in the
        background without waiting.
        """
        try:
            if force or self.is_stale(doc):
                task = self._queue_batch([doc], Priority.INTERACTIVE)
                await task.wait()
        finally:
            self.schedule_backfill()
        return self._store.get(doc.id)

    def schedule_backfill(self) -> None:
        """Reconcile the whole vault in the background, once at a time."""
        if self._backfill is not None and not self._backfill.done():
            return
        self._backfill = asyncio.get_running_loop().create_task(self._run_backfill())

    def cancel_backfill(self) -> None:
        if self._backfill is not None and not self._backfill.done():
            self._backfill.cancel()

    async def drain(self) -> None:
        """Wait for a pending backfill to queue its work, then for the queue to empty."""
        if self._backfill is not None:
            await self._backfill
        await self._scheduler.on_idle()

    async def _run_backfill(self) -> int:
        try:
            docs = await asyncio.to_thread(self._documents.list_documents)
        except OSError:
            logger.exception("Background backfill could not list the vault")
            return 0
        return self.reconcile(docs)

    async def rebuild(self, *, full: bool = False) -> RebuildReport:
        """Bring the whole index up to date and wait until the queue drains.

        Entries for notes that no longer exist are dropped; with *full* the
        index is cleared first so every note is embedded again.
        """
        docs = await asyncio.to_thread(self._documents.list_documents)
        live_ids = {doc.id for doc in docs}

        if full:
            removed = len(self._store)
            self._store.clear()
        else:
            removed = 0
            for note_id in self._store.ids() - live_ids:
                self._store.remove(note_id)
                removed += 1
        if removed:
            logger.info("Dropped %d index entries", removed)

        stale = [doc for doc in docs if self.is_stale(doc)]
        self.reconcile(docs)
        await self._scheduler.on_idle()
        if removed:
            await asyncio.to_thread(self._store.save)

        failed = sum(1 for doc in stale if doc.id in self.failures)
        return RebuildReport(
            documents=len(docs),
            embedded=len(stale) - failed,
            removed=removed,
            failed=failed,
        )

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------

    def handle_rename(self, old_id: str, new_id: str) -> None:
        """Move the entry to *new_id* and persist.

        The moved embedding keeps serving queries straight away. A rename that
        changes the title also queues a background re-embed of the note.
        """
        moved = self._store.rename(old_id, new_id)

        pending = self._in_flight.pop(old_id, None)
        if pending is not None:
            superseded = self._in_flight.get(new_id)
            if superseded is not None:
                superseded.cancelled = True
            pending.note_id = new_id
            self._in_flight[new_id] = pending
        elif moved and note_title(old_id) != note_title(new_id):
            doc = self._documents.ref(new_id)
            if doc is not None:
                self._queue_batch([doc], Priority.BACKGROUND)

        if old_id in self.failures:
            self.failures[new_id] = self.failures.pop(old_id)

        self._store.save()
        logger.info("Renamed in index: %s -> %s", old_id, new_id)

    def handle_delete(self, note_id: str) -> None:
        """Drop the entry and any queued embed for it, then persist."""
        removed = self._store.remove(note_id)
        pending = self._in_flight.pop(note_id, None)
        if pending is not None:
            pending.cancelled = True
        self.failures.pop(note_id, None)

        self._store.save()
        logger.info("Removed from index: %s (had entry: %s)", note_id, removed)
