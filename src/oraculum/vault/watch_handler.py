"""Debounced change handler — turns raw watcher callbacks into typed vault events.

Obsidian fires several file events per save, so creates, edits and deletes
are coalesced per path and published once ``debounce_ms`` of silence has
passed.  Moves are published straight away as renames: the index can move
an entry without re-embedding, and any edit still waiting on the old path
is carried over to the new one.

``handle_change`` is safe to call from the watchdog thread; all state lives
on the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from oraculum.vault.events import (
    NoteCreatedEvent,
    NoteDeletedEvent,
    NoteModifiedEvent,
    NoteRenamedEvent,
)

if TYPE_CHECKING:
    from pathlib import Path

    from oraculum.config import WatchConfig
    from oraculum.vault.documents import VaultDocuments
    from oraculum.vault.events import AnyVaultEvent, VaultEventBus

logger = logging.getLogger(__name__)


class VaultChangeHandler:
    """Debounces watcher callbacks and publishes them on a ``VaultEventBus``.

    Parameters
    ----------
    config:
        Watch settings (debounce window).
    documents:
        Maps absolute paths to note ids.
    event_bus:
        Bus the typed events are published on.
    loop:
        Loop that owns the handler; defaults to the running loop.
    """

    def __init__(
        self,
        config: WatchConfig,
        documents: VaultDocuments,
        event_bus: VaultEventBus,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._config = config
        self._documents = documents
        self._event_bus = event_bus
        self._loop = loop or asyncio.get_running_loop()

        # Debounce state: path → (scheduled handle, event type)
        self._pending: dict[Path, tuple[asyncio.TimerHandle, str]] = {}
        self._publishing: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def handle_change(self, path: Path, event_type: str, dest_path: Path | None = None) -> None:
        """Entry point for ``VaultWatcher`` (any thread)."""
        self._loop.call_soon_threadsafe(self._on_change, path, event_type, dest_path)

    @property
    def pending_count(self) -> int:
        """Number of paths awaiting debounce resolution."""
        return len(self._pending)

    def cancel_all(self) -> None:
        """Drop every pending debounce timer. Called during shutdown."""
        for handle, _ in self._pending.values():
            handle.cancel()
        self._pending.clear()

    # ------------------------------------------------------------------
    # Internal processing
    # ------------------------------------------------------------------

    def _on_change(self, path: Path, event_type: str, dest_path: Path | None) -> None:
        if event_type == "moved" and dest_path is not None:
            self._on_move(path, dest_path)
            return
        self._cancel(path)
        self._debounce(path, event_type)

    def _on_move(self, src: Path, dest: Path) -> None:
        old_id = self._documents.note_id(src)
        new_id = self._documents.note_id(dest)
        waiting = self._cancel(src)
        if old_id is None or new_id is None:
            logger.debug("Ignoring move %s -> %s outside the vault", src, dest)
            return

        self._publish(NoteRenamedEvent(note_id=new_id, old_id=old_id))
        if waiting is not None and waiting != "deleted":
            self._debounce(dest, "modified")

    def _cancel(self, path: Path) -> str | None:
        """Cancel the pending debounce for *path*; return its event type."""
        pending = self._pending.pop(path, None)
        if pending is None:
            return None
        handle, event_type = pending
        handle.cancel()
        return event_type

    def _debounce(self, path: Path, event_type: str) -> None:
        delay = self._config.debounce_ms / 1000.0
        handle = self._loop.call_later(delay, self._fire, path, event_type)
        self._pending[path] = (handle, event_type)

    def _fire(self, path: Path, event_type: str) -> None:
        self._pending.pop(path, None)
        note_id = self._documents.note_id(path)
        if note_id is None:
            return

        event: AnyVaultEvent
        if event_type == "deleted":
            event = NoteDeletedEvent(note_id=note_id)
        elif not path.exists():
            logger.debug("File vanished before processing: %s", path)
            return
        elif event_type == "created":
            event = NoteCreatedEvent(note_id=note_id)
        else:
            event = NoteModifiedEvent(note_id=note_id)

        logger.debug("Watch: %s %s", event_type, note_id)
        self._publish(event)

    def _publish(self, event: AnyVaultEvent) -> None:
        task = self._loop.create_task(self._event_bus.publish(event))
        self._publishing.add(task)
        task.add_done_callback(self._publishing.discard)
