"""Watchdog bridge: turns raw file system events into note changes."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, TypeAlias

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

if TYPE_CHECKING:
    from collections.abc import Callable

    from watchdog.events import FileSystemEvent

    from oraculum.config import VaultConfig

logger = logging.getLogger(__name__)

# on_change(path, kind, dest); dest is only set when kind == "moved"
ChangeCallback: TypeAlias = "Callable[[Path, str, Path | None], None]"


class _VaultEventHandler(FileSystemEventHandler):
    """Forwards events for markdown files outside excluded folders."""

    def __init__(
        self,
        vault_root: Path,
        excluded_folders: list[str],
        on_change: ChangeCallback,
    ) -> None:
        self.vault_root = vault_root
        self.excluded = frozenset(excluded_folders)
        self.on_change = on_change

    def _note_path(self, raw: str | bytes) -> Path | None:
        """Return *raw* as a Path when it names a watched note, else None."""
        path = Path(raw.decode() if isinstance(raw, bytes) else raw)
        if path.suffix != ".md" or not path.is_relative_to(self.vault_root):
            return None
        if self.excluded.intersection(path.relative_to(self.vault_root).parts):
            return None
        return path

    def _report(self, event: FileSystemEvent, kind: str) -> None:
        if event.is_directory:
            return
        path = self._note_path(event.src_path)
        if path is not None:
            logger.debug("Note %s: %s", kind, path)
            self.on_change(path, kind, None)

    def on_created(self, event: FileSystemEvent) -> None:
        self._report(event, "created")

    def on_modified(self, event: FileSystemEvent) -> None:
        self._report(event, "modified")

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._report(event, "deleted")

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        src = self._note_path(event.src_path)
        dest = self._note_path(event.dest_path)
        if src and dest:
            logger.info("Note moved: %s -> %s", src, dest)
            self.on_change(src, "moved", dest)
        elif src:
            # Left the vault, or lost its .md suffix
            self.on_change(src, "deleted", None)
        elif dest:
            self.on_change(dest, "created", None)


class VaultWatcher:
    """Recursive watchdog observer over the vault root.

    *on_change* is called from the observer thread; callers hop back onto
    their loop themselves.
    """

    def __init__(self, config: VaultConfig, on_change: ChangeCallback) -> None:
        self.config = config
        self.handler = _VaultEventHandler(
            vault_root=config.path,
            excluded_folders=config.excluded_folders,
            on_change=on_change,
        )
        self._observer: Observer | None = None  # type: ignore[valid-type]

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = Observer()
        observer.schedule(self.handler, str(self.config.path), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Watching %s", self.config.path)

    def stop(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join()
        logger.info("Stopped watching %s", self.config.path)

    async def run_async(self) -> None:
        """Watch until the calling task is cancelled."""
        self.start()
        try:
            await asyncio.Event().wait()
        finally:
            self.stop()
