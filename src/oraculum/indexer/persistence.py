"""Plugin data blob — whole-snapshot JSON persistence for settings and the index.

The blob mirrors an Obsidian plugin's ``data.json``::

    {
      "settings": {"provider": "openai", "model": "...", "dimensions": 1536},
      "index": {"notes/a.md": {"stalenessMarker": 1718000000000, "embedding": [...]}}
    }

Writes go to a temporary sibling that is renamed over the target, so a crash
leaves either the previous snapshot or the new one, never a partial file.
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class StoreUnavailableError(Exception):
    """Raised when the plugin data blob cannot be read or written."""

    def __init__(self, message: str, path: Path, original: Exception | None = None) -> None:
        super().__init__(message)
        self.path = path
        self.original = original


class IndexEntry(BaseModel):
    """Embedding of one note, tagged with the mtime it was computed from."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    staleness_marker: int = Field(alias="stalenessMarker")
    embedding: list[float]


class IndexSettings(BaseModel):
    """Fingerprint of the embedding setup an index was built with."""

    provider: str = ""
    model: str = ""
    dimensions: int = 0


class PluginData(BaseModel):
    """The complete persisted blob."""

    settings: IndexSettings = Field(default_factory=IndexSettings)
    index: dict[str, IndexEntry] = Field(default_factory=dict)


class PluginDataStore:
    """Reads and overwrites the plugin data blob at *path*."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load_blob(self) -> PluginData | None:
        """Return the stored blob, or None if nothing has been saved yet."""
        if not self.path.exists():
            logger.info("No plugin data at %s, starting fresh", self.path)
            return None
        try:
            raw = self.path.read_bytes()
            return PluginData.model_validate_json(raw)
        except (OSError, ValidationError) as e:
            raise StoreUnavailableError(
                f"Cannot load plugin data from {self.path}: {e}", self.path, original=e
            ) from e

    def save_blob(self, data: PluginData) -> None:
        """Atomically replace the stored blob with *data*."""
        payload = data.model_dump_json(by_alias=True)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_name, self.path)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise StoreUnavailableError(
                f"Cannot save plugin data to {self.path}: {e}", self.path, original=e
            ) from e
        logger.debug("Saved plugin data to %s (%d entries)", self.path, len(data.index))
