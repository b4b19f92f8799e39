"""Data models for vault notes."""

from __future__ import annotations

from pathlib import PurePosixPath

from pydantic import BaseModel, ConfigDict


def note_title(note_id: str) -> str:
    """Note title as Obsidian shows it: the file stem."""
    return PurePosixPath(note_id).stem


def wikilink(note_id: str) -> str:
    """``[[link]]`` to a note id, without the ``.md`` suffix."""
    return f"[[{PurePosixPath(note_id).with_suffix('').as_posix()}]]"


class DocumentRef(BaseModel):
    """A note as the index sees it: a stable id plus its modification time.

    ``id`` is the vault-relative POSIX path (``"projects/oraculum.md"``);
    ``modified_at`` is the file mtime in integer milliseconds.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    modified_at: int
