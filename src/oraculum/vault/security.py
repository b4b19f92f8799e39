"""Keeps note ids inside the vault."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path


class PathTraversalError(ValueError):
    """A note id resolved outside the vault, or to the vault root itself."""

    def __init__(self, note_id: str, vault_root: Path) -> None:
        self.note_id = note_id
        self.vault_root = vault_root
        super().__init__(f"Note id {note_id!r} does not name a file under {vault_root}")


def validate_vault_path(note_id: str, vault_root: Path) -> Path:
    """Map *note_id* to an absolute path strictly below *vault_root*.

    Symlinks and ``..`` segments are resolved first. The note itself need not
    exist yet.
    """
    root = vault_root.resolve()
    target = root.joinpath(note_id).resolve()
    # A path is never among its own parents, so the root itself fails too
    if root not in target.parents:
        raise PathTraversalError(note_id, vault_root)
    return target
