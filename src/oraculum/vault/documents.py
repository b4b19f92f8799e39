"""Vault document store — lists, reads, and writes markdown notes by id."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import frontmatter

from oraculum.vault.models import DocumentRef, wikilink
from oraculum.vault.security import validate_vault_path

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from oraculum.config import VaultConfig

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    """What the indexer needs from wherever notes live."""

    def list_documents(self) -> list[DocumentRef]: ...

    def ref(self, note_id: str) -> DocumentRef | None: ...

    def read_content(self, note_id: str) -> str: ...

    def write_related(self, note_id: str, related_ids: Sequence[str]) -> None: ...


def _mtime_ms(path: Path) -> int:
    return path.stat().st_mtime_ns // 1_000_000


class VaultDocuments:
    """Markdown notes under an Obsidian vault root, addressed by relative path."""

    def __init__(self, config: VaultConfig) -> None:
        self.config = config
        self.vault_root = config.path

    def note_id(self, path: Path) -> str | None:
        """Map an absolute file path to a note id, or None if it is not a vault note."""
        if path.suffix != ".md":
            return None
        try:
            rel = path.relative_to(self.vault_root)
        except ValueError:
            return None
        if any(part in self.config.excluded_folders for part in rel.parts):
            return None
        return rel.as_posix()

    def list_documents(self) -> list[DocumentRef]:
        """All notes in the vault, sorted by id."""
        refs: list[DocumentRef] = []
        for md_file in self.vault_root.rglob("*.md"):
            note_id = self.note_id(md_file)
            if note_id is None or not md_file.is_file():
                continue
            try:
                refs.append(DocumentRef(id=note_id, modified_at=_mtime_ms(md_file)))
            except OSError:
                logger.warning("Cannot stat %s — skipping", md_file)
        refs.sort(key=lambda r: r.id)
        logger.debug("Listed %d notes in %s", len(refs), self.vault_root)
        return refs

    def ref(self, note_id: str) -> DocumentRef | None:
        """Current ref for *note_id*, or None if the note does not exist."""
        path = validate_vault_path(note_id, self.vault_root)
        try:
            return DocumentRef(id=note_id, modified_at=_mtime_ms(path))
        except FileNotFoundError:
            return None

    def read_content(self, note_id: str) -> str:
        """Note body with YAML frontmatter stripped."""
        path = validate_vault_path(note_id, self.vault_root)
        with open(path, encoding="utf-8") as f:
            post = frontmatter.load(f)
        return post.content

    def write_content(self, note_id: str, text: str) -> None:
        """Overwrite the note with *text* verbatim."""
        path = validate_vault_path(note_id, self.vault_root)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        logger.debug("Wrote %d chars to %s", len(text), note_id)

    def write_related(self, note_id: str, related_ids: Sequence[str]) -> None:
        """Store *related_ids* as wikilinks in the note's ``related`` frontmatter field."""
        path = validate_vault_path(note_id, self.vault_root)
        with open(path, encoding="utf-8") as f:
            post = frontmatter.load(f)
        post.metadata["related"] = [wikilink(rid) for rid in related_ids]
        self.write_content(note_id, frontmatter.dumps(post) + "\n")
        logger.info("Linked %d related notes in %s", len(related_ids), note_id)
