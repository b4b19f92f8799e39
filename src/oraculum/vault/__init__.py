"""Vault operations — reading, writing, and watching Obsidian vault notes."""

from oraculum.vault.documents import DocumentStore, VaultDocuments
from oraculum.vault.events import (
    NoteCreatedEvent,
    NoteDeletedEvent,
    NoteModifiedEvent,
    NoteOpenedEvent,
    NoteRenamedEvent,
    VaultEventBus,
)
from oraculum.vault.models import DocumentRef
from oraculum.vault.security import PathTraversalError, validate_vault_path
from oraculum.vault.watch_handler import VaultChangeHandler
from oraculum.vault.watcher import VaultWatcher

__all__ = [
    "DocumentRef",
    "DocumentStore",
    "NoteCreatedEvent",
    "NoteDeletedEvent",
    "NoteModifiedEvent",
    "NoteOpenedEvent",
    "NoteRenamedEvent",
    "PathTraversalError",
    "VaultChangeHandler",
    "VaultDocuments",
    "VaultEventBus",
    "VaultWatcher",
    "validate_vault_path",
]
