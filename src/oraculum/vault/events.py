"""Note events and the async bus that carries them.

The watch handler (or an editor integration) publishes what happened to a
note, by note id; the related-notes service subscribes and keeps the
embedding index in step.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from time import time
from typing import TYPE_CHECKING, TypeAlias

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine
    from typing import Any

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class VaultEvent:
    """Base event; ``note_id`` is the vault-relative path."""

    note_id: str
    timestamp: float = field(default_factory=time)


@dataclass(frozen=True, slots=True)
class NoteOpenedEvent(VaultEvent):
    """A note was opened in an editor."""


@dataclass(frozen=True, slots=True)
class NoteCreatedEvent(VaultEvent):
    """A new note appeared."""


@dataclass(frozen=True, slots=True)
class NoteModifiedEvent(VaultEvent):
    """An existing note's content changed."""


@dataclass(frozen=True, slots=True)
class NoteRenamedEvent(VaultEvent):
    """A note moved from ``old_id`` to ``note_id``."""

    old_id: str = ""


@dataclass(frozen=True, slots=True)
class NoteDeletedEvent(VaultEvent):
    """A note was deleted."""


# Union of all subscribable event types
AnyVaultEvent: TypeAlias = (
    NoteOpenedEvent | NoteCreatedEvent | NoteModifiedEvent | NoteRenamedEvent | NoteDeletedEvent
)

# Callback signature: async fn(event) -> None
EventCallback: TypeAlias = "Callable[[AnyVaultEvent], Coroutine[Any, Any, None]]"


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------


class VaultEventBus:
    """Async publish/subscribe bus for vault events.

    A callback subscribed to an event class also receives its subclasses,
    so subscribing to ``VaultEvent`` sees every event.  The callbacks for
    one event run concurrently; one that raises is logged and affects
    neither the others nor the publisher.
    """

    def __init__(self) -> None:
        self._subscribers: defaultdict[type[VaultEvent], list[EventCallback]] = defaultdict(list)

    def subscribe(self, event_type: type[VaultEvent], callback: EventCallback) -> None:
        """Register *callback* for *event_type*. Registering twice is a no-op."""
        callbacks = self._subscribers[event_type]
        if callback in callbacks:
            return
        callbacks.append(callback)
        logger.debug("Subscribed %s to %s", callback.__qualname__, event_type.__name__)

    def unsubscribe(self, event_type: type[VaultEvent], callback: EventCallback) -> None:
        callbacks = self._subscribers.get(event_type)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    def subscribers_for(self, event_type: type[VaultEvent]) -> list[EventCallback]:
        """Callbacks that receive *event_type*, most specific registration first."""
        return [cb for cls in event_type.__mro__ for cb in self._subscribers.get(cls, ())]

    async def publish(self, event: AnyVaultEvent) -> int:
        """Deliver *event* and wait for every callback.

        Returns the number of callbacks that completed without raising.
        """
        callbacks = self.subscribers_for(type(event))
        if not callbacks:
            return 0

        results = await asyncio.gather(*(cb(event) for cb in callbacks), return_exceptions=True)
        delivered = 0
        for cb, result in zip(callbacks, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Subscriber %s failed on %s(%s)",
                    cb.__qualname__,
                    type(event).__name__,
                    event.note_id,
                    exc_info=result,
                )
            else:
                delivered += 1
        return delivered

    @property
    def subscriber_count(self) -> int:
        return sum(len(v) for v in self._subscribers.values())
