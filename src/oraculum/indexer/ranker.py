"""Related notes — exact top-K cosine ranking over the embedding index.

A linear scan: O(N·d) per query for N indexed notes of dimension d, which
is fine for vaults of a few thousand notes and keeps results exact.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from oraculum.indexer.similarity import cosine_similarity

if TYPE_CHECKING:
    from oraculum.indexer.store import IndexStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RelatedNote:
    """A note ranked against a source note."""

    id: str
    score: float


class SimilarityRanker:
    """Ranks indexed notes by similarity to a given note. Read-only over the store."""

    def __init__(self, store: IndexStore) -> None:
        self._store = store

    def related(self, note_id: str, top_k: int = 5) -> list[RelatedNote]:
        """The *top_k* notes most similar to *note_id*, best first.

        Returns an empty list when *note_id* is not indexed. Ties keep index
        order.

        Raises:
            DimensionMismatchError: If the index mixes vector dimensions.
        """
        target = self._store.get(note_id)
        if target is None:
            logger.debug("No index entry for %s — nothing to rank", note_id)
            return []
        if top_k <= 0:
            return []

        scored = [
            RelatedNote(id=other_id, score=cosine_similarity(target.embedding, entry.embedding))
            for other_id, entry in self._store.all_entries()
            if other_id != note_id
        ]
        # sorted() is stable with reverse=True, so ties keep index order
        ranked = sorted(scored, key=lambda r: r.score, reverse=True)[:top_k]

        if ranked:
            logger.debug(
                "Related to %s: %d of %d candidates (top score: %.3f)",
                note_id,
                len(ranked),
                len(scored),
                ranked[0].score,
            )
        return ranked
