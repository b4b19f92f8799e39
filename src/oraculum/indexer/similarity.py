"""Vector math for ranking — exact cosine similarity."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence


class DimensionMismatchError(ValueError):
    """Raised when two vectors cannot be compared."""

    def __init__(self, left: int, right: int) -> None:
        self.left = left
        self.right = right
        super().__init__(f"Vector dimensions must match and be non-zero: {left} != {right}")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between *a* and *b*, in [-1, 1].

    Returns 0.0 when either vector has zero norm.

    Raises:
        DimensionMismatchError: If the vectors are empty or differ in length.
    """
    if len(a) != len(b) or not a:
        raise DimensionMismatchError(len(a), len(b))

    dot = math.fsum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(math.fsum(x * x for x in a))
    norm_b = math.sqrt(math.fsum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0

    # Rounding can push |a·a| / (|a||a|) a hair past 1
    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))
