"""Vector index port shared by the brute-force and native ANN backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence, runtime_checkable

import numpy as np


@dataclass(slots=True)
class VectorHit:
    """Single vector search result."""

    vector_id: int
    score: float


@runtime_checkable
class VectorIndexPort(Protocol):
    """Port interface for append-only vector storage with similarity search.

    Implementations should provide:
    - Stable integer vector ids that are never reused
    - All-or-nothing batch commits
    - Scores where higher means more similar
    - Idempotent release of any owned resources

    Backends are constructed through their ``open`` classmethod, which
    creates missing storage and loads existing vectors.

    Side effects: Writes to the index location (offline).
    """

    @property
    def dim(self) -> int:
        """Dimension of every stored vector."""
        ...

    def add_batch(
        self,
        vectors: Sequence[float] | np.ndarray,
        ids: Sequence[int] | None = None,
    ) -> None:
        """Commit ``n`` vectors given as a flat buffer of ``n * dim`` floats.

        Args:
            vectors: Contiguous vector data (a 2-D ``(n, dim)`` array is accepted)
            ids: Optional explicit ids, one per vector

        Raises:
            DimensionMismatchError: Buffer length is not a multiple of ``dim``
            IdCountMismatchError: ``ids`` length differs from ``n``
        """
        ...

    def search(self, query: Sequence[float] | np.ndarray, k: int) -> list[VectorHit]:
        """Return at most ``k`` hits ordered by descending score."""
        ...

    def __len__(self) -> int:
        """Number of committed vectors."""
        ...

    def close(self) -> None:
        """Release resources; safe to call more than once."""
        ...
