"""Embedding port interface for review and query text.

Defines a protocol for text embedding providers and a small DTO for
returning vectors with minimal telemetry. The store treats the provider as
a black box with a fixed output dimension.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence, runtime_checkable


@dataclass(slots=True)
class EmbeddingResult:
    """Embedding vectors and basic telemetry."""

    embeddings: list[list[float]]
    latency_ms: float
    model: str | None = None
    dimensions: int | None = None


@runtime_checkable
class EmbeddingPort(Protocol):
    """Port interface for text embedding providers.

    Implementations must:
    - Return vectors of the same dimension for the process lifetime
    - Preserve input count and order in batch calls
    """

    @property
    def dimensions(self) -> int:
        """Output dimension of every vector."""
        ...

    def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        ...

    def embed_batch(self, texts: Sequence[str]) -> EmbeddingResult:
        """Embed ``texts`` in one call.

        Args:
            texts: Texts to embed (ordered)

        Returns:
            EmbeddingResult with one vector per input, in input order
        """
        ...
