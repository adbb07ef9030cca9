"""Deterministic hashing embedder implementing EmbeddingPort."""

from __future__ import annotations

import re
import time
from collections.abc import Sequence

import numpy as np

from revstore.app.ports.embedding import EmbeddingPort, EmbeddingResult

FNV_OFFSET = 0xCBF29CE484222325
FNV_PRIME = 0x100000001B3
_MASK = (1 << 64) - 1
_TOKEN = re.compile(r"\w+", re.UNICODE)


def fnv1a_64(data: bytes) -> int:
    value = FNV_OFFSET
    for byte in data:
        value ^= byte
        value = (value * FNV_PRIME) & _MASK
    return value


class HashEmbedder(EmbeddingPort):
    """Feature-hashing embedder with no model dependency.

    Each lowercase word token is hashed with 64-bit FNV-1a into a bucket and
    a sign; the resulting bag-of-words vector is L2-normalised. Texts sharing
    words get positive cosine similarity, which is enough for tests and
    offline use.
    """

    MODEL_ID = "fnv1a-hash"

    def __init__(self, *, dimensions: int = 256) -> None:
        if dimensions <= 0:
            raise ValueError(f"dimensions must be positive; got {dimensions}")
        self._dim = int(dimensions)

    @property
    def dimensions(self) -> int:
        return self._dim

    def embed(self, text: str) -> list[float]:
        vector = np.zeros(self._dim, dtype=np.float32)
        tokens = _TOKEN.findall(text.lower()) or [text]
        for token in tokens:
            digest = fnv1a_64(token.encode("utf-8"))
            bucket = digest % self._dim
            sign = 1.0 if (digest >> 63) == 0 else -1.0
            vector[bucket] += sign
        norm = float(np.linalg.norm(vector))
        if norm > 0:
            vector /= norm
        return vector.tolist()

    def embed_batch(self, texts: Sequence[str]) -> EmbeddingResult:
        start = time.perf_counter()
        vectors = [self.embed(text) for text in texts]
        return EmbeddingResult(
            embeddings=vectors,
            latency_ms=(time.perf_counter() - start) * 1000.0,
            model=self.MODEL_ID,
            dimensions=self._dim,
        )
