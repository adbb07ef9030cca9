"""sentence-transformers embedding adapter implementing EmbeddingPort."""

from __future__ import annotations

import time
from collections.abc import Sequence
from typing import Any

from revstore.app.ports.embedding import EmbeddingPort, EmbeddingResult
from revstore.errors import EmbeddingError


class SentenceTransformerEmbedder(EmbeddingPort):
    """Embedding adapter backed by a local sentence-transformers model.

    The model is loaded on first use. Its output dimension must match the
    dimension the vector index was opened with.
    """

    def __init__(self, *, model_name: str, dimensions: int) -> None:
        self._model_name = model_name
        self._dim = int(dimensions)
        self._model: Any | None = None

    @property
    def dimensions(self) -> int:
        return self._dim

    @property
    def model(self) -> Any:
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except Exception as exc:  # pragma: no cover - optional dep
                raise EmbeddingError(
                    "The 'sentence-transformers' package is required for model embeddings. "
                    "Install it with 'pip install revstore[embeddings]'."
                ) from exc
            model = SentenceTransformer(self._model_name)
            actual = int(model.get_sentence_embedding_dimension() or 0)
            if actual != self._dim:
                raise EmbeddingError(
                    f"Model {self._model_name} produces {actual}-dimensional vectors; "
                    f"index expects {self._dim}"
                )
            self._model = model
        return self._model

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text]).embeddings[0]

    def embed_batch(self, texts: Sequence[str]) -> EmbeddingResult:
        if not texts:
            return EmbeddingResult(
                embeddings=[], latency_ms=0.0, model=self._model_name, dimensions=self._dim
            )
        start = time.perf_counter()
        encoded = self.model.encode(list(texts), convert_to_numpy=True, normalize_embeddings=True)
        return EmbeddingResult(
            embeddings=[row.tolist() for row in encoded],
            latency_ms=(time.perf_counter() - start) * 1000.0,
            model=self._model_name,
            dimensions=self._dim,
        )
