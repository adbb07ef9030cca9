"""Store coordinator for inserting and searching reviews.

Insert: text -> embedding -> vector id -> vector index -> metadata log ->
vector map log. Search: query -> embedding -> ANN candidates -> join against
the metadata log -> ranked, truncated hits.

Once a vector is committed to the index, a failure while appending to either
log is not rolled back. The store is then knowingly misaligned and the
alignment check reports it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from revstore.app.id_allocator import IdAllocator
from revstore.app.ports import EmbeddingPort, VectorIndexPort
from revstore.errors import (
    DimensionMismatchError,
    EmbeddingError,
    LockPoisonedError,
    OpenError,
    RevstoreError,
    ValidationError,
)
from revstore.models import ReviewInput, SearchHit, StoredReview, StorePaths
from revstore.storage import (
    AlignmentReport,
    append_metadata,
    append_metadata_many,
    append_vector_map,
    append_vector_map_many,
    count_lines,
    load_all_metadata,
    verify_alignment,
)
from revstore.utils.locks import RWLock

logger = logging.getLogger(__name__)

IndexFactory = Callable[[Path], VectorIndexPort]

DEFAULT_TOP_K = 5
CANDIDATE_FLOOR = 5
CANDIDATE_CEILING = 200


@dataclass(frozen=True, slots=True)
class StoreState:
    """Index handle, paths and id counter published together as one unit."""

    index: VectorIndexPort
    paths: StorePaths
    allocator: IdAllocator


class ReviewStore:
    """Coordinates the embedder, vector index and append-only logs.

    Inserts hold the index lock exclusively, which also serialises log
    appends; searches share it. The active paths have their own lock.
    Reconfiguration builds a complete :class:`StoreState` off to the side and
    publishes it under both locks, so readers see the old or the new
    configuration and never a mix.
    """

    def __init__(
        self,
        *,
        embedder: EmbeddingPort,
        index_factory: IndexFactory,
        paths: StorePaths,
        default_top_k: int = DEFAULT_TOP_K,
        candidate_floor: int = CANDIDATE_FLOOR,
        candidate_ceiling: int = CANDIDATE_CEILING,
        strict_metadata: bool = True,
    ) -> None:
        """Open the index at ``paths.index_path`` and seed the id counter.

        Args:
            embedder: Shared embedding provider
            index_factory: Opens a vector index at a location
            paths: Initial index, metadata log and map log locations
            default_top_k: Page size when a search does not request one
            candidate_floor: Minimum number of ANN candidates per search
            candidate_ceiling: Maximum number of ANN candidates per search
            strict_metadata: Fail on corrupt metadata lines instead of skipping
        """
        self._embedder = embedder
        self._index_factory = index_factory
        self._default_top_k = default_top_k
        self._candidate_floor = candidate_floor
        self._candidate_ceiling = candidate_ceiling
        self._strict_metadata = strict_metadata
        self._index_lock = RWLock()
        self._paths_lock = RWLock()
        self._state: StoreState | None = self._build_state(paths)

    # ------------------------------------------------------------------#
    # State management
    # ------------------------------------------------------------------#

    def _build_state(self, paths: StorePaths) -> StoreState:
        try:
            for path in paths.all():
                path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OpenError(f"Cannot create directories for {paths}: {exc}") from exc

        index = self._index_factory(paths.index_path)
        try:
            allocator = IdAllocator.from_map_log(paths.map_path)
            committed = len(index)
            if committed > allocator.peek():
                # Vectors committed without a map entry keep their ids.
                logger.warning(
                    "Index %s holds %d vectors but map log %s has %d entries; "
                    "next vector id advanced to %d",
                    paths.index_path,
                    committed,
                    paths.map_path,
                    allocator.peek(),
                    committed,
                )
                allocator.advance_to(committed)
            elif committed < allocator.peek():
                logger.warning(
                    "Index %s holds %d vectors but map log %s has %d entries; "
                    "inserts will fail until the index and logs are repaired",
                    paths.index_path,
                    committed,
                    paths.map_path,
                    allocator.peek(),
                )
        except BaseException:
            index.close()
            raise
        return StoreState(index=index, paths=paths, allocator=allocator)

    def _current(self) -> StoreState:
        state = self._state
        if state is None:
            raise LockPoisonedError("Review store is closed")
        return state

    @property
    def paths(self) -> StorePaths:
        """Currently active paths."""
        with self._paths_lock.read():
            return self._current().paths

    @property
    def next_vector_id(self) -> int:
        return self._current().allocator.peek()

    def reconfigure(
        self,
        index_path: Path | str,
        metadata_path: Path | str,
        map_path: Path | str,
    ) -> StorePaths:
        """Switch to a new index location and log paths atomically.

        Missing parent directories are created, a fresh index is opened at
        the new location and the id counter is recomputed from the new map
        log. Only then is the new state published. If any step fails the
        previous configuration stays active and the error propagates.

        Returns:
            The newly active paths.
        """
        new_paths = StorePaths(
            index_path=Path(index_path),
            metadata_path=Path(metadata_path),
            map_path=Path(map_path),
        )
        new_state = self._build_state(new_paths)

        with self._index_lock.write(), self._paths_lock.write():
            old_state = self._state
            if old_state is None:
                new_state.index.close()
                raise LockPoisonedError("Review store is closed")
            self._state = new_state

        old_state.index.close()
        logger.info(
            "Reconfigured store: index=%s metadata=%s map=%s",
            new_paths.index_path,
            new_paths.metadata_path,
            new_paths.map_path,
        )
        self.verify_alignment()
        return new_paths

    # ------------------------------------------------------------------#
    # Embedding helpers
    # ------------------------------------------------------------------#

    def _embed_one(self, text: str, dim: int) -> np.ndarray:
        try:
            vector = np.asarray(self._embedder.embed(text), dtype=np.float32).reshape(-1)
        except RevstoreError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"Embedding failed: {exc}") from exc
        if vector.size != dim:
            raise DimensionMismatchError(dim, int(vector.size))
        return vector

    def _embed_many(self, texts: list[str], dim: int) -> np.ndarray:
        try:
            result = self._embedder.embed_batch(texts)
        except RevstoreError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"Embedding failed: {exc}") from exc
        if len(result.embeddings) != len(texts):
            raise EmbeddingError(
                f"Embedding count mismatch: {len(result.embeddings)} vectors for {len(texts)} texts"
            )
        matrix = np.asarray(result.embeddings, dtype=np.float32)
        if matrix.ndim != 2 or matrix.shape[1] != dim:
            raise DimensionMismatchError(dim, int(matrix.size))
        logger.debug("Embedded %d texts in %.1f ms", len(texts), result.latency_ms)
        return matrix

    def _commit_vectors(self, state: StoreState, flat: np.ndarray, start: int, n: int) -> None:
        """Add ``n`` vectors under ids ``start..start+n-1``; caller holds the index write lock.

        A reservation is handed back only when the index is unchanged after a
        failed add. If vectors were committed before the failure (for example
        the engine stored them but could not persist), the ids stay consumed
        so they are never assigned again.
        """
        before = len(state.index)
        try:
            state.index.add_batch(flat, ids=list(range(start, start + n)))
        except BaseException:
            try:
                after = len(state.index)
            except Exception:
                after = before + n
            if after == before:
                state.allocator.release(start, n)
            else:
                state.allocator.advance_to(start + n)
                logger.error(
                    "Index %s changed from %d to %d vectors before failing; "
                    "ids %d..%d stay consumed and have no metadata",
                    state.paths.index_path,
                    before,
                    after,
                    start,
                    start + n - 1,
                )
            raise

    # ------------------------------------------------------------------#
    # Public API
    # ------------------------------------------------------------------#

    def insert(self, review: ReviewInput | dict[str, Any]) -> StoredReview:
        """Validate, embed and store a single review.

        Raises:
            ValidationError: The review is rejected; nothing is written.
            DimensionMismatchError: The embedder and index disagree on dimension.
        """
        parsed = ReviewInput.parse(review)
        vector = self._embed_one(parsed.text, self._current().index.dim)

        with self._index_lock.write():
            state = self._current()
            vector_id = state.allocator.reserve(1)
            self._commit_vectors(state, vector, vector_id, 1)

            stored = StoredReview.from_input(parsed, vector_id)
            with self._paths_lock.read():
                paths = state.paths
            append_metadata(paths.metadata_path, stored)
            append_vector_map(paths.map_path, vector_id, stored.id)

        logger.debug("Stored review %s as vector %d", stored.id, vector_id)
        return stored

    def bulk_insert(self, reviews: Iterable[ReviewInput | dict[str, Any]]) -> list[StoredReview]:
        """Store several reviews with one embedding call and one index commit.

        Every review is validated before anything is embedded or written; the
        first invalid review rejects the whole batch. Ids are contiguous and
        log lines are appended in input order.
        """
        items = list(reviews)
        if not items:
            raise ValidationError("Bulk insert requires at least one review")

        parsed: list[ReviewInput] = []
        for position, item in enumerate(items):
            try:
                parsed.append(ReviewInput.parse(item))
            except ValidationError as exc:
                raise ValidationError(f"Review {position}: {exc}") from exc

        matrix = self._embed_many([review.text for review in parsed], self._current().index.dim)
        n = len(parsed)

        with self._index_lock.write():
            state = self._current()
            start = state.allocator.reserve(n)
            vector_ids = list(range(start, start + n))
            self._commit_vectors(state, matrix.reshape(-1), start, n)

            stored = [
                StoredReview.from_input(review, vector_id)
                for review, vector_id in zip(parsed, vector_ids)
            ]
            with self._paths_lock.read():
                paths = state.paths
            append_metadata_many(paths.metadata_path, stored)
            append_vector_map_many(paths.map_path, ((r.vector_id, r.id) for r in stored))

        logger.info("Stored %d reviews as vectors %d..%d", n, start, start + n - 1)
        return stored

    def search(self, query: str, top_k: int | None = None) -> list[SearchHit]:
        """Return up to ``top_k`` stored reviews most similar to ``query``.

        The index is asked for ``max(top_k, floor)`` candidates, capped at the
        ceiling, so that dropping candidates without metadata still fills a
        page. Candidates whose vector id has no metadata record are skipped.
        Because of the ceiling, a ``top_k`` above ``candidate_ceiling`` (200 by
        default) returns at most ``candidate_ceiling`` hits.
        """
        if not query or not query.strip():
            raise ValidationError("Query must not be empty")
        page = self._default_top_k if top_k is None else int(top_k)
        if page < 0:
            raise ValidationError(f"top_k must be non-negative; got {page}")
        if page == 0:
            return []
        candidates = min(max(page, self._candidate_floor), self._candidate_ceiling)

        vector = self._embed_one(query, self._current().index.dim)

        with self._index_lock.read():
            state = self._current()
            hits = state.index.search(vector, candidates)
            with self._paths_lock.read():
                metadata_path = state.paths.metadata_path
            records = load_all_metadata(metadata_path, strict=self._strict_metadata)

        by_vector = {record.vector_id: record for record in records}
        results: list[SearchHit] = []
        for hit in hits:
            record = by_vector.get(hit.vector_id)
            if record is None:
                logger.debug("Dropping vector %d without metadata", hit.vector_id)
                continue
            results.append(SearchHit(review=record, score=hit.score))

        results.sort(key=lambda item: item.score, reverse=True)
        return results[:page]

    def verify_alignment(self) -> AlignmentReport:
        """Compare the vector count with both log line counts (read-only)."""
        with self._index_lock.read():
            state = self._current()
            return verify_alignment(state.index, state.paths.metadata_path, state.paths.map_path)

    def stats(self) -> dict[str, Any]:
        """Return counts and paths for the active configuration."""
        with self._index_lock.read():
            state = self._current()
            return {
                "vectors": len(state.index),
                "metadata_records": count_lines(state.paths.metadata_path),
                "map_entries": count_lines(state.paths.map_path),
                "next_vector_id": state.allocator.peek(),
                "dim": state.index.dim,
                "index_path": str(state.paths.index_path),
                "metadata_path": str(state.paths.metadata_path),
                "map_path": str(state.paths.map_path),
            }

    def close(self) -> None:
        """Release the index; further calls raise :class:`LockPoisonedError`."""
        with self._index_lock.write(), self._paths_lock.write():
            state, self._state = self._state, None
        if state is not None:
            state.index.close()

    def __enter__(self) -> ReviewStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
