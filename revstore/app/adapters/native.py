"""Vector index adapter over a native ANN engine binding."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

import numpy as np

from revstore.app.ports.ann_engine import AnnEngineBinding, EngineHandle, EngineStatus
from revstore.app.ports.vector_index import VectorHit, VectorIndexPort
from revstore.errors import (
    DimensionMismatchError,
    EngineError,
    IdCountMismatchError,
    OpenError,
)
from revstore.utils.locks import RWLock

logger = logging.getLogger(__name__)


def _raise_for_status(status: EngineStatus, operation: str, *, error: type[Exception] = EngineError) -> None:
    if status.ok:
        return
    message = status.message or "unknown error"
    if error is EngineError:
        raise EngineError(f"{operation} failed: {message}", code=status.code)
    raise error(f"{operation} failed: {message}")


class NativeAnnIndex(VectorIndexPort):
    """Approximate nearest neighbour index reached through an engine binding.

    The adapter owns the engine handle for its whole lifetime and releases it
    exactly once, either through :meth:`close` or the context manager. It
    validates shapes before crossing the foreign boundary, marshals vectors as
    one contiguous float32 buffer and ids as int64, and relies on nothing but
    the binding's call contract.

    Side effects: The engine writes to its index location.
    """

    def __init__(
        self,
        binding: AnnEngineBinding,
        handle: EngineHandle,
        *,
        location: Path,
        dim: int,
        count: int,
    ) -> None:
        self._binding = binding
        self._handle: EngineHandle | None = handle
        self._location = Path(location)
        self._dim = int(dim)
        self._count = int(count)
        self._lock = RWLock()

    @classmethod
    def open(
        cls,
        location: Path | str,
        dim: int,
        params: str = "",
        *,
        binding: AnnEngineBinding,
    ) -> NativeAnnIndex:
        """Open or create the engine index at ``location``.

        Raises:
            OpenError: ``dim`` is not positive or the engine refused to open.
        """
        if int(dim) <= 0:
            raise OpenError(f"Index dimension must be positive; got {dim}")

        path = Path(location)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OpenError(f"Cannot create index directory {path}: {exc}") from exc

        handle, status = binding.open(str(path), int(dim), params)
        if not status.ok:
            if handle is not None:
                binding.close(handle)
            _raise_for_status(status, f"{binding.name} open", error=OpenError)
        if handle is None:
            raise OpenError(f"{binding.name} open returned no handle")

        try:
            count = binding.count(handle)
        except Exception:
            binding.close(handle)
            raise

        logger.info("Opened %s index %s with %d vectors", binding.name, path, count)
        return cls(binding, handle, location=path, dim=int(dim), count=count)

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def engine_name(self) -> str:
        return self._binding.name

    def add_batch(
        self,
        vectors: Sequence[float] | np.ndarray,
        ids: Sequence[int] | None = None,
    ) -> None:
        flat = np.ascontiguousarray(np.asarray(vectors, dtype=np.float32).reshape(-1))
        n = flat.size // self._dim
        if flat.size != n * self._dim:
            raise DimensionMismatchError(self._dim, int(flat.size))
        id_array: np.ndarray | None = None
        if ids is not None:
            id_array = np.ascontiguousarray(np.asarray(ids, dtype=np.int64).reshape(-1))
            if id_array.size != n:
                raise IdCountMismatchError(n, int(id_array.size))
        if n == 0:
            return

        with self._lock.write():
            handle = self._require_handle()
            status = self._binding.add(handle, flat, n, id_array)
            _raise_for_status(status, f"{self._binding.name} add")
            self._count += n
            status = self._binding.save(handle)
            # The vectors are in the engine and counted even if persisting them fails.
            _raise_for_status(status, f"{self._binding.name} save after adding {n} vectors")

    def search(self, query: Sequence[float] | np.ndarray, k: int) -> list[VectorHit]:
        q = np.ascontiguousarray(np.asarray(query, dtype=np.float32).reshape(-1))
        if q.size != self._dim:
            raise DimensionMismatchError(self._dim, int(q.size))
        if k < 0:
            raise ValueError(f"k must be non-negative; got {k}")

        with self._lock.read():
            handle = self._require_handle()
            effective_k = min(int(k), self._count)
            if effective_k == 0:
                return []
            ids, scores, status = self._binding.search(handle, q, effective_k)
        _raise_for_status(status, f"{self._binding.name} search")

        hits: list[VectorHit] = []
        for vector_id, score in zip(ids, scores):
            # Engines pad short result sets with negative ids.
            if int(vector_id) < 0:
                continue
            hits.append(VectorHit(vector_id=int(vector_id), score=float(score)))
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits

    def save(self) -> None:
        with self._lock.write():
            status = self._binding.save(self._require_handle())
        _raise_for_status(status, f"{self._binding.name} save")

    def __len__(self) -> int:
        with self._lock.read():
            return self._count

    def close(self) -> None:
        with self._lock.write():
            handle, self._handle = self._handle, None
        if handle is not None:
            self._binding.close(handle)
            logger.debug("Closed %s index %s", self._binding.name, self._location)

    def __enter__(self) -> NativeAnnIndex:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __del__(self) -> None:
        try:
            if getattr(self, "_handle", None) is not None:
                self.close()
        except Exception as exc:
            logger.debug("Ignoring error while releasing index at shutdown: %s", exc)

    def _require_handle(self) -> EngineHandle:
        if self._handle is None:
            raise OpenError(f"{self._binding.name} index {self._location} is closed")
        return self._handle
