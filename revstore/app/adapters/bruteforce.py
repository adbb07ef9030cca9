"""Brute-force cosine similarity index backed by an append-only binary file."""

from __future__ import annotations

import logging
import os
import struct
from collections.abc import Sequence
from pathlib import Path

import numpy as np

from revstore.app.ports.vector_index import VectorHit, VectorIndexPort
from revstore.errors import (
    DimensionMismatchError,
    IdCountMismatchError,
    IdSequenceError,
    OpenError,
)
from revstore.utils.locks import RWLock

logger = logging.getLogger(__name__)

_LENGTH = struct.Struct("<I")
_FLOAT_LE = np.dtype("<f4")


class BruteForceIndex(VectorIndexPort):
    """Exact linear-scan index.

    On disk the index is a sequence of records, each a little-endian uint32
    length ``L`` followed by ``L`` little-endian float32 values. Vectors are
    numbered by their position in the file, so a vector id is its 0-based
    record index. Appending a record is the only mutation.
    """

    def __init__(self, path: Path, dim: int, matrix: np.ndarray, file_size: int) -> None:
        self._path = Path(path)
        self._dim = int(dim)
        self._matrix = matrix
        self._norms = np.linalg.norm(matrix, axis=1) if len(matrix) else np.zeros(0, np.float32)
        self._file_size = file_size
        self._lock = RWLock()
        self._closed = False

    @classmethod
    def open(cls, location: Path | str, dim: int, params: str = "") -> BruteForceIndex:
        """Open the index file at ``location``, creating it when absent.

        The in-memory matrix is rebuilt by replaying the file from offset 0.
        A trailing partial record left by a crash mid-append is discarded and
        the file is truncated back to the last complete record.

        Raises:
            OpenError: ``dim`` is not positive, or the file is unreadable or corrupt.
        """
        if int(dim) <= 0:
            raise OpenError(f"Index dimension must be positive; got {dim}")
        if params:
            logger.debug("Brute-force index ignores engine parameters %r", params)

        path = Path(location)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if not path.exists():
                path.touch()
            data = path.read_bytes()
        except OSError as exc:
            raise OpenError(f"Cannot open vector file {path}: {exc}") from exc

        rows, valid_size = _replay(data, int(dim), path)
        if valid_size < len(data):
            logger.warning(
                "Discarding %d trailing bytes of a partial vector record in %s",
                len(data) - valid_size,
                path,
            )
            try:
                with open(path, "r+b") as fh:
                    fh.truncate(valid_size)
                    fh.flush()
                    os.fsync(fh.fileno())
            except OSError as exc:
                raise OpenError(f"Cannot truncate partial record in {path}: {exc}") from exc

        matrix = np.vstack(rows) if rows else np.zeros((0, int(dim)), dtype=np.float32)
        logger.info("Opened brute-force index %s with %d vectors", path, len(matrix))
        return cls(path, int(dim), matrix, valid_size)

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def path(self) -> Path:
        return self._path

    def add_batch(
        self,
        vectors: Sequence[float] | np.ndarray,
        ids: Sequence[int] | None = None,
    ) -> None:
        batch = _as_batch(vectors, self._dim)
        n = batch.shape[0]
        if ids is not None and len(ids) != n:
            raise IdCountMismatchError(n, len(ids))
        if n == 0:
            return

        payload = b"".join(_LENGTH.pack(self._dim) + row.astype(_FLOAT_LE).tobytes() for row in batch)

        with self._lock.write():
            self._ensure_open()
            start = len(self._matrix)
            if ids is not None:
                supplied = [int(i) for i in ids]
                if supplied != list(range(start, start + n)):
                    raise IdSequenceError(start, supplied)

            try:
                with open(self._path, "ab") as fh:
                    fh.write(payload)
                    fh.flush()
                    os.fsync(fh.fileno())
            except OSError:
                self._rollback_file()
                raise

            self._file_size += len(payload)
            self._matrix = np.vstack([self._matrix, batch])
            self._norms = np.concatenate([self._norms, np.linalg.norm(batch, axis=1)])

    def search(self, query: Sequence[float] | np.ndarray, k: int) -> list[VectorHit]:
        q = np.asarray(query, dtype=np.float32).reshape(-1)
        if q.shape[0] != self._dim:
            raise DimensionMismatchError(self._dim, q.shape[0])
        if k < 0:
            raise ValueError(f"k must be non-negative; got {k}")
        if k == 0:
            return []

        with self._lock.read():
            self._ensure_open()
            matrix = self._matrix
            norms = self._norms

        if len(matrix) == 0:
            return []

        q_norm = float(np.linalg.norm(q))
        denom = norms * q_norm
        dots = matrix @ q
        sims = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
        # Stable sort keeps insertion order among equal scores.
        order = np.argsort(-sims, kind="stable")[:k]
        return [VectorHit(vector_id=int(i), score=float(sims[i])) for i in order]

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._matrix)

    def close(self) -> None:
        with self._lock.write():
            if self._closed:
                return
            self._closed = True
            self._matrix = np.zeros((0, self._dim), dtype=np.float32)
            self._norms = np.zeros(0, dtype=np.float32)

    def __enter__(self) -> BruteForceIndex:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _ensure_open(self) -> None:
        if self._closed:
            raise OpenError(f"Vector index {self._path} is closed")

    def _rollback_file(self) -> None:
        try:
            with open(self._path, "r+b") as fh:
                fh.truncate(self._file_size)
        except OSError as exc:  # pragma: no cover - disk failure path
            logger.error("Failed to roll back partial append in %s: %s", self._path, exc)


def _replay(data: bytes, dim: int, path: Path) -> tuple[list[np.ndarray], int]:
    """Decode complete records from ``data``; return rows and the valid byte length."""
    rows: list[np.ndarray] = []
    offset = 0
    total = len(data)
    while offset + _LENGTH.size <= total:
        (length,) = _LENGTH.unpack_from(data, offset)
        end = offset + _LENGTH.size + length * _FLOAT_LE.itemsize
        if end > total:
            break
        if length != dim:
            raise OpenError(
                f"Corrupt vector file {path}: record {len(rows)} has length {length}, "
                f"expected {dim}"
            )
        rows.append(
            np.frombuffer(data, dtype=_FLOAT_LE, count=length, offset=offset + _LENGTH.size)
            .astype(np.float32)
            .reshape(1, -1)
        )
        offset = end
    return rows, offset


def _as_batch(vectors: Sequence[float] | np.ndarray, dim: int) -> np.ndarray:
    """Reshape a flat ``n * dim`` buffer (or ``(n, dim)`` array) to ``(n, dim)``."""
    array = np.asarray(vectors, dtype=np.float32)
    if array.ndim == 2:
        if array.shape[1] != dim:
            raise DimensionMismatchError(dim, int(array.size))
        return np.ascontiguousarray(array)
    flat = array.reshape(-1)
    if flat.size % dim != 0:
        raise DimensionMismatchError(dim, int(flat.size))
    return np.ascontiguousarray(flat.reshape(-1, dim))
