"""hnswlib-based ANN engine binding implementing AnnEngineBinding."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from revstore.app.ports.ann_engine import OK, AnnEngineBinding, EngineStatus

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.hnsw"
SIDECAR_FILENAME = "engine.json"

DEFAULT_PARAMS: dict[str, Any] = {
    "space": "cosine",
    "M": 32,
    "ef_construction": 200,
    "ef_search": 64,
    "max_elements": 1024,
}

STATUS_DEPENDENCY = 1
STATUS_INVALID = 2
STATUS_ENGINE = 3


def parse_engine_params(params: str) -> dict[str, str]:
    """Parse ``key=value`` pairs separated by ``;`` or ``,``."""
    parsed: dict[str, str] = {}
    for chunk in params.replace(",", ";").split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        key, sep, value = chunk.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid engine parameter {chunk!r}; expected key=value")
        parsed[key.strip()] = value.strip()
    return parsed


@dataclass(slots=True)
class _HnswHandle:
    index: Any
    location: Path
    dim: int
    space: str
    ef_search: int


class HnswlibEngine(AnnEngineBinding):
    """Disk-backed HNSW engine for cosine similarity search.

    The index lives in ``<location>/index.hnsw`` with a JSON sidecar holding
    the dimension, space and vector count. Distances reported by hnswlib are
    converted to similarities (``1 - distance`` for ``cosine`` and ``ip``,
    ``-distance`` for ``l2``).
    """

    name = "hnswlib"

    def open(self, location: str, dim: int, params: str) -> tuple[_HnswHandle | None, EngineStatus]:
        try:
            import hnswlib
        except Exception as exc:  # pragma: no cover - optional dep
            return None, EngineStatus(
                STATUS_DEPENDENCY, f"hnswlib is required for the native backend ({exc})"
            )

        try:
            options = {**DEFAULT_PARAMS, **parse_engine_params(params)}
            space = str(options["space"])
            m = int(options["M"])
            ef_construction = int(options["ef_construction"])
            ef_search = int(options["ef_search"])
            max_elements = int(options["max_elements"])
        except (KeyError, ValueError) as exc:
            return None, EngineStatus(STATUS_INVALID, str(exc))
        if space not in {"cosine", "ip", "l2"}:
            return None, EngineStatus(STATUS_INVALID, f"Unsupported space {space!r}")

        root = Path(location)
        index_path = root / INDEX_FILENAME
        sidecar_path = root / SIDECAR_FILENAME

        try:
            if index_path.exists() and sidecar_path.exists():
                meta = json.loads(sidecar_path.read_text(encoding="utf-8"))
                if int(meta.get("dim", -1)) != dim:
                    return None, EngineStatus(
                        STATUS_INVALID,
                        f"Stored dimension {meta.get('dim')} does not match expected {dim}",
                    )
                space = str(meta.get("space", space))
                index = hnswlib.Index(space=space, dim=dim)
                capacity = max(int(meta.get("count", 0)), max_elements)
                index.load_index(str(index_path), max_elements=capacity)
            else:
                index = hnswlib.Index(space=space, dim=dim)
                index.init_index(max_elements=max_elements, ef_construction=ef_construction, M=m)
            index.set_ef(ef_search)
        except Exception as exc:  # noqa: BLE001 - engine failures become statuses
            return None, EngineStatus(STATUS_ENGINE, f"Cannot open HNSW index at {root}: {exc}")

        handle = _HnswHandle(
            index=index, location=root, dim=dim, space=space, ef_search=ef_search
        )
        return handle, OK

    def add(
        self,
        handle: _HnswHandle,
        vectors: np.ndarray,
        n: int,
        ids: np.ndarray | None,
    ) -> EngineStatus:
        index = handle.index
        if index is None:
            return EngineStatus(STATUS_INVALID, "handle is closed")

        current = int(index.get_current_count())
        labels = ids if ids is not None else np.arange(current, current + n, dtype=np.int64)
        try:
            required = current + n
            capacity = int(index.get_max_elements())
            if required > capacity:
                index.resize_index(max(required, capacity * 2))
            index.add_items(np.asarray(vectors, dtype=np.float32).reshape(n, handle.dim), labels)
        except Exception as exc:  # noqa: BLE001 - engine failures become statuses
            return EngineStatus(STATUS_ENGINE, f"add_items failed: {exc}")
        return OK

    def search(
        self,
        handle: _HnswHandle,
        query: np.ndarray,
        k: int,
    ) -> tuple[np.ndarray, np.ndarray, EngineStatus]:
        empty_ids = np.zeros(0, dtype=np.int64)
        empty_scores = np.zeros(0, dtype=np.float32)
        index = handle.index
        if index is None:
            return empty_ids, empty_scores, EngineStatus(STATUS_INVALID, "handle is closed")

        try:
            index.set_ef(max(handle.ef_search, k))
            labels, distances = index.knn_query(query.reshape(1, -1), k=k)
        except Exception as exc:  # noqa: BLE001 - engine failures become statuses
            return empty_ids, empty_scores, EngineStatus(STATUS_ENGINE, f"knn_query failed: {exc}")

        distances = np.asarray(distances[0], dtype=np.float32)
        if handle.space == "l2":
            scores = -distances
        else:
            scores = 1.0 - distances
        return np.asarray(labels[0], dtype=np.int64), scores.astype(np.float32), OK

    def count(self, handle: _HnswHandle) -> int:
        if handle.index is None:
            return 0
        return int(handle.index.get_current_count())

    def save(self, handle: _HnswHandle) -> EngineStatus:
        index = handle.index
        if index is None:
            return EngineStatus(STATUS_INVALID, "handle is closed")
        try:
            index.save_index(str(handle.location / INDEX_FILENAME))
            _write_sidecar(
                handle.location / SIDECAR_FILENAME,
                {"dim": handle.dim, "space": handle.space, "count": self.count(handle)},
            )
        except Exception as exc:  # noqa: BLE001 - engine failures become statuses
            return EngineStatus(STATUS_ENGINE, f"save_index failed: {exc}")
        return OK

    def close(self, handle: _HnswHandle) -> None:
        handle.index = None


def _write_sidecar(path: Path, payload: dict[str, Any]) -> None:
    """Replace ``path`` atomically with ``payload`` as JSON."""
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=path.name, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, sort_keys=True))
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise
