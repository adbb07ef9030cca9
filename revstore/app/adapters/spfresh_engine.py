"""ctypes binding to a shared library exposing the SPFresh C API.

The library must export::

    SPFreshStatus spfresh_open(const char* index_dir, int32_t dim,
                               const char* params, void** out_handle);
    void          spfresh_close(void* handle);
    SPFreshStatus spfresh_add(void* handle, const float* vectors, size_t n,
                              const int64_t* ids);
    SPFreshStatus spfresh_search(void* handle, const float* query, int32_t topk,
                                 int64_t* out_ids, float* out_scores);
    SPFreshStatus spfresh_save(void* handle);

where ``SPFreshStatus`` is ``{int32_t code; const char* message;}``. The
engine reports similarity scores. It has no count call, so the binding keeps
the vector count in a small sidecar next to the index.
"""

from __future__ import annotations

import ctypes
import json
import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from revstore.app.ports.ann_engine import OK, AnnEngineBinding, EngineStatus

logger = logging.getLogger(__name__)

COUNT_FILENAME = "revstore.count.json"

STATUS_LIBRARY = 1


class SPFreshStatus(ctypes.Structure):
    _fields_ = [("code", ctypes.c_int32), ("message", ctypes.c_char_p)]


def _to_status(raw: SPFreshStatus) -> EngineStatus:
    if raw.code == 0:
        return OK
    message = raw.message.decode("utf-8", errors="replace") if raw.message else None
    return EngineStatus(int(raw.code), message)


@dataclass(slots=True)
class _SPFreshHandle:
    pointer: ctypes.c_void_p | None
    location: Path
    dim: int
    count: int


class SPFreshEngine(AnnEngineBinding):
    """AnnEngineBinding over the SPFresh C API loaded with ctypes."""

    name = "spfresh"

    def __init__(self, library_path: Path | str | None) -> None:
        self._library_path = None if library_path is None else str(library_path)
        self._lib: ctypes.CDLL | None = None

    def _load(self) -> ctypes.CDLL:
        if self._lib is not None:
            return self._lib
        if not self._library_path:
            raise OSError("no SPFresh library configured (set REVSTORE_NATIVE_LIBRARY_PATH)")

        lib = ctypes.CDLL(self._library_path)
        lib.spfresh_open.argtypes = [
            ctypes.c_char_p,
            ctypes.c_int32,
            ctypes.c_char_p,
            ctypes.POINTER(ctypes.c_void_p),
        ]
        lib.spfresh_open.restype = SPFreshStatus
        lib.spfresh_close.argtypes = [ctypes.c_void_p]
        lib.spfresh_close.restype = None
        lib.spfresh_add.argtypes = [
            ctypes.c_void_p,
            ctypes.POINTER(ctypes.c_float),
            ctypes.c_size_t,
            ctypes.POINTER(ctypes.c_int64),
        ]
        lib.spfresh_add.restype = SPFreshStatus
        lib.spfresh_search.argtypes = [
            ctypes.c_void_p,
            ctypes.POINTER(ctypes.c_float),
            ctypes.c_int32,
            ctypes.POINTER(ctypes.c_int64),
            ctypes.POINTER(ctypes.c_float),
        ]
        lib.spfresh_search.restype = SPFreshStatus
        lib.spfresh_save.argtypes = [ctypes.c_void_p]
        lib.spfresh_save.restype = SPFreshStatus
        self._lib = lib
        return lib

    def open(self, location: str, dim: int, params: str) -> tuple[_SPFreshHandle | None, EngineStatus]:
        try:
            lib = self._load()
        except OSError as exc:
            return None, EngineStatus(STATUS_LIBRARY, f"cannot load SPFresh library: {exc}")

        pointer = ctypes.c_void_p()
        status = _to_status(
            lib.spfresh_open(
                location.encode("utf-8"),
                ctypes.c_int32(dim),
                params.encode("utf-8"),
                ctypes.byref(pointer),
            )
        )
        if not status.ok:
            if pointer.value:
                lib.spfresh_close(pointer)
            return None, status

        handle = _SPFreshHandle(
            pointer=pointer,
            location=Path(location),
            dim=dim,
            count=_read_count(Path(location) / COUNT_FILENAME),
        )
        return handle, OK

    def add(
        self,
        handle: _SPFreshHandle,
        vectors: np.ndarray,
        n: int,
        ids: np.ndarray | None,
    ) -> EngineStatus:
        lib = self._load()
        buffer = np.ascontiguousarray(vectors, dtype=np.float32)
        id_buffer = None if ids is None else np.ascontiguousarray(ids, dtype=np.int64)
        status = _to_status(
            lib.spfresh_add(
                handle.pointer,
                buffer.ctypes.data_as(ctypes.POINTER(ctypes.c_float)),
                ctypes.c_size_t(n),
                None if id_buffer is None else id_buffer.ctypes.data_as(ctypes.POINTER(ctypes.c_int64)),
            )
        )
        if status.ok:
            handle.count += n
        return status

    def search(
        self,
        handle: _SPFreshHandle,
        query: np.ndarray,
        k: int,
    ) -> tuple[np.ndarray, np.ndarray, EngineStatus]:
        lib = self._load()
        q = np.ascontiguousarray(query, dtype=np.float32)
        out_ids = np.full(k, -1, dtype=np.int64)
        out_scores = np.zeros(k, dtype=np.float32)
        status = _to_status(
            lib.spfresh_search(
                handle.pointer,
                q.ctypes.data_as(ctypes.POINTER(ctypes.c_float)),
                ctypes.c_int32(k),
                out_ids.ctypes.data_as(ctypes.POINTER(ctypes.c_int64)),
                out_scores.ctypes.data_as(ctypes.POINTER(ctypes.c_float)),
            )
        )
        return out_ids, out_scores, status

    def count(self, handle: _SPFreshHandle) -> int:
        return handle.count

    def save(self, handle: _SPFreshHandle) -> EngineStatus:
        status = _to_status(self._load().spfresh_save(handle.pointer))
        if status.ok:
            (handle.location / COUNT_FILENAME).write_text(
                json.dumps({"count": handle.count}), encoding="utf-8"
            )
        return status

    def close(self, handle: _SPFreshHandle) -> None:
        if handle.pointer is None or self._lib is None:
            return
        pointer, handle.pointer = handle.pointer, None
        self._lib.spfresh_close(pointer)


def _read_count(path: Path) -> int:
    if not path.exists():
        return 0
    try:
        return int(json.loads(path.read_text(encoding="utf-8")).get("count", 0))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable SPFresh count file %s: %s", path, exc)
        return 0
