"""Foreign call boundary for native approximate nearest neighbour engines.

A binding exposes five calls that mirror a C API: open, add, search, save
and close. Every call except close reports an :class:`EngineStatus`; code 0
means success and any other code carries a human-readable message. Handles
are opaque and must not escape the adapter that owns them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import numpy as np

EngineHandle = Any


@dataclass(frozen=True, slots=True)
class EngineStatus:
    """Status returned by every engine call."""

    code: int = 0
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.code == 0


OK = EngineStatus()


class AnnEngineBinding(Protocol):
    """Port interface for a native ANN engine.

    Scores returned by ``search`` must be similarities (higher is better).
    Bindings over engines that report distances convert before returning.
    """

    name: str

    def open(self, location: str, dim: int, params: str) -> tuple[EngineHandle | None, EngineStatus]:
        """Open or create the index stored at ``location``."""
        ...

    def add(
        self,
        handle: EngineHandle,
        vectors: np.ndarray,
        n: int,
        ids: np.ndarray | None,
    ) -> EngineStatus:
        """Add ``n`` vectors from a contiguous float32 buffer of ``n * dim`` values.

        ``ids`` is an int64 array of length ``n`` or None to let the engine
        number the vectors itself.
        """
        ...

    def search(
        self,
        handle: EngineHandle,
        query: np.ndarray,
        k: int,
    ) -> tuple[np.ndarray, np.ndarray, EngineStatus]:
        """Return ``(ids, scores, status)`` with ``k`` int64 ids and float32 scores."""
        ...

    def count(self, handle: EngineHandle) -> int:
        """Number of vectors held by the engine."""
        ...

    def save(self, handle: EngineHandle) -> EngineStatus:
        """Persist the index to its location."""
        ...

    def close(self, handle: EngineHandle) -> None:
        """Release the handle."""
        ...
