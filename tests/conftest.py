"""Pytest configuration and fixtures."""

import gc
import shutil
import tempfile
import time
from collections.abc import Generator, Sequence
from pathlib import Path

import numpy as np
import pytest

from revstore.app.adapters import BruteForceIndex, HashEmbedder
from revstore.app.ports import EmbeddingResult
from revstore.app.review_store import ReviewStore
from revstore.config import Settings
from revstore.models import StorePaths


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    try:
        yield Path(tmpdir)
    finally:
        # Force garbage collection to release any file handles
        gc.collect()
        time.sleep(0.05)
        shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def override_settings(temp_dir: Path) -> Generator[Settings, None, None]:
    """Provide isolated revstore settings scoped to tests."""

    import revstore.config as config_module

    original_settings = getattr(config_module, "_settings", None)

    data_dir = temp_dir / "appdata"
    data_dir.mkdir(parents=True, exist_ok=True)

    settings = config_module.Settings(
        data_dir=data_dir,
        backend="bruteforce",
        embedder="hash",
        embedding_dim=32,
    )

    config_module._settings = settings

    try:
        yield settings
    finally:
        config_module._settings = original_settings


class TableEmbedder:
    """Embedder returning fixed vectors for known texts.

    Unknown texts fall back to a hashing embedder of the same dimension.
    """

    def __init__(self, table: dict[str, Sequence[float]], *, dimensions: int) -> None:
        self._table = {key: list(map(float, value)) for key, value in table.items()}
        self._fallback = HashEmbedder(dimensions=dimensions)
        self._dim = dimensions
        self.batch_calls = 0

    @property
    def dimensions(self) -> int:
        return self._dim

    def embed(self, text: str) -> list[float]:
        if text in self._table:
            return self._table[text]
        return self._fallback.embed(text)

    def embed_batch(self, texts: Sequence[str]) -> EmbeddingResult:
        self.batch_calls += 1
        return EmbeddingResult(
            embeddings=[self.embed(text) for text in texts],
            latency_ms=0.0,
            model="table",
            dimensions=self._dim,
        )


def normalized(values: Sequence[float]) -> list[float]:
    array = np.asarray(values, dtype=np.float64)
    return (array / np.linalg.norm(array)).tolist()


RANKING_TABLE = {
    "alpha": [1.0, 0.0],
    "beta": [0.0, 1.0],
    "gamma": normalized([0.9, 0.1]),
    "query alpha": [1.0, 0.0],
}


def store_paths(root: Path) -> StorePaths:
    return StorePaths(
        index_path=root / "reviews.index",
        metadata_path=root / "reviews.jsonl",
        map_path=root / "vector_map.jsonl",
    )


def bruteforce_factory(dim: int):
    def _open(location: Path) -> BruteForceIndex:
        return BruteForceIndex.open(location, dim)

    return _open


@pytest.fixture
def ranking_embedder() -> TableEmbedder:
    return TableEmbedder(RANKING_TABLE, dimensions=2)


@pytest.fixture
def make_store(temp_dir: Path):
    """Build ReviewStore instances over brute-force indexes; closes them afterwards."""
    opened: list[ReviewStore] = []

    def _make(
        root: Path | None = None,
        *,
        embedder=None,
        dim: int = 16,
        **kwargs,
    ) -> ReviewStore:
        store = ReviewStore(
            embedder=embedder or HashEmbedder(dimensions=dim),
            index_factory=bruteforce_factory(dim),
            paths=store_paths(root or temp_dir / "data"),
            **kwargs,
        )
        opened.append(store)
        return store

    yield _make

    for store in opened:
        store.close()


@pytest.fixture
def make_embedder():
    """Factory for table-driven embedders."""

    def _make(table: dict[str, Sequence[float]], *, dimensions: int) -> TableEmbedder:
        return TableEmbedder(table, dimensions=dimensions)

    return _make
