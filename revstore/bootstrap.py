"""Application bootstrap wiring ports, adapters, and the store coordinator."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from pathlib import Path

from revstore.app.adapters import (
    BruteForceIndex,
    HashEmbedder,
    HnswlibEngine,
    NativeAnnIndex,
    SentenceTransformerEmbedder,
    SPFreshEngine,
)
from revstore.app.ports import AnnEngineBinding, EmbeddingPort, VectorIndexPort
from revstore.app.review_store import IndexFactory, ReviewStore
from revstore.config import Settings, get_settings
from revstore.models import StorePaths

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ApplicationContainer:
    """Aggregates wired services and adapters for the CLI layer."""

    settings: Settings
    embedder: EmbeddingPort
    index_factory: IndexFactory
    store: ReviewStore

    def close(self) -> None:
        self.store.close()


def build_embedder(settings: Settings) -> EmbeddingPort:
    """Construct the embedding provider shared for the process lifetime."""
    if settings.embedder == "sentence-transformers":
        return SentenceTransformerEmbedder(
            model_name=settings.embedding_model,
            dimensions=settings.embedding_dim,
        )
    return HashEmbedder(dimensions=settings.embedding_dim)


def build_engine_binding(settings: Settings) -> AnnEngineBinding:
    """Return the native engine binding selected in ``settings``."""
    if settings.native_engine == "spfresh":
        return SPFreshEngine(settings.native_library_path)
    return HnswlibEngine()


def _open_bruteforce(location: Path, *, dim: int, params: str) -> VectorIndexPort:
    return BruteForceIndex.open(location, dim, params)


def _open_native(
    location: Path, *, dim: int, params: str, binding: AnnEngineBinding
) -> VectorIndexPort:
    return NativeAnnIndex.open(location, dim, params, binding=binding)


def build_index_factory(settings: Settings) -> IndexFactory:
    """Return a callable that opens the configured backend at a location."""
    if settings.backend == "native":
        return partial(
            _open_native,
            dim=settings.embedding_dim,
            params=settings.engine_params,
            binding=build_engine_binding(settings),
        )
    return partial(_open_bruteforce, dim=settings.embedding_dim, params=settings.engine_params)


def bootstrap_application(settings: Settings | None = None) -> ApplicationContainer:
    """Wire the store for ``settings`` and run the startup alignment check.

    A misaligned store is reported as a warning and startup continues.
    """
    active_settings = settings or get_settings()
    embedder = build_embedder(active_settings)
    index_factory = build_index_factory(active_settings)
    paths = StorePaths(
        index_path=active_settings.get_index_path(),
        metadata_path=active_settings.get_metadata_path(),
        map_path=active_settings.get_map_path(),
    )

    store = ReviewStore(
        embedder=embedder,
        index_factory=index_factory,
        paths=paths,
        default_top_k=active_settings.default_top_k,
        candidate_floor=active_settings.candidate_floor,
        candidate_ceiling=active_settings.candidate_ceiling,
        strict_metadata=active_settings.strict_metadata,
    )

    report = store.verify_alignment()
    if not report.ok:
        logger.warning(
            "Store at %s is misaligned (%s); repair the logs before relying on search results",
            paths.index_path,
            report.describe(),
        )

    return ApplicationContainer(
        settings=active_settings,
        embedder=embedder,
        index_factory=index_factory,
        store=store,
    )
