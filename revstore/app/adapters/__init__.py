"""Concrete adapters wiring application ports to built-in implementations."""

from __future__ import annotations

from .bruteforce import BruteForceIndex
from .hash_embedder import HashEmbedder
from .hnsw_engine import HnswlibEngine
from .native import NativeAnnIndex
from .sentence_transformer import SentenceTransformerEmbedder
from .spfresh_engine import SPFreshEngine

__all__ = [
    "BruteForceIndex",
    "HashEmbedder",
    "HnswlibEngine",
    "NativeAnnIndex",
    "SentenceTransformerEmbedder",
    "SPFreshEngine",
]
