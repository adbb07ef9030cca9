"""Port interfaces for the revstore application layer.

These protocol interfaces define contracts for adapters.
The coordinator depends on these ports, never on concrete implementations.
"""

__all__ = [
    "AnnEngineBinding",
    "EmbeddingPort",
    "EmbeddingResult",
    "EngineStatus",
    "VectorHit",
    "VectorIndexPort",
]

from revstore.app.ports.ann_engine import AnnEngineBinding, EngineStatus
from revstore.app.ports.embedding import EmbeddingPort, EmbeddingResult
from revstore.app.ports.vector_index import VectorHit, VectorIndexPort
