"""Application layer for revstore.

The coordinator orchestrates inserts and searches; vector storage and
embeddings are reached only through the port interfaces.
"""

__all__ = [
    "IdAllocator",
    "ReviewStore",
    "StoreState",
]

from revstore.app.id_allocator import IdAllocator
from revstore.app.review_store import ReviewStore, StoreState
