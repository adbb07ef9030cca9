"""revstore - Embedding-indexed append-only review store.

Stores short text reviews alongside vector embeddings and answers
similarity queries over them.
"""

__version__ = "0.1.0"
__author__ = "revstore Contributors"

from revstore.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
