"""Append-only persistence for review metadata and vector maps."""

from revstore.storage.logs import (
    AlignmentReport,
    append_metadata,
    append_metadata_many,
    append_vector_map,
    append_vector_map_many,
    count_lines,
    load_all_metadata,
    read_vector_map,
    verify_alignment,
)

__all__ = [
    "AlignmentReport",
    "append_metadata",
    "append_metadata_many",
    "append_vector_map",
    "append_vector_map_many",
    "count_lines",
    "load_all_metadata",
    "read_vector_map",
    "verify_alignment",
]
