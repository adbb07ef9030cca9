"""Error kinds raised by the review store."""

from __future__ import annotations


class RevstoreError(Exception):
    """Base class for all store errors."""


class ValidationError(RevstoreError, ValueError):
    """Raised when input is rejected before any side effect."""


class OpenError(RevstoreError):
    """Raised when a vector index cannot be opened or created."""


class EngineError(RevstoreError):
    """Raised when a native ANN engine call returns a non-zero status."""

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class DimensionMismatchError(RevstoreError, ValueError):
    """Raised when a vector buffer does not match the index dimension."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Expected a multiple of dimension {expected}; got length {actual}")
        self.expected = expected
        self.actual = actual


class IdCountMismatchError(RevstoreError, ValueError):
    """Raised when supplied ids do not match the number of vectors."""

    def __init__(self, vectors: int, ids: int) -> None:
        super().__init__(f"Got {ids} ids for {vectors} vectors")
        self.vectors = vectors
        self.ids = ids


class CorruptRecordError(RevstoreError):
    """Raised when a JSONL log line cannot be parsed."""

    def __init__(self, path: str, line_number: int, line: str, reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(f"Invalid record at line {line_number} in {path}{detail} ({line!r})")
        self.path = path
        self.line_number = line_number
        self.line = line


class AlignmentMismatchError(RevstoreError):
    """Raised when the vector count and the metadata line count disagree."""

    def __init__(self, vector_count: int, metadata_count: int) -> None:
        super().__init__(
            f"Vector index holds {vector_count} vectors but metadata log has "
            f"{metadata_count} records"
        )
        self.vector_count = vector_count
        self.metadata_count = metadata_count


class EmbeddingError(RevstoreError):
    """Raised when the embedding provider fails or returns the wrong shape."""


class LockPoisonedError(RevstoreError):
    """Raised when shared store state is no longer usable."""


class IdSequenceError(RevstoreError, ValueError):
    """Raised when supplied vector ids do not continue an index's positional ids."""

    def __init__(self, expected_start: int, supplied: list[int]) -> None:
        shown = supplied if len(supplied) <= 4 else [*supplied[:3], "...", supplied[-1]]
        super().__init__(
            f"Vector ids must continue at {expected_start}; got {shown}. "
            "The index and the vector map log are misaligned."
        )
        self.expected_start = expected_start
        self.supplied = supplied
