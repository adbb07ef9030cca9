"""Metadata log, vector map log, and the alignment check between them.

Both logs are JSON Lines files that are only ever appended to. Each append
opens the file, writes complete lines, fsyncs, and closes it again so that a
crash between operations never leaves a half-written line behind.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sized
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from revstore.errors import AlignmentMismatchError, CorruptRecordError
from revstore.models import StoredReview, VectorMapEntry
from revstore.storage.jsonl import append_jsonl, count_lines, iter_jsonl

logger = logging.getLogger(__name__)

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


def append_metadata(path: Path, record: StoredReview) -> None:
    """Append one stored review to the metadata log."""
    append_jsonl(path, [record])


def append_metadata_many(path: Path, records: Iterable[StoredReview]) -> int:
    """Append several stored reviews in order with a single fsync."""
    return append_jsonl(path, records)


def load_all_metadata(path: Path, *, strict: bool = True) -> list[StoredReview]:
    """Load every stored review from the metadata log in file order.

    Args:
        path: Metadata log location. A missing file yields an empty list.
        strict: Raise on the first bad line instead of skipping it.

    Raises:
        CorruptRecordError: A line is not valid JSON or not a valid record.
    """
    records: list[StoredReview] = []
    for line_num, payload in iter_jsonl(path, strict=strict):
        try:
            records.append(StoredReview.model_validate(payload))
        except PydanticValidationError as exc:
            if strict:
                raise CorruptRecordError(str(path), line_num, str(payload), str(exc)) from exc
            logger.warning("Skipping invalid metadata record at line %d in %s", line_num, path)
    return records


def append_vector_map(path: Path, vector_id: int, review_id: str) -> None:
    """Append a single ``vector_id -> review_id`` entry to the map log."""
    append_jsonl(path, [VectorMapEntry(vector_id=vector_id, review_id=review_id)])


def append_vector_map_many(path: Path, entries: Iterable[tuple[int, str]]) -> int:
    """Append several map entries in order with a single fsync."""
    return append_jsonl(
        path,
        (VectorMapEntry(vector_id=vector_id, review_id=review_id) for vector_id, review_id in entries),
    )


def read_vector_map(path: Path, *, strict: bool = True) -> list[VectorMapEntry]:
    """Read all map entries in file order; a missing file yields an empty list."""
    entries: list[VectorMapEntry] = []
    for line_num, payload in iter_jsonl(path, strict=strict):
        try:
            entries.append(VectorMapEntry.model_validate(payload))
        except PydanticValidationError as exc:
            if strict:
                raise CorruptRecordError(str(path), line_num, str(payload), str(exc)) from exc
            logger.warning("Skipping invalid map entry at line %d in %s", line_num, path)
    return entries


@dataclass(frozen=True, slots=True)
class AlignmentReport:
    """Result of comparing the vector count with both log line counts."""

    vector_count: int
    metadata_count: int
    map_count: int | None = None

    @property
    def ok(self) -> bool:
        if self.vector_count != self.metadata_count:
            return False
        return self.map_count is None or self.map_count == self.vector_count

    def raise_for_mismatch(self) -> None:
        """Raise :class:`AlignmentMismatchError` when the counts disagree."""
        if not self.ok:
            raise AlignmentMismatchError(self.vector_count, self.metadata_count)

    def describe(self) -> str:
        map_part = "" if self.map_count is None else f", map entries={self.map_count}"
        return f"vectors={self.vector_count}, metadata records={self.metadata_count}{map_part}"


def verify_alignment(
    index: Sized,
    metadata_path: Path,
    map_path: Path | None = None,
) -> AlignmentReport:
    """Compare the committed vector count with the log line counts.

    The check is read-only. A mismatch is reported, never repaired: the logs
    can only be reconciled by truncating or replaying them by hand.
    """
    report = AlignmentReport(
        vector_count=len(index),
        metadata_count=count_lines(metadata_path),
        map_count=None if map_path is None else count_lines(map_path),
    )
    if not report.ok:
        logger.warning("Alignment mismatch: %s", report.describe())
    return report
