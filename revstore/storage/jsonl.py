"""JSONL append and streaming helpers with durability guarantees."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable, Iterator
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, cast

from revstore.errors import CorruptRecordError

logger = logging.getLogger(__name__)


def _normalize_record(record: Any) -> str:
    """Convert supported record types into a single-line JSON string."""
    typed_payload: dict[str, Any]
    if hasattr(record, "model_dump"):
        payload = cast(Any, record).model_dump(mode="json")
        if not isinstance(payload, dict):
            raise TypeError("Pydantic model_dump did not return a mapping.")
        typed_payload = dict(payload)
    elif is_dataclass(record) and not isinstance(record, type):
        typed_payload = dict(asdict(record))
    elif isinstance(record, dict):
        typed_payload = dict(record)
    else:
        raise TypeError(
            "Unsupported record type for JSONL serialization: "
            f"{type(record)!r}. Provide dict, dataclass, or Pydantic model."
        )

    return json.dumps(typed_payload, separators=(",", ":"), ensure_ascii=False)


def append_jsonl(path: Path, records: Iterable[Any]) -> int:
    """Append ``records`` to ``path`` as JSONL and fsync before returning.

    Every record is serialized before the file is opened so that a record
    that cannot be encoded leaves the log untouched. Existing lines are never
    rewritten.

    Returns:
        Number of lines written.
    """
    lines = [_normalize_record(record) for record in records]
    if not lines:
        return 0

    destination = Path(path)
    destination.parent.mkdir(parents=True, exist_ok=True)

    payload = "".join(f"{line}\n" for line in lines)
    with open(destination, "a", encoding="utf-8") as fh:
        fh.write(payload)
        fh.flush()
        os.fsync(fh.fileno())

    return len(lines)


def iter_jsonl(path: Path, *, strict: bool = True) -> Iterator[tuple[int, dict[str, Any]]]:
    """Yield ``(line_number, object)`` for each non-blank line in ``path``.

    A missing file yields nothing. With ``strict`` the first line that is not
    valid UTF-8 JSON object text raises :class:`CorruptRecordError`; otherwise
    it is skipped with a warning.
    """
    source = Path(path)
    if not source.exists():
        return

    with open(source, "rb") as fh:
        for line_num, raw_line in enumerate(fh, 1):
            if not raw_line.strip():
                continue

            try:
                line = raw_line.decode("utf-8").strip()
                value = json.loads(line)
                if not isinstance(value, dict):
                    raise ValueError("expected a JSON object")
            except ValueError as exc:
                # UnicodeDecodeError and JSONDecodeError are both ValueErrors.
                shown = raw_line.decode("utf-8", errors="replace").strip()
                if strict:
                    raise CorruptRecordError(str(source), line_num, shown, str(exc)) from exc
                logger.warning("Skipping invalid line %d in %s: %s", line_num, source, exc)
                continue

            yield line_num, value


def count_lines(path: Path) -> int:
    """Return the number of non-blank lines in ``path`` (0 when missing).

    Lines are counted as bytes so that undecodable content still counts.
    """
    source = Path(path)
    if not source.exists():
        return 0

    count = 0
    with open(source, "rb") as fh:
        for raw_line in fh:
            if raw_line.strip():
                count += 1
    return count
