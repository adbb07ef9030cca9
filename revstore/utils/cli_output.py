"""Schema-stamped JSON documents for ``--json`` CLI output."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from revstore import __version__

PRODUCER = f"revstore-{__version__}"


def json_response(
    schema_id: str,
    schema_version: int,
    **data: Any,
) -> str:
    """Render ``data`` as indented JSON headed by its schema stamp.

    The stamp keys come first so that consumers can dispatch on
    ``schema_id``/``schema_version`` before reading the payload:

        >>> print(json_response("store_paths", 1, index_path="reviews.index"))
        {
          "schema_id": "store_paths",
          "schema_version": 1,
          "producer": "revstore-0.1.0",
          "produced_at": "2026-01-12T10:30:00+00:00",
          "index_path": "reviews.index"
        }
    """
    document: dict[str, Any] = {
        "schema_id": schema_id,
        "schema_version": schema_version,
        "producer": PRODUCER,
        "produced_at": datetime.now(UTC).isoformat(),
    }
    document.update({key: value for key, value in data.items() if key not in document})
    return json.dumps(document, indent=2, default=str)
