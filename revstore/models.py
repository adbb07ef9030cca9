"""Pydantic models for reviews, log entries, and search results."""

from __future__ import annotations

import re
import uuid
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from revstore.errors import ValidationError

SCHEMA_VERSION = 1
MAX_CATEGORY_LENGTH = 32
MAX_TITLE_LENGTH = 200

_CATEGORY_PATTERN = re.compile(r"^[A-Za-z0-9 _-]+$")


class ReviewInput(BaseModel):
    """User-supplied review content prior to storage."""

    model_config = ConfigDict(extra="forbid")

    text: str = Field(..., description="Review body; non-empty after trimming")
    rating: int = Field(..., ge=0, le=5, description="Star rating in [0, 5]")
    category: str | None = Field(
        default=None,
        description="Optional category (alphanumeric, space, '-' or '_'; max 32 chars)",
    )
    title: str | None = Field(default=None, description="Optional short title")

    @field_validator("text")
    @classmethod
    def _strip_text(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("text must not be empty")
        return stripped

    @field_validator("category")
    @classmethod
    def _check_category(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        if not stripped:
            return None
        if len(stripped) > MAX_CATEGORY_LENGTH:
            raise ValueError(f"category must be at most {MAX_CATEGORY_LENGTH} characters")
        if not _CATEGORY_PATTERN.match(stripped):
            raise ValueError("category may only contain letters, digits, spaces, '-' and '_'")
        return stripped

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        if not stripped:
            return None
        if len(stripped) > MAX_TITLE_LENGTH:
            raise ValueError(f"title must be at most {MAX_TITLE_LENGTH} characters")
        return stripped

    @classmethod
    def parse(cls, payload: object) -> ReviewInput:
        """Validate ``payload`` and raise the store's ``ValidationError`` on failure."""
        if isinstance(payload, ReviewInput):
            return payload
        try:
            return cls.model_validate(payload)
        except PydanticValidationError as exc:
            raise ValidationError(_summarize(exc)) from exc


class StoredReview(BaseModel):
    """A review as persisted in the metadata log."""

    id: str = Field(..., description="Globally unique review identifier")
    text: str
    rating: int = Field(..., ge=0, le=5)
    category: str | None = None
    title: str | None = None
    schema_version: int = Field(default=SCHEMA_VERSION)
    vector_id: int = Field(..., ge=0, description="Identifier of the review's embedding")
    created_at: str = Field(..., description="ISO 8601 timestamp in UTC")

    @classmethod
    def from_input(cls, review: ReviewInput, vector_id: int) -> StoredReview:
        """Create a stored record for ``review`` under ``vector_id``."""
        return cls(
            id=uuid.uuid4().hex,
            text=review.text,
            rating=review.rating,
            category=review.category,
            title=review.title,
            schema_version=SCHEMA_VERSION,
            vector_id=vector_id,
            created_at=datetime.now(UTC).isoformat(),
        )


class VectorMapEntry(BaseModel):
    """Mapping of a committed vector to the review that owns it."""

    vector_id: int = Field(..., ge=0)
    review_id: str


class SearchHit(BaseModel):
    """A ranked search result joined to its metadata."""

    review: StoredReview
    score: float


class StorePaths(BaseModel):
    """Locations of the vector index and both logs.

    Instances are frozen; reconfiguration replaces the whole object.
    """

    model_config = ConfigDict(frozen=True)

    index_path: Path
    metadata_path: Path
    map_path: Path

    def all(self) -> tuple[Path, Path, Path]:
        return (self.index_path, self.metadata_path, self.map_path)


def _summarize(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "input"
        parts.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts)
