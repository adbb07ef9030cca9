"""Configuration management with Pydantic and XDG base directory support."""

import os
import sys
from pathlib import Path
from typing import Literal

from pydantic import Field, PrivateAttr
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_xdg_data_home() -> Path:
    """Get XDG_DATA_HOME directory, defaulting to ~/.local/share."""
    xdg_data = os.getenv("XDG_DATA_HOME")
    if xdg_data:
        return Path(xdg_data)
    return Path.home() / ".local" / "share"


BackendName = Literal["bruteforce", "native"]
NativeEngineName = Literal["hnswlib", "spfresh"]
EmbedderName = Literal["hash", "sentence-transformers"]


class Settings(BaseSettings):
    """revstore configuration settings.

    Precedence: CLI flag > environment variable > .env file > defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="REVSTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Data locations
    data_dir: Path | None = Field(
        default=None,
        description="Override data directory (defaults to XDG_DATA_HOME/revstore)",
    )

    index_path: Path | None = Field(
        default=None,
        description="Vector index location (defaults to <data_dir>/reviews.index)",
    )

    metadata_path: Path | None = Field(
        default=None,
        description="Metadata log path (defaults to <data_dir>/reviews.jsonl)",
    )

    map_path: Path | None = Field(
        default=None,
        description="Vector map log path (defaults to <data_dir>/vector_map.jsonl)",
    )

    # Index backend
    backend: BackendName = Field(
        default="bruteforce",
        description="Vector index backend: bruteforce or native",
    )

    native_engine: NativeEngineName = Field(
        default="hnswlib",
        description="Native ANN engine binding used when backend=native",
    )

    native_library_path: Path | None = Field(
        default=None,
        description="Shared library implementing the SPFresh C API (spfresh engine only)",
    )

    engine_params: str = Field(
        default="",
        description="Backend-specific parameter string (key=value;key=value)",
    )

    # Embeddings
    embedding_dim: int = Field(
        default=256,
        ge=1,
        description="Embedding dimension shared by the embedder and the index",
    )

    embedder: EmbedderName = Field(
        default="hash",
        description="Embedding provider: hash (deterministic) or sentence-transformers",
    )

    embedding_model: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="Model name for the sentence-transformers embedder",
    )

    # Search
    default_top_k: int = Field(
        default=5,
        ge=1,
        description="Result page size when a search does not specify top_k",
    )

    candidate_floor: int = Field(
        default=5,
        ge=1,
        description="Minimum number of ANN candidates requested per search",
    )

    candidate_ceiling: int = Field(
        default=200,
        ge=1,
        description="Maximum number of ANN candidates requested per search",
    )

    strict_metadata: bool = Field(
        default=True,
        description="Fail on unparsable metadata lines instead of skipping them",
    )

    log_level: str = Field(
        default="WARNING",
        description="Logging level for the CLI",
    )

    _resolved_data_dir: Path | None = PrivateAttr(default=None)
    _data_dir_warning_emitted: bool = PrivateAttr(default=False)

    def get_data_dir(self) -> Path:
        """Get the data directory, creating if necessary."""
        if self._resolved_data_dir is not None:
            return self._resolved_data_dir

        if self.data_dir:
            data_dir = self.data_dir
            data_dir.mkdir(parents=True, exist_ok=True)
            self._resolved_data_dir = data_dir
            return data_dir

        primary_dir = get_xdg_data_home() / "revstore"
        try:
            primary_dir.mkdir(parents=True, exist_ok=True)
            self._resolved_data_dir = primary_dir
            return primary_dir
        except PermissionError as exc:
            fallback = Path.cwd() / ".revstore-data"
            fallback.mkdir(parents=True, exist_ok=True)
            self._resolved_data_dir = fallback
            if not self._data_dir_warning_emitted:
                print(
                    f"Warning: cannot create data directory at {primary_dir} ({exc}). "
                    f"Using local '{fallback}' instead. Pass --data-dir to override.",
                    file=sys.stderr,
                )
                self._data_dir_warning_emitted = True
            return fallback

    def get_index_path(self) -> Path:
        """Get the vector index location."""
        if self.index_path is not None:
            return self.index_path
        return self.get_data_dir() / "reviews.index"

    def get_metadata_path(self) -> Path:
        """Get the metadata log path."""
        if self.metadata_path is not None:
            return self.metadata_path
        return self.get_data_dir() / "reviews.jsonl"

    def get_map_path(self) -> Path:
        """Get the vector map log path."""
        if self.map_path is not None:
            return self.map_path
        return self.get_data_dir() / "vector_map.jsonl"


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Set the global settings instance (useful for testing)."""
    global _settings
    _settings = settings
