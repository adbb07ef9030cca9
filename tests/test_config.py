from pathlib import Path

from revstore.config import Settings


def test_paths_default_under_data_dir(tmp_path: Path) -> None:
    settings = Settings(data_dir=tmp_path / "data")

    assert settings.get_index_path() == tmp_path / "data" / "reviews.index"
    assert settings.get_metadata_path() == tmp_path / "data" / "reviews.jsonl"
    assert settings.get_map_path() == tmp_path / "data" / "vector_map.jsonl"
    assert (tmp_path / "data").is_dir()


def test_explicit_paths_win(tmp_path: Path) -> None:
    settings = Settings(data_dir=tmp_path, metadata_path=tmp_path / "custom" / "meta.jsonl")

    assert settings.get_metadata_path() == tmp_path / "custom" / "meta.jsonl"
    assert settings.get_map_path() == tmp_path / "vector_map.jsonl"


def test_environment_variables(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("REVSTORE_BACKEND", "native")
    monkeypatch.setenv("REVSTORE_EMBEDDING_DIM", "64")
    monkeypatch.setenv("REVSTORE_DATA_DIR", str(tmp_path))

    settings = Settings()

    assert settings.backend == "native"
    assert settings.embedding_dim == 64
    assert settings.get_data_dir() == tmp_path


def test_xdg_default(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv("REVSTORE_DATA_DIR", raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))

    assert Settings().get_data_dir() == tmp_path / "xdg" / "revstore"


def test_search_defaults() -> None:
    settings = Settings()
    assert settings.default_top_k == 5
    assert settings.candidate_floor == 5
    assert settings.candidate_ceiling == 200
