"""Tests for the ReviewStore coordinator."""

from __future__ import annotations

import threading
from functools import partial
from pathlib import Path

import numpy as np
import pytest

from revstore.app.adapters import BruteForceIndex, HashEmbedder, NativeAnnIndex
from revstore.app.ports.ann_engine import OK, EngineStatus
from revstore.app.review_store import ReviewStore
from revstore.errors import (
    CorruptRecordError,
    DimensionMismatchError,
    EngineError,
    IdSequenceError,
    LockPoisonedError,
    OpenError,
    RevstoreError,
    ValidationError,
)
from revstore.models import StorePaths
from revstore.storage import append_vector_map, count_lines, read_vector_map


def _counts(store) -> tuple[int, int, int]:
    stats = store.stats()
    return stats["vectors"], stats["metadata_records"], stats["map_entries"]


def test_insert_keeps_index_and_logs_aligned(make_store) -> None:
    store = make_store()

    first = store.insert({"text": "Comfortable shoes", "rating": 5, "category": "shoes"})
    second = store.insert({"text": "Laces broke", "rating": 1})

    assert (first.vector_id, second.vector_id) == (0, 1)
    assert _counts(store) == (2, 2, 2)
    assert store.verify_alignment().ok
    entries = read_vector_map(store.paths.map_path)
    assert [(e.vector_id, e.review_id) for e in entries] == [(0, first.id), (1, second.id)]


def test_bulk_insert_uses_one_embedding_call(make_store, make_embedder) -> None:
    embedder = make_embedder({}, dimensions=16)
    store = make_store(embedder=embedder)
    store.insert({"text": "warm up", "rating": 3})

    stored = store.bulk_insert(
        [{"text": f"review number {i}", "rating": i % 6} for i in range(5)]
    )

    assert embedder.batch_calls == 1
    assert [record.vector_id for record in stored] == [1, 2, 3, 4, 5]
    assert _counts(store) == (6, 6, 6)
    assert [e.vector_id for e in read_vector_map(store.paths.map_path)] == list(range(6))


def test_search_ranks_by_similarity(make_store, ranking_embedder) -> None:
    store = make_store(embedder=ranking_embedder, dim=2)
    for text in ("alpha", "beta", "gamma"):
        store.insert({"text": text, "rating": 4})

    hits = store.search("query alpha", top_k=3)

    assert [hit.review.vector_id for hit in hits] == [0, 2, 1]
    assert [hit.review.text for hit in hits] == ["alpha", "gamma", "beta"]
    assert hits[0].score > hits[1].score > hits[2].score


def test_search_truncates_to_top_k(make_store) -> None:
    store = make_store()
    store.bulk_insert([{"text": f"kettle review {i}", "rating": 4} for i in range(12)])

    assert len(store.search("kettle", top_k=3)) == 3
    assert len(store.search("kettle")) == 5
    assert store.search("kettle", top_k=0) == []


def test_search_on_empty_store(make_store) -> None:
    assert make_store().search("anything") == []


@pytest.mark.parametrize("query", ["", "   "])
def test_search_rejects_blank_query(make_store, query: str) -> None:
    with pytest.raises(ValidationError):
        make_store().search(query)


@pytest.mark.parametrize(
    "payload",
    [
        {"text": "Too good", "rating": 6},
        {"text": "Long category", "rating": 3, "category": "c" * 33},
        {"text": "   ", "rating": 3},
    ],
)
def test_invalid_review_writes_nothing(make_store, payload) -> None:
    store = make_store()

    with pytest.raises(ValidationError):
        store.insert(payload)

    assert _counts(store) == (0, 0, 0)
    assert store.next_vector_id == 0


def test_invalid_bulk_item_rejects_whole_batch(make_store) -> None:
    store = make_store()
    batch = [
        {"text": "fine", "rating": 4},
        {"text": "also fine", "rating": 2},
        {"text": "broken", "rating": 9},
    ]

    with pytest.raises(ValidationError, match="Review 2"):
        store.bulk_insert(batch)

    assert _counts(store) == (0, 0, 0)


def test_empty_bulk_insert_is_rejected(make_store) -> None:
    with pytest.raises(ValidationError):
        make_store().bulk_insert([])


def test_embedder_dimension_mismatch_commits_nothing(make_store) -> None:
    store = make_store(embedder=HashEmbedder(dimensions=8), dim=16)

    with pytest.raises(DimensionMismatchError):
        store.insert({"text": "wrong size", "rating": 3})
    with pytest.raises(DimensionMismatchError):
        store.bulk_insert([{"text": "wrong size", "rating": 3}])

    assert _counts(store) == (0, 0, 0)
    assert store.next_vector_id == 0


def test_metadata_failure_leaves_detectable_orphan(make_store, ranking_embedder, monkeypatch) -> None:
    store = make_store(embedder=ranking_embedder, dim=2)

    def failing_append(path, record):
        raise OSError("disk full")

    monkeypatch.setattr("revstore.app.review_store.append_metadata", failing_append)
    with pytest.raises(OSError, match="disk full"):
        store.insert({"text": "alpha", "rating": 5})
    monkeypatch.undo()

    report = store.verify_alignment()
    assert not report.ok
    assert (report.vector_count, report.metadata_count, report.map_count) == (1, 0, 0)

    gamma = store.insert({"text": "gamma", "rating": 4})
    store.insert({"text": "beta", "rating": 2})
    assert gamma.vector_id == 1

    hits = store.search("query alpha", top_k=1)
    assert [hit.review.text for hit in hits] == ["gamma"]


def test_reopen_advances_past_orphaned_vectors(make_store, temp_dir: Path) -> None:
    root = temp_dir / "data"
    store = make_store(root)
    store.insert({"text": "first", "rating": 3})
    store.close()

    with BruteForceIndex.open(root / "reviews.index", 16) as index:
        index.add_batch(HashEmbedder(dimensions=16).embed("stray"))

    reopened = make_store(root)
    assert reopened.next_vector_id == 2
    assert not reopened.verify_alignment().ok

    stored = reopened.insert({"text": "second", "rating": 4})
    assert stored.vector_id == 2


def test_data_survives_reopen(make_store, temp_dir: Path) -> None:
    root = temp_dir / "data"
    store = make_store(root)
    original = store.insert({"text": "Quiet dishwasher", "rating": 5})
    store.close()

    reopened = make_store(root)
    hits = reopened.search("quiet dishwasher", top_k=1)

    assert hits[0].review == original
    assert reopened.next_vector_id == 1


def test_reconfigure_switches_paths_and_reseeds_ids(make_store, temp_dir: Path) -> None:
    other = temp_dir / "other"
    seeded = make_store(other)
    seeded.bulk_insert([{"text": f"seed {i}", "rating": 3} for i in range(3)])
    seeded.close()

    store = make_store(temp_dir / "data")
    store.insert({"text": "original location", "rating": 3})

    paths = store.reconfigure(
        other / "reviews.index", other / "reviews.jsonl", other / "vector_map.jsonl"
    )

    assert store.paths == paths
    assert store.paths.index_path == other / "reviews.index"
    assert store.next_vector_id == 3
    stored = store.insert({"text": "new location", "rating": 4})
    assert stored.vector_id == 3
    assert count_lines(temp_dir / "data" / "reviews.jsonl") == 1


def test_reconfigure_creates_missing_directories(make_store, temp_dir: Path) -> None:
    store = make_store()
    target = temp_dir / "a" / "b"

    store.reconfigure(target / "idx", target / "meta" / "m.jsonl", target / "map" / "v.jsonl")

    assert (target / "meta").is_dir()
    assert (target / "map").is_dir()
    assert store.next_vector_id == 0


def test_failed_reconfigure_keeps_previous_configuration(make_store, temp_dir: Path) -> None:
    store = make_store()
    store.insert({"text": "still here", "rating": 4})
    before = store.paths

    bad = temp_dir / "bad"
    bad.mkdir()
    (bad / "reviews.index").write_bytes(b"\x03\x00\x00\x00" + b"\x00" * 12)

    with pytest.raises(OpenError):
        store.reconfigure(bad / "reviews.index", bad / "reviews.jsonl", bad / "vector_map.jsonl")

    assert store.paths == before
    assert store.search("still here", top_k=1)[0].review.text == "still here"
    assert store.insert({"text": "after", "rating": 1}).vector_id == 1


def test_concurrent_inserts_and_searches(make_store) -> None:
    store = make_store()
    errors: list[BaseException] = []

    def writer(worker: int) -> None:
        try:
            for i in range(10):
                store.insert({"text": f"worker {worker} review {i}", "rating": i % 6})
        except BaseException as exc:  # pragma: no cover - surfaced below
            errors.append(exc)

    def reader() -> None:
        try:
            for _ in range(10):
                store.search("review")
        except BaseException as exc:  # pragma: no cover - surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    threads += [threading.Thread(target=reader) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert store.verify_alignment().ok
    entries = read_vector_map(store.paths.map_path)
    assert sorted(entry.vector_id for entry in entries) == list(range(40))


def test_corrupt_metadata_handling(make_store, temp_dir: Path) -> None:
    root = temp_dir / "data"
    strict = make_store(root)
    strict.insert({"text": "good line", "rating": 4})
    with open(root / "reviews.jsonl", "a", encoding="utf-8") as fh:
        fh.write("garbage\n")

    with pytest.raises(CorruptRecordError):
        strict.search("good line")
    strict.close()

    lenient = make_store(root, strict_metadata=False)
    assert [hit.review.text for hit in lenient.search("good line")] == ["good line"]


def test_closed_store_rejects_operations(make_store) -> None:
    store = make_store()
    store.close()

    with pytest.raises(LockPoisonedError):
        store.insert({"text": "late", "rating": 3})
    with pytest.raises(LockPoisonedError):
        store.search("late")
    with pytest.raises(LockPoisonedError):
        store.paths


def test_stats_report_active_configuration(make_store) -> None:
    store = make_store()
    store.insert({"text": "one", "rating": 1})

    stats = store.stats()

    assert stats["vectors"] == 1
    assert stats["next_vector_id"] == 1
    assert stats["dim"] == 16
    assert stats["metadata_path"] == str(store.paths.metadata_path)


class LabelledBinding:
    """Engine binding keyed by label, so re-adding a label overwrites it."""

    name = "labelled"

    def __init__(self, *, failing_saves: int = 0) -> None:
        self.vectors: dict[int, np.ndarray] = {}
        self.failing_saves = failing_saves

    def open(self, location, dim, params):
        self.dim = dim
        return object(), OK

    def add(self, handle, vectors, n, ids):
        for label, row in zip(ids, vectors.reshape(n, self.dim)):
            self.vectors[int(label)] = row
        return OK

    def search(self, handle, query, k):
        labels = np.asarray(sorted(self.vectors), dtype=np.int64)[:k]
        return labels, np.ones(len(labels), dtype=np.float32), OK

    def count(self, handle):
        return len(self.vectors)

    def save(self, handle):
        if self.failing_saves:
            self.failing_saves -= 1
            return EngineStatus(5, "cannot persist index")
        return OK

    def close(self, handle):
        pass


def test_failed_save_after_add_never_reuses_ids(temp_dir: Path) -> None:
    binding = LabelledBinding(failing_saves=1)
    root = temp_dir / "native"
    store = ReviewStore(
        embedder=HashEmbedder(dimensions=8),
        index_factory=partial(NativeAnnIndex.open, dim=8, binding=binding),
        paths=StorePaths(
            index_path=root / "ann",
            metadata_path=root / "reviews.jsonl",
            map_path=root / "vector_map.jsonl",
        ),
    )
    try:
        with pytest.raises(EngineError, match="cannot persist index"):
            store.insert({"text": "first attempt", "rating": 3})
        assert store.next_vector_id == 1

        stored = store.insert({"text": "second attempt", "rating": 4})

        assert stored.vector_id == 1
        assert sorted(binding.vectors) == [0, 1]
        report = store.verify_alignment()
        assert (report.vector_count, report.metadata_count, report.map_count) == (2, 1, 1)
    finally:
        store.close()


def test_failed_add_that_commits_nothing_releases_ids(make_store, monkeypatch) -> None:
    store = make_store()

    def failing_add(self, vectors, ids=None):
        raise OSError("disk unavailable")

    monkeypatch.setattr(BruteForceIndex, "add_batch", failing_add)
    with pytest.raises(OSError):
        store.bulk_insert([{"text": "a", "rating": 1}, {"text": "b", "rating": 2}])
    monkeypatch.undo()

    assert store.next_vector_id == 0
    assert store.insert({"text": "c", "rating": 3}).vector_id == 0


def test_index_behind_map_log_fails_inserts_cleanly(make_store, temp_dir: Path, caplog) -> None:
    root = temp_dir / "data"
    append_vector_map(root / "vector_map.jsonl", 0, "lost-review")

    with caplog.at_level("WARNING", logger="revstore.app.review_store"):
        store = make_store(root)
    assert "inserts will fail" in caplog.text

    with pytest.raises(IdSequenceError) as excinfo:
        store.insert({"text": "cannot land", "rating": 3})

    assert isinstance(excinfo.value, RevstoreError)
    assert excinfo.value.expected_start == 0
    assert excinfo.value.supplied == [1]
    assert _counts(store) == (0, 0, 1)
    assert store.next_vector_id == 1


def test_candidate_ceiling_caps_large_pages(make_store) -> None:
    store = make_store(candidate_ceiling=3)
    store.bulk_insert([{"text": f"lamp review {i}", "rating": 4} for i in range(6)])

    assert len(store.search("lamp", top_k=10)) == 3
