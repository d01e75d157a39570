import threading
from dataclasses import replace

import pytest

from conftest import make_record
from examprep.core.errors import IndexingFailed
from examprep.services.vector_index import VectorIndex


def _rec(qid, topic="T1", vec=(1.0, 0.0, 0.0)):
    return make_record(qid, topic_id=topic).with_embedding(list(vec))


def test_insert_and_lookup_by_topic():
    idx = VectorIndex(dimension=3)
    idx.insert(_rec("a", "T1"))
    idx.insert(_rec("b", "T2"))
    idx.insert(_rec("c", "T1"))

    assert [e.metadata.question_id for e in idx.get_by_topic("T1")] == ["a", "c"]
    assert [e.metadata.question_id for e in idx.get_by_topics(["T2", "T1", "T2"])] == ["a", "b", "c"]
    assert idx.get_by_topic("missing") == []
    assert len(idx) == 3
    assert "b" in idx
    assert idx.status() == {"total": 3, "topics": 2, "dimension": 3}


def test_insert_without_embedding_fails():
    idx = VectorIndex(dimension=3)
    with pytest.raises(IndexingFailed) as ei:
        idx.insert(make_record("a"))
    assert ei.value.question_id == "a"
    assert len(idx) == 0


def test_insert_with_wrong_dimension_fails():
    idx = VectorIndex(dimension=3)
    with pytest.raises(IndexingFailed):
        idx.insert(_rec("a", vec=(1.0, 0.0)))


def test_dimension_is_fixed_by_first_insert():
    idx = VectorIndex()
    idx.insert(_rec("a", vec=(1.0, 0.0)))
    assert idx.dimension == 2
    with pytest.raises(IndexingFailed):
        idx.insert(_rec("b", vec=(1.0, 0.0, 0.0)))


def test_non_finite_embedding_is_rejected():
    idx = VectorIndex(dimension=3)
    with pytest.raises(IndexingFailed):
        idx.insert(_rec("a", vec=(float("nan"), 0.0, 0.0)))


def test_upsert_keeps_position_and_moves_topic():
    idx = VectorIndex(dimension=3)
    first = idx.insert(_rec("a", "T1"))
    idx.insert(_rec("b", "T1"))

    moved = idx.insert(replace(_rec("a", "T2"), question_text="corrected text"))

    assert moved.seq == first.seq
    assert len(idx) == 2
    assert [e.metadata.question_id for e in idx.get_by_topic("T1")] == ["b"]
    assert [e.metadata.question_id for e in idx.get_by_topic("T2")] == ["a"]
    assert idx.get("a").record.question_text == "corrected text"


def test_evict_removes_from_both_maps():
    idx = VectorIndex(dimension=3)
    idx.insert(_rec("a", "T1"))

    assert idx.evict("a") is True
    assert idx.evict("a") is False
    assert idx.get_by_topic("T1") == []
    assert idx.status()["topics"] == 0


def test_search_orders_by_similarity_then_insertion():
    idx = VectorIndex(dimension=3)
    idx.insert(_rec("far", vec=(0.0, 1.0, 0.0)))
    idx.insert(_rec("tie1", vec=(1.0, 1.0, 0.0)))
    idx.insert(_rec("best", vec=(1.0, 0.0, 0.0)))
    idx.insert(_rec("tie2", vec=(2.0, 2.0, 0.0)))

    hits = idx.search([1.0, 0.0, 0.0], top_k=10)

    assert [h.entry.metadata.question_id for h in hits] == ["best", "tie1", "tie2", "far"]
    assert hits[0].similarity == pytest.approx(1.0)
    assert hits[1].similarity == pytest.approx(hits[2].similarity)


def test_search_applies_threshold_top_k_and_predicate():
    idx = VectorIndex(dimension=3)
    idx.insert(_rec("x", "T1", vec=(1.0, 0.0, 0.0)))
    idx.insert(_rec("y", "T2", vec=(0.9, 0.1, 0.0)))
    idx.insert(_rec("z", "T1", vec=(0.0, 0.0, 1.0)))

    assert [h.entry.metadata.question_id for h in idx.search([1, 0, 0], min_similarity=0.5)] == ["x", "y"]
    assert [h.entry.metadata.question_id for h in idx.search([1, 0, 0], top_k=1)] == ["x"]
    only_t1 = idx.search([1, 0, 0], predicate=lambda e: e.metadata.topic_id == "T1")
    assert [h.entry.metadata.question_id for h in only_t1] == ["x", "z"]
    assert idx.search([1, 0, 0], top_k=0) == []


def test_search_on_empty_index_returns_empty_list():
    assert VectorIndex(dimension=3).search([1.0, 0.0, 0.0]) == []


def test_search_rejects_query_of_wrong_dimension():
    idx = VectorIndex(dimension=3)
    idx.insert(_rec("a"))
    with pytest.raises(ValueError):
        idx.search([1.0, 0.0])


def test_concurrent_inserts_keep_maps_consistent():
    idx = VectorIndex(dimension=3)

    def worker(n):
        for i in range(50):
            idx.insert(_rec(f"w{n}-{i}", topic=f"T{i % 3}"))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(idx) == 200
    assert sum(len(idx.get_by_topic(f"T{k}")) for k in range(3)) == 200
    seqs = [e.seq for e in idx.get_by_topics(["T0", "T1", "T2"])]
    assert len(set(seqs)) == 200
