import threading

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from conftest import make_record
from examprep.core.errors import InsufficientQuestions
from examprep.db.base import Base
from examprep.models.question_exposure import QuestionExposure
from examprep.services.exposure_service import ExposureTracker
from examprep.services.retrieval_service import RagRetriever
from examprep.services.vector_index import VectorIndex


@pytest.fixture()
def tracker(embedder):
    retriever = RagRetriever(VectorIndex(dimension=embedder.dimension), embedder)
    retriever.index_questions([make_record(f"q{i}", ref=f"1.{i}", minutes=i) for i in range(1, 6)])
    retriever.index_questions([make_record("other", topic_id="T2", ref="9.9")])
    return ExposureTracker(retriever)


def _exposure_rows(db, user_id):
    return db.scalar(select(func.count(QuestionExposure.id)).where(QuestionExposure.user_id == user_id))


def test_record_seen_is_idempotent(db, tracker):
    assert tracker.record_seen(db, "u1", "q1") is True
    assert tracker.record_seen(db, "u1", "q1") is False
    db.commit()

    assert _exposure_rows(db, "u1") == 1
    assert tracker.get_seen_question_ids(db, "u1") == {"q1"}
    [exposure] = tracker.list_exposures(db, "u1")
    assert (exposure.question_id, exposure.topic_id) == ("q1", "T1")
    assert exposure.first_seen_at.tzinfo is not None


def test_record_seen_batch_dedupes_within_and_across_calls(db, tracker):
    assert tracker.record_seen_batch(db, "u1", ["q1", "q1", "q2"]) == 2
    assert tracker.record_seen_batch(db, "u1", ["q2", "q3"]) == 1
    assert tracker.record_seen_batch(db, "u1", []) == 0
    db.commit()

    assert _exposure_rows(db, "u1") == 3


def test_exposure_is_per_user(db, tracker):
    tracker.record_seen_batch(db, "u1", ["q1", "q2"])
    db.commit()

    assert tracker.get_seen_question_ids(db, "u2") == set()
    assert [q.question_id for q in tracker.get_unseen_for_topics(db, "u2", ["T1"])] == ["q1", "q2", "q3", "q4", "q5"]


def test_unseen_for_topics_never_contains_seen(db, tracker):
    tracker.record_seen_batch(db, "u1", ["q1", "q2"])
    db.commit()

    unseen = tracker.get_unseen_for_topics(db, "u1", ["T1"])

    assert [q.question_id for q in unseen] == ["q3", "q4", "q5"]


def test_retry_returns_unseen_first_then_seen(db, tracker):
    tracker.record_seen_batch(db, "u1", ["q1", "q2"])
    db.commit()

    assert [q.question_id for q in tracker.get_questions_for_retry(db, "u1", ["T1"], 3)] == ["q3", "q4", "q5"]
    assert [q.question_id for q in tracker.get_questions_for_retry(db, "u1", ["T1"], 5)] == [
        "q3",
        "q4",
        "q5",
        "q1",
        "q2",
    ]
    assert tracker.get_questions_for_retry(db, "u1", ["T1"], 0) == []


def test_retry_beyond_pool_raises_insufficient(db, tracker):
    with pytest.raises(InsufficientQuestions) as ei:
        tracker.get_questions_for_retry(db, "u1", ["T1"], 6)

    assert ei.value.available == 5
    assert ei.value.requested == 6
    assert "5" in ei.value.suggestion


def test_stats_count_first_exposures_per_topic(db, tracker):
    tracker.record_seen_batch(db, "u1", ["q1", "q2", "other"])
    tracker.record_seen_batch(db, "u1", ["q1"])
    db.commit()

    stats = tracker.get_stats(db, "u1")

    assert stats.total_seen == 3
    assert stats.seen_by_topic == {"T1": 2, "T2": 1}
    assert tracker.get_stats(db, "nobody").to_dict() == {"total_seen": 0, "seen_by_topic": {}}


def test_concurrent_record_seen_leaves_one_row(tmp_path, tracker):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'exposures.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    start = threading.Barrier(8)
    results, errors = [], []

    def worker():
        session = Session()
        try:
            start.wait()
            results.append(tracker.record_seen(session, "u1", "q1"))
            session.commit()
        except Exception as e:  # surfaced by the assertions below
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    check = Session()
    try:
        assert errors == []
        assert results.count(True) == 1
        assert _exposure_rows(check, "u1") == 1
    finally:
        check.close()
        engine.dispose()
