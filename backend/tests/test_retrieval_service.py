from examprep.core.contracts import RetrievalQuery
from examprep.models.question import Question
from examprep.services import question_repository
from examprep.services.embedding_service import HashingEmbeddingProvider
from examprep.services.retrieval_service import RagRetriever
from examprep.services.vector_index import VectorIndex

from conftest import make_record


def _retriever(embedder):
    return RagRetriever(VectorIndex(dimension=embedder.dimension), embedder)


def test_default_order_is_reference_then_creation_time(embedder):
    r = _retriever(embedder)
    r.index_questions(
        [
            make_record("late", ref="1.2", minutes=5),
            make_record("early", ref="1.2", minutes=1),
            make_record("first-ref", ref="1.1", minutes=9),
            make_record("other-topic", topic_id="T2", ref="0.1"),
        ]
    )

    got = r.retrieve_questions(["T1"], 10)

    assert [q.question_id for q in got] == ["first-ref", "early", "late"]


def test_retrieve_respects_exclusion_and_count(embedder):
    r = _retriever(embedder)
    r.index_questions([make_record(f"q{i}", ref=f"1.{i}") for i in range(5)])

    got = r.retrieve_questions(["T1"], 2, exclude_ids={"q0", "q2"})
    assert [q.question_id for q in got] == ["q1", "q3"]

    everything = r.retrieve_questions(["T1"], 50, exclude_ids={"q4"})
    assert len(everything) == 4
    assert len({q.question_id for q in everything}) == 4

    assert r.retrieve_questions(["T1"], 0) == []
    assert r.retrieve_questions(["nothing-here"], 3) == []


def test_retrieve_across_topics_returns_each_question_once(embedder):
    r = _retriever(embedder)
    r.index_questions([make_record("a", "T1"), make_record("b", "T2"), make_record("c", "T3")])

    got = r.retrieve(RetrievalQuery(topic_ids=("T1", "T2", "T1"), count=5))

    assert sorted(q.question_id for q in got) == ["a", "b"]


def test_relevance_query_puts_closest_question_first(embedder):
    r = _retriever(embedder)
    r.index_questions(
        [
            make_record("cell", text="mitochondria produce energy for the cell"),
            make_record("leaf", text="chlorophyll absorbs sunlight inside leaves"),
            make_record("root", text="roots absorb water and dissolved minerals"),
        ]
    )

    got = r.retrieve_questions(["T1"], 3, relevance_query="chlorophyll absorbs sunlight inside leaves")

    assert got[0].question_id == "leaf"
    assert len(got) == 3


def test_index_question_embeds_once(embedder):
    r = _retriever(embedder)
    rec = r.index_question(make_record("a"))

    assert rec.embedding is not None
    assert len(rec.embedding) == embedder.dimension
    assert r.ensure_embedding(rec) is rec
    assert r.index.get("a").record.embedding == rec.embedding


def test_rebuild_from_db_reembeds_stale_rows_and_skips_retired(db, embedder):
    good = make_record("good", ref="1.1").with_embedding(embedder.embed("whatever"))
    stale = make_record("stale", ref="1.2").with_embedding([1.0, 0.0])
    missing = make_record("missing", ref="1.3")
    retired = make_record("retired", ref="1.4")
    for rec in (good, stale, missing, retired):
        question_repository.save_question(db, rec, embedding_model="test")
    question_repository.retire_question(db, "retired")
    db.commit()

    r = _retriever(embedder)
    info = r.rebuild_from_db(db)

    assert info["indexed"] == 3
    assert info["reembedded"] == 2
    assert info["failed"] == []
    assert info["total"] == 3
    assert "retired" not in r.index
    row = db.get(Question, "stale")
    assert len(row.embedding) == embedder.dimension
    assert row.embedding_model == embedder.model_id
    assert r.index.get("good").vector == tuple(good.embedding)


class _FixedQueryEmbedder(HashingEmbeddingProvider):
    def __init__(self, query_vector):
        super().__init__(dimension=len(query_vector))
        self.query_vector = list(query_vector)

    def embed(self, text):
        return list(self.query_vector)


def test_relevance_query_never_drops_opposite_vectors():
    vec = [0.1, 0.7, 0.3]
    r = RagRetriever(VectorIndex(dimension=3), _FixedQueryEmbedder([-x for x in vec]))
    r.index_questions(
        [
            make_record("opposite").with_embedding(vec),
            make_record("scaled-opposite").with_embedding([x * 3.7 for x in vec]),
            make_record("orthogonal").with_embedding([0.7, -0.1, 0.0]),
        ]
    )

    got = r.retrieve_questions(["T1"], 3, relevance_query="anything")

    assert len(got) == 3
    assert got[0].question_id == "orthogonal"
    assert {q.question_id for q in got[1:]} == {"opposite", "scaled-opposite"}
