from __future__ import annotations

from datetime import timedelta
from typing import List, Sequence

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from examprep.core.contracts import AlignmentScore, QuestionRecord, TopicContext, utcnow
from examprep.core.errors import GenerationUnavailable
from examprep.db.base import Base
from examprep.models.syllabus_topic import SyllabusTopic
from examprep.services.embedding_service import HashingEmbeddingProvider
from examprep.services.engine import Engine, build_engine
from examprep.services.question_generator import QuestionGenerator


_T0 = utcnow()


def make_record(
    question_id: str,
    topic_id: str = "T1",
    text: str | None = None,
    ref: str = "",
    minutes: int = 0,
) -> QuestionRecord:
    return QuestionRecord(
        question_id=question_id,
        topic_id=topic_id,
        question_text=text or f"Describe fact {question_id} of topic {topic_id}",
        question_type="free_text",
        correct_answers=("answer",),
        syllabus_reference=ref,
        created_at=_T0 + timedelta(minutes=minutes),
    )


# Distinct stems so generated/seed texts never look like near-duplicates of each other.
SEED_TEXTS = [
    "Which organelle captures light for photosynthesis in leaves?",
    "Name the pigment that gives plants their green colour.",
    "State the word equation for photosynthesis.",
    "Why do desert plants open stomata at night?",
    "How does temperature affect enzyme activity in plants?",
    "What happens to starch when iodine solution is added?",
    "List two raw materials a plant needs to make glucose.",
    "Explain why variegated leaves are used in starch experiments.",
    "What is the role of xylem vessels in water transport?",
    "Describe how guard cells regulate gas exchange.",
    "Give one use of glucose made by a plant besides respiration.",
    "Compare the rate of photosynthesis in bright and dim light.",
]


def seed_topic(db, topic_id: str = "T1", name: str = "Plant nutrition") -> SyllabusTopic:
    row = SyllabusTopic(
        id=topic_id,
        curriculum="CBSE",
        grade=10,
        subject="Biology",
        topic_name=name,
        syllabus_section=f"{topic_id} {name}",
        official_content="Photosynthesis converts light energy into chemical energy stored in glucose.",
        learning_objectives=["photosynthesis", "chlorophyll", "stomata"],
    )
    db.add(row)
    db.commit()
    return row


def seed_questions(engine: Engine, db, topic_id: str, n: int, prefix: str = "q") -> List[QuestionRecord]:
    out = []
    for i in range(n):
        rec = make_record(
            f"{prefix}{i + 1}",
            topic_id=topic_id,
            text=f"{SEED_TEXTS[i % len(SEED_TEXTS)]} ({topic_id} #{i + 1})",
            ref=f"1.{i + 1:02d}",
            minutes=i,
        )
        out.append(engine.orchestrator.index_question(db, rec))
    return out


class ScriptedGenerator(QuestionGenerator):
    """Each generate() call pops the next batch of texts; listed texts fail alignment."""

    name = "scripted"

    def __init__(self, batches: Sequence[Sequence[str]] = (), reject_texts: Sequence[str] = (), fail_calls=()):
        super().__init__(min_score=0.7)
        self.batches = [list(b) for b in batches]
        self.reject = set(reject_texts)
        self.fail_calls = set(fail_calls)
        self.calls: list = []

    def generate(self, topic_context: TopicContext, exclude_texts, count):
        call_no = len(self.calls)
        self.calls.append({"topic_id": topic_context.topic_id, "exclude_texts": list(exclude_texts), "count": count})
        if call_no in self.fail_calls:
            raise GenerationUnavailable("scripted outage")
        texts = self.batches.pop(0) if self.batches else []
        return [
            self._new_record(topic_context, text=t, question_type="free_text", correct_answers=["model answer"])
            for t in texts[:count]
        ]

    def validate_syllabus_alignment(self, record, topic_context):
        bad = record.question_text in self.reject
        return AlignmentScore(aligned=not bad, score=0.1 if bad else 0.95, rationale="scripted")


@pytest.fixture()
def db():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture()
def embedder():
    return HashingEmbeddingProvider(dimension=64)


@pytest.fixture()
def generator():
    return ScriptedGenerator()


@pytest.fixture()
def engine(embedder, generator):
    return build_engine(embedder=embedder, generator=generator)
