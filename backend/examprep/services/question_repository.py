"""Datastore read/write contracts for questions, configurations and assembled tests."""
from __future__ import annotations

import uuid
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from examprep.core.contracts import (
    AssembledTest,
    QuestionRecord,
    TestConfiguration,
    as_utc,
    utcnow,
)
from examprep.models.assembled_test import AssembledTestQuestion, AssembledTestRecord, TestConfigurationRecord
from examprep.models.question import Question


def row_to_record(row: Question) -> QuestionRecord:
    return QuestionRecord(
        question_id=row.id,
        topic_id=row.topic_id,
        question_text=row.question_text,
        question_type=row.question_type,  # type: ignore[arg-type]
        correct_answers=tuple(str(a) for a in (row.correct_answers or [])),
        syllabus_reference=row.syllabus_reference or "",
        options=tuple(str(o) for o in (row.options or [])),
        difficulty=row.difficulty,
        created_at=as_utc(row.created_at),
        source=row.source,  # type: ignore[arg-type]
        embedding=tuple(float(x) for x in row.embedding) if row.embedding else None,
    )


def save_question(db: Session, record: QuestionRecord, embedding_model: Optional[str] = None) -> Question:
    """Upsert the question row so it matches ``record`` (what the index holds).

    An existing row keeps its ``created_at``. Flushes only; the caller owns the
    transaction.
    """
    row = db.get(Question, record.question_id)
    if row is None:
        row = Question(id=record.question_id, created_at=record.created_at)
        db.add(row)
    row.topic_id = record.topic_id
    row.question_text = record.question_text
    row.question_type = record.question_type
    row.options = list(record.options)
    row.correct_answers = list(record.correct_answers)
    row.syllabus_reference = record.syllabus_reference
    row.difficulty = record.difficulty
    row.source = record.source
    if record.embedding is not None:
        row.embedding = list(record.embedding)
        row.embedding_model = embedding_model
    db.flush()
    return row


def load_active_questions(db: Session) -> List[Question]:
    """Every non-retired question, oldest first."""
    stmt = select(Question).where(Question.retired_at.is_(None)).order_by(Question.created_at, Question.id)
    return list(db.scalars(stmt))


def load_question_texts(db: Session, topic_ids: Iterable[str]) -> List[str]:
    ids = list(topic_ids)
    if not ids:
        return []
    stmt = (
        select(Question.question_text)
        .where(Question.topic_id.in_(ids), Question.retired_at.is_(None))
        .order_by(Question.created_at.desc())
    )
    return [str(t) for t in db.scalars(stmt)]


def retire_question(db: Session, question_id: str) -> bool:
    row = db.get(Question, question_id)
    if row is None or row.retired_at is not None:
        return False
    row.retired_at = utcnow()
    db.flush()
    return True


def save_configuration(db: Session, config: TestConfiguration, user_id: str) -> TestConfigurationRecord:
    row = TestConfigurationRecord(
        id=uuid.uuid4().hex,
        user_id=str(user_id),
        curriculum=config.curriculum,
        grade=config.grade,
        subject=config.subject,
        topic_ids=list(config.topic_ids),
        question_count=int(config.question_count),
        test_count=int(config.test_count),
        mode=config.mode,
        relevance_query=config.relevance_query,
        created_at=utcnow(),
    )
    db.add(row)
    db.flush()
    return row


def save_assembled_test(db: Session, test: AssembledTest, batch_index: int = 0) -> AssembledTestRecord:
    row = AssembledTestRecord(
        id=test.test_id,
        configuration_id=test.configuration_id,
        user_id=test.user_id,
        batch_index=int(batch_index),
        created_at=test.created_at,
    )
    row.questions = [
        AssembledTestQuestion(question_id=qid, order_no=i) for i, qid in enumerate(test.question_ids)
    ]
    db.add(row)
    db.flush()
    return row


def get_assembled_test(db: Session, test_id: str) -> Optional[AssembledTestRecord]:
    return db.get(AssembledTestRecord, test_id)


def get_configuration(db: Session, configuration_id: str) -> Optional[TestConfigurationRecord]:
    return db.get(TestConfigurationRecord, configuration_id)


def configuration_from_row(row: TestConfigurationRecord) -> TestConfiguration:
    return TestConfiguration(
        topic_ids=tuple(row.topic_ids or []),
        question_count=int(row.question_count),
        test_count=int(row.test_count),
        curriculum=row.curriculum or "",
        grade=row.grade,
        subject=row.subject or "",
        mode=row.mode,  # type: ignore[arg-type]
        relevance_query=row.relevance_query,
    )


def assembled_question_ids(row: AssembledTestRecord) -> Sequence[str]:
    return [q.question_id for q in row.questions]
