from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from examprep.core.contracts import ExposureRecord, ExposureStats, QuestionRecord, as_utc, utcnow
from examprep.core.errors import InsufficientQuestions
from examprep.models.question import Question
from examprep.models.question_exposure import QuestionExposure
from examprep.services.retrieval_service import RagRetriever


logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


class ExposureTracker:
    """Which questions a user has already been shown (first-seen only)."""

    def __init__(self, retriever: RagRetriever):
        self.retriever = retriever

    def get_seen_question_ids(self, db: Session, user_id: str) -> Set[str]:
        stmt = select(QuestionExposure.question_id).where(QuestionExposure.user_id == str(user_id))
        return set(db.scalars(stmt))

    def list_exposures(self, db: Session, user_id: str) -> List[ExposureRecord]:
        """Every first exposure of ``user_id``, oldest first."""
        stmt = (
            select(QuestionExposure)
            .where(QuestionExposure.user_id == str(user_id))
            .order_by(QuestionExposure.first_seen_at, QuestionExposure.id)
        )
        return [
            ExposureRecord(
                user_id=row.user_id,
                question_id=row.question_id,
                first_seen_at=as_utc(row.first_seen_at),
                topic_id=row.topic_id,
            )
            for row in db.scalars(stmt)
        ]

    def _partition(self, db: Session, user_id: str, topic_ids: Sequence[str]):
        seen = self.get_seen_question_ids(db, user_id)
        pool = [e.record for e in self.retriever.index.get_by_topics(topic_ids)]
        unseen = [r for r in pool if r.question_id not in seen]
        already = [r for r in pool if r.question_id in seen]
        return self.retriever.default_order(unseen), self.retriever.default_order(already)

    def get_unseen_for_topics(self, db: Session, user_id: str, topic_ids: Sequence[str]) -> List[QuestionRecord]:
        unseen, _ = self._partition(db, user_id, topic_ids)
        return unseen

    def get_questions_for_retry(
        self,
        db: Session,
        user_id: str,
        topic_ids: Sequence[str],
        count: int,
    ) -> List[QuestionRecord]:
        """Unseen questions first, then seen ones, both in default order."""
        if int(count) <= 0:
            return []
        unseen, seen = self._partition(db, user_id, topic_ids)
        available = len(unseen) + len(seen)
        if available < int(count):
            raise InsufficientQuestions(
                available=available,
                requested=int(count),
                suggestion=f"reduce question count to at most {available}" if available else "add questions for these topics",
            )
        return (unseen + seen)[: int(count)]

    def _topic_of(self, db: Session, question_id: str) -> Optional[str]:
        entry = self.retriever.index.get(question_id)
        if entry is not None:
            return entry.metadata.topic_id
        row = db.get(Question, question_id)
        return row.topic_id if row is not None else None

    def record_seen_batch(self, db: Session, user_id: str, question_ids: Iterable[str]) -> int:
        """Insert-if-absent one exposure per (user, question). Returns how many were new.

        Flushes only; the caller commits.
        """
        ids = list(dict.fromkeys(str(q) for q in question_ids if q))
        if not ids:
            return 0
        now = utcnow()
        rows = [
            {"user_id": str(user_id), "question_id": qid, "topic_id": self._topic_of(db, qid), "first_seen_at": now}
            for qid in ids
        ]

        dialect = db.get_bind().dialect.name
        insert_fn = _UPSERT_DIALECTS.get(dialect)
        if insert_fn is not None:
            stmt = insert_fn(QuestionExposure).values(rows).on_conflict_do_nothing(
                index_elements=["user_id", "question_id"]
            )
            result = db.execute(stmt)
            return max(0, int(result.rowcount or 0))

        # Other backends: one savepoint per row, a unique violation means "already seen".
        inserted = 0
        for r in rows:
            try:
                with db.begin_nested():
                    db.add(QuestionExposure(**r))
                inserted += 1
            except IntegrityError:
                logger.debug("Exposure already recorded user=%s question=%s", user_id, r["question_id"])
        return inserted

    def record_seen(self, db: Session, user_id: str, question_id: str) -> bool:
        return self.record_seen_batch(db, user_id, [question_id]) == 1

    def get_stats(self, db: Session, user_id: str) -> ExposureStats:
        topic_col = func.coalesce(QuestionExposure.topic_id, Question.topic_id)
        stmt = (
            select(topic_col, func.count(QuestionExposure.id))
            .select_from(QuestionExposure)
            .outerjoin(Question, Question.id == QuestionExposure.question_id)
            .where(QuestionExposure.user_id == str(user_id))
            .group_by(topic_col)
        )
        by_topic: Dict[str, int] = {}
        total = 0
        for topic_id, n in db.execute(stmt).all():
            by_topic[str(topic_id) if topic_id is not None else "unknown"] = int(n)
            total += int(n)
        return ExposureStats(total_seen=total, seen_by_topic=by_topic)
