from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Set

from sqlalchemy.orm import Session

from examprep.core.config import settings
from examprep.core.contracts import (
    AssembledTest,
    AssemblyResult,
    ExposureStats,
    QuestionRecord,
    TestConfiguration,
    TestOutcome,
    TestState,
    TopicContext,
    as_utc,
    utcnow,
)
from examprep.core.errors import (
    AlignmentRejected,
    AssemblyError,
    IndexingFailed,
    InsufficientQuestions,
    InvalidConfiguration,
)
from examprep.services import question_repository
from examprep.services.exposure_service import ExposureTracker
from examprep.services.novelty import StemDeduplicator
from examprep.services.question_generator import QuestionGenerator
from examprep.services.retrieval_service import RagRetriever
from examprep.services.topic_context_service import find_unknown_topics, get_topic_contexts


logger = logging.getLogger(__name__)

_MODES = ("practice", "retry")


def _positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_configuration(config: TestConfiguration) -> None:
    """Shape checks only; topic resolution needs the datastore."""
    topic_ids = list(config.topic_ids or ())
    if not topic_ids:
        raise InvalidConfiguration("At least one topic is required", field="topic_ids")
    if any(not isinstance(t, str) or not t.strip() for t in topic_ids):
        raise InvalidConfiguration("Topic ids must be non-empty strings", field="topic_ids")
    if not _positive_int(config.question_count):
        raise InvalidConfiguration("question_count must be a positive integer", field="question_count")
    if not _positive_int(config.test_count):
        raise InvalidConfiguration("test_count must be a positive integer", field="test_count")
    if config.mode not in _MODES:
        raise InvalidConfiguration(f"mode must be one of {', '.join(_MODES)}", field="mode")


class TestAssemblyOrchestrator:
    """Entry point of the engine: validate, retrieve, fall back, assemble.

    Tests of one batch are assembled strictly one after another; each test's
    retrieval excludes every question placed in earlier tests of the batch.
    Component errors are turned into per-test outcomes, so a batch always
    reports which tests were assembled and why the others failed.
    """

    def __init__(
        self,
        retriever: RagRetriever,
        tracker: ExposureTracker,
        generator: QuestionGenerator,
        *,
        max_passes: Optional[int] = None,
        semantic_ranking: Optional[bool] = None,
    ):
        self.retriever = retriever
        self.tracker = tracker
        self.generator = generator
        self.max_passes = max(1, int(max_passes if max_passes is not None else settings.FALLBACK_MAX_PASSES))
        self.semantic_ranking = bool(
            settings.RETRIEVAL_SEMANTIC_RANKING if semantic_ranking is None else semantic_ranking
        )

    # ---------- inbound API ----------

    def assemble_tests(self, db: Session, config: TestConfiguration, user_id: str) -> AssemblyResult:
        requested = config.test_count if _positive_int(config.test_count) else 0
        result = AssemblyResult(requested=requested)

        try:
            if not str(user_id or "").strip():
                raise InvalidConfiguration("user_id is required", field="user_id")
            validate_configuration(config)
            unknown = find_unknown_topics(db, config.topic_ids)
            if unknown:
                raise InvalidConfiguration(f"Unknown topics: {', '.join(unknown)}", field="topic_ids")
            contexts = get_topic_contexts(db, config.topic_ids)
        except InvalidConfiguration as e:
            logger.info("Rejected test configuration: %s", e.message)
            result.error = e
            return result

        topic_ids = list(contexts)
        exclusion: Set[str] = set()
        if config.mode == "retry":
            exclusion |= self.tracker.get_seen_question_ids(db, user_id)
        relevance_query = self._relevance_query(config, contexts)

        for i in range(config.test_count):
            outcome = TestOutcome(index=i)
            result.outcomes.append(outcome)
            try:
                outcome.advance(TestState.RETRIEVING)
                records = self._collect(db, config, contexts, topic_ids, exclusion, relevance_query, outcome)

                if result.configuration_id is None:
                    result.configuration_id = question_repository.save_configuration(db, config, user_id).id
                test = AssembledTest(
                    test_id=uuid.uuid4().hex,
                    configuration_id=result.configuration_id,
                    user_id=str(user_id),
                    questions=tuple(records),
                    created_at=utcnow(),
                )
                question_repository.save_assembled_test(db, test, batch_index=i)
                self.tracker.record_seen_batch(db, user_id, test.question_ids)
                db.commit()

                exclusion.update(test.question_ids)
                outcome.test = test
                outcome.advance(TestState.ASSEMBLED)
                logger.info(
                    "Assembled test %s/%s (%s questions, %s generated) for user=%s",
                    i + 1,
                    config.test_count,
                    len(records),
                    outcome.fallback_generated,
                    user_id,
                )
            except AssemblyError as e:
                db.rollback()
                outcome.fail(e)
                logger.warning("Test %s/%s failed for user=%s: %s", i + 1, config.test_count, user_id, e.message)

        return result

    def index_question(self, db: Session, record: QuestionRecord) -> QuestionRecord:
        """Persist ``record`` and admit it into the vector index."""
        record = self.retriever.ensure_embedding(record)
        row = question_repository.save_question(db, record, embedding_model=self.retriever.embedder.model_id)
        # a corrected record keeps the original creation time, as a rebuild would load it
        record = replace(record, created_at=as_utc(row.created_at))
        try:
            self.retriever.index.insert(record)
        except IndexingFailed:
            db.rollback()
            raise
        db.commit()
        return record

    def get_question_stats(self, db: Session, user_id: str) -> ExposureStats:
        return self.tracker.get_stats(db, user_id)

    def assemble_retry(self, db: Session, test_id: str, user_id: str) -> Optional[AssemblyResult]:
        """One retry-mode test from the configuration behind ``test_id``; None if the test is unknown."""
        row = question_repository.get_assembled_test(db, test_id)
        if row is None:
            return None
        cfg_row = question_repository.get_configuration(db, row.configuration_id)
        if cfg_row is None:
            return None
        base = question_repository.configuration_from_row(cfg_row)
        config = TestConfiguration(
            topic_ids=base.topic_ids,
            question_count=base.question_count,
            test_count=1,
            curriculum=base.curriculum,
            grade=base.grade,
            subject=base.subject,
            mode="retry",
            relevance_query=base.relevance_query,
        )
        return self.assemble_tests(db, config, user_id)

    # ---------- per-test steps ----------

    def _relevance_query(self, config: TestConfiguration, contexts: Dict[str, TopicContext]) -> Optional[str]:
        if (config.relevance_query or "").strip():
            return config.relevance_query
        if not self.semantic_ranking:
            return None
        text = " ".join(ctx.grounding_text() for ctx in contexts.values()).strip()
        return text or None

    def _collect(
        self,
        db: Session,
        config: TestConfiguration,
        contexts: Dict[str, TopicContext],
        topic_ids: List[str],
        exclusion: Set[str],
        relevance_query: Optional[str],
        outcome: TestOutcome,
    ) -> List[QuestionRecord]:
        need = int(config.question_count)
        records = self.retriever.retrieve_questions(topic_ids, need, exclusion, relevance_query)
        if len(records) >= need:
            outcome.advance(TestState.SUFFICIENT)
            return records[:need]

        outcome.advance(TestState.FALLBACK)
        shortfall = need - len(records)
        logger.info("Retrieved %s of %s questions, generating %s", len(records), need, shortfall)
        self._fallback(db, contexts, topic_ids, exclusion, shortfall, outcome)

        records = self.retriever.retrieve_questions(topic_ids, need, exclusion, relevance_query)
        if len(records) >= need:
            outcome.advance(TestState.SUFFICIENT)
            return records[:need]
        raise InsufficientQuestions(
            available=len(records),
            requested=need,
            suggestion=self._suggestion(config, topic_ids, len(records)),
        )

    def _fallback(
        self,
        db: Session,
        contexts: Dict[str, TopicContext],
        topic_ids: Sequence[str],
        exclusion: Set[str],
        shortfall: int,
        outcome: TestOutcome,
    ) -> None:
        # round-robin split of the shortfall
        shares = {t: 0 for t in topic_ids}
        for k in range(shortfall):
            shares[topic_ids[k % len(topic_ids)]] += 1

        dedup = StemDeduplicator(question_repository.load_question_texts(db, topic_ids))

        for topic_id in topic_ids:
            remaining = shares[topic_id]
            ctx = contexts[topic_id]
            prompt_texts = question_repository.load_question_texts(db, [topic_id])
            passes = 0
            while remaining > 0 and passes < self.max_passes:
                passes += 1
                logger.info("Fallback pass %s for topic %s: %s needed", passes, topic_id, remaining)
                for cand in self.generator.generate(ctx, prompt_texts, remaining):
                    if remaining <= 0:
                        break
                    if cand.question_id in exclusion or cand.question_id in self.retriever.index:
                        logger.info("Dropping generated question with known id %s", cand.question_id)
                        continue
                    if not dedup.accept(cand.question_text):
                        logger.info("Dropping near-duplicate generated question for topic %s", topic_id)
                        continue
                    try:
                        self._admit(db, cand, ctx)
                    except AlignmentRejected as e:
                        outcome.alignment_rejected += 1
                        logger.warning(
                            "Generated question rejected for topic %s (score=%.2f): %s", topic_id, e.score, e.rationale
                        )
                        continue
                    except IndexingFailed as e:
                        logger.warning("Generated question %s could not be indexed: %s", e.question_id, e.reason)
                        continue
                    prompt_texts.insert(0, cand.question_text)
                    remaining -= 1
                    outcome.fallback_generated += 1

            if remaining > 0:
                logger.warning("Fallback for topic %s ended %s short after %s passes", topic_id, remaining, passes)

    def _admit(self, db: Session, record: QuestionRecord, ctx: TopicContext) -> QuestionRecord:
        score = self.generator.validate_syllabus_alignment(record, ctx)
        if not score.aligned:
            raise AlignmentRejected(record.question_id, score.score, score.rationale)
        return self.index_question(db, record)

    def _suggestion(self, config: TestConfiguration, topic_ids: Sequence[str], available: int) -> str:
        parts = ["reduce question count or test count"]
        if available > 0:
            parts.append(f"at most {available} questions are still available for this test")
        pool = len(self.retriever.index.get_by_topics(topic_ids))
        max_tests = pool // int(config.question_count) if config.question_count else 0
        if max_tests >= 1:
            parts.append(f"the corpus supports at most {max_tests} test(s) of {config.question_count} questions")
        return "; ".join(parts)
