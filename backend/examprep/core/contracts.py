from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from examprep.core.errors import AssemblyError


QuestionType = Literal["single_choice", "free_text", "numeric"]
QuestionSource = Literal["seed", "generated"]
TestMode = Literal["practice", "retry"]

DEFAULT_DIFFICULTY = "exam_realistic"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC so they sort with aware ones."""
    if dt is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def new_question_id() -> str:
    return f"q-{uuid.uuid4().hex}"


@dataclass(frozen=True)
class QuestionRecord:
    """One syllabus-aligned question.

    Immutable value. Indexing a record under an existing id replaces both the
    stored row and the index entry; retiring a question is explicit.
    ``embedding`` is filled lazily the first time the record is indexed.
    """

    question_id: str
    topic_id: str
    question_text: str
    question_type: QuestionType
    correct_answers: Tuple[str, ...]
    syllabus_reference: str
    options: Tuple[str, ...] = ()
    difficulty: str = DEFAULT_DIFFICULTY
    created_at: datetime = field(default_factory=utcnow)
    source: QuestionSource = "seed"
    embedding: Optional[Tuple[float, ...]] = None

    def with_embedding(self, vector: List[float]) -> "QuestionRecord":
        return replace(self, embedding=tuple(float(x) for x in vector))

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "question_id": self.question_id,
            "topic_id": self.topic_id,
            "question_text": self.question_text,
            "question_type": self.question_type,
            "options": list(self.options),
            "correct_answers": list(self.correct_answers),
            "syllabus_reference": self.syllabus_reference,
            "difficulty": self.difficulty,
            "source": self.source,
            "created_at": self.created_at.isoformat(),
        }
        if include_embedding:
            out["embedding"] = list(self.embedding) if self.embedding is not None else None
        return out


# Bump when the metadata shape changes; entries built under an older version are
# rebuilt rather than read.
INDEX_METADATA_VERSION = 1


@dataclass(frozen=True)
class IndexEntryMetadata:
    question_id: str
    topic_id: str
    syllabus_reference: str
    created_at: datetime
    version: int = INDEX_METADATA_VERSION


@dataclass(frozen=True)
class IndexEntry:
    vector: Tuple[float, ...]
    metadata: IndexEntryMetadata
    record: QuestionRecord
    # Insertion sequence; lower = indexed earlier. Used for deterministic tie-breaks.
    seq: int


@dataclass(frozen=True)
class SearchHit:
    entry: IndexEntry
    similarity: float


@dataclass(frozen=True)
class RetrievalQuery:
    topic_ids: Tuple[str, ...]
    count: int
    exclude_ids: frozenset = frozenset()
    relevance_query: Optional[str] = None


@dataclass(frozen=True)
class TopicContext:
    """Syllabus grounding for one topic (read from the syllabus collaborator)."""

    topic_id: str
    topic_name: str
    content: str
    related_concepts: Tuple[str, ...] = ()
    syllabus_section: str = ""
    curriculum: str = ""
    grade: Optional[int] = None
    subject: str = ""

    def grounding_text(self) -> str:
        return " ".join([self.content, *self.related_concepts]).strip()


@dataclass(frozen=True)
class AlignmentScore:
    aligned: bool
    score: float
    rationale: str = ""
    syllabus_references: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ExposureRecord:
    user_id: str
    question_id: str
    first_seen_at: datetime
    topic_id: Optional[str] = None


@dataclass
class ExposureStats:
    total_seen: int
    seen_by_topic: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"total_seen": self.total_seen, "seen_by_topic": dict(self.seen_by_topic)}


@dataclass(frozen=True)
class TestConfiguration:
    topic_ids: Tuple[str, ...]
    question_count: int
    test_count: int = 1
    curriculum: str = ""
    grade: Optional[int] = None
    subject: str = ""
    mode: TestMode = "practice"
    relevance_query: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "curriculum": self.curriculum,
            "grade": self.grade,
            "subject": self.subject,
            "topic_ids": list(self.topic_ids),
            "question_count": self.question_count,
            "test_count": self.test_count,
            "mode": self.mode,
        }


@dataclass(frozen=True)
class AssembledTest:
    test_id: str
    configuration_id: str
    user_id: str
    questions: Tuple[QuestionRecord, ...]
    created_at: datetime = field(default_factory=utcnow)

    @property
    def question_ids(self) -> List[str]:
        return [q.question_id for q in self.questions]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_id": self.test_id,
            "configuration_id": self.configuration_id,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
            "questions": [q.to_dict() for q in self.questions],
        }


class TestState(str, Enum):
    VALIDATING = "validating"
    RETRIEVING = "retrieving"
    SUFFICIENT = "sufficient"
    FALLBACK = "fallback"
    ASSEMBLED = "assembled"
    FAILED = "failed"


# Legal transitions of the per-test state machine.
TEST_STATE_TRANSITIONS: Dict[TestState, Tuple[TestState, ...]] = {
    TestState.VALIDATING: (TestState.RETRIEVING, TestState.FAILED),
    TestState.RETRIEVING: (TestState.SUFFICIENT, TestState.FALLBACK, TestState.FAILED),
    TestState.FALLBACK: (TestState.SUFFICIENT, TestState.FAILED),
    TestState.SUFFICIENT: (TestState.ASSEMBLED, TestState.FAILED),
    TestState.ASSEMBLED: (),
    TestState.FAILED: (),
}


@dataclass
class TestOutcome:
    index: int
    state: TestState = TestState.VALIDATING
    test: Optional[AssembledTest] = None
    error: Optional[AssemblyError] = None
    fallback_generated: int = 0
    alignment_rejected: int = 0
    trace: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.trace:
            self.trace.append(self.state.value)

    def advance(self, new_state: TestState) -> None:
        if new_state not in TEST_STATE_TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal test state transition {self.state.value} -> {new_state.value}")
        self.trace.append(new_state.value)
        self.state = new_state

    def fail(self, error: AssemblyError) -> None:
        self.error = error
        self.advance(TestState.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "state": self.state.value,
            "test_id": self.test.test_id if self.test else None,
            "fallback_generated": self.fallback_generated,
            "alignment_rejected": self.alignment_rejected,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class AssemblyResult:
    requested: int
    outcomes: List[TestOutcome] = field(default_factory=list)
    # Batch-level error (invalid configuration); no test was attempted.
    error: Optional[AssemblyError] = None
    configuration_id: Optional[str] = None

    @property
    def tests(self) -> List[AssembledTest]:
        return [o.test for o in self.outcomes if o.state == TestState.ASSEMBLED and o.test is not None]

    @property
    def failures(self) -> List[TestOutcome]:
        return [o for o in self.outcomes if o.state == TestState.FAILED]

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failures and len(self.tests) == self.requested

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "requested": self.requested,
            "assembled": len(self.tests),
            "configuration_id": self.configuration_id,
            "tests": [t.to_dict() for t in self.tests],
            "failures": [o.to_dict() for o in self.failures],
            "error": self.error.to_dict() if self.error else None,
        }
