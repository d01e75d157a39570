"""Typed errors of the retrieval / assembly engine.

Components raise these. The assembly orchestrator catches them per test and
turns them into values on ``TestOutcome.error`` so a batch can report
"assembled N of M, here is why the rest failed".
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class AssemblyError(Exception):
    code: str = "ASSEMBLY_ERROR"
    # Transient infrastructure failures; retried at the adapter layer only.
    transient: bool = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def details(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details()}


class InvalidConfiguration(AssemblyError):
    code = "INVALID_CONFIGURATION"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def details(self) -> Dict[str, Any]:
        return {"field": self.field}


class InsufficientQuestions(AssemblyError):
    code = "INSUFFICIENT_QUESTIONS"

    def __init__(self, available: int, requested: int, suggestion: str = ""):
        self.available = int(available)
        self.requested = int(requested)
        self.suggestion = suggestion
        super().__init__(f"Only {self.available} of {self.requested} questions available")

    def details(self) -> Dict[str, Any]:
        return {"available": self.available, "requested": self.requested, "suggestion": self.suggestion}


class EmbeddingUnavailable(AssemblyError):
    code = "EMBEDDING_UNAVAILABLE"
    transient = True

    def __init__(self, reason: str):
        super().__init__(f"Embedding provider unavailable: {reason}")
        self.reason = reason

    def details(self) -> Dict[str, Any]:
        return {"reason": self.reason}


class GenerationUnavailable(AssemblyError):
    code = "GENERATION_UNAVAILABLE"
    transient = True

    def __init__(self, reason: str):
        super().__init__(f"Question generator unavailable: {reason}")
        self.reason = reason

    def details(self) -> Dict[str, Any]:
        return {"reason": self.reason}


class AlignmentRejected(AssemblyError):
    code = "ALIGNMENT_REJECTED"

    def __init__(self, question_id: str, score: float, rationale: str = ""):
        super().__init__(f"Question {question_id} rejected by syllabus alignment (score={score:.2f})")
        self.question_id = question_id
        self.score = float(score)
        self.rationale = rationale

    def details(self) -> Dict[str, Any]:
        return {"question_id": self.question_id, "score": self.score, "rationale": self.rationale}


class IndexingFailed(AssemblyError):
    code = "INDEXING_FAILED"

    def __init__(self, question_id: str, reason: str):
        super().__init__(f"Could not index question {question_id}: {reason}")
        self.question_id = question_id
        self.reason = reason

    def details(self) -> Dict[str, Any]:
        return {"question_id": self.question_id, "reason": self.reason}


class TopicNotFound(AssemblyError):
    code = "TOPIC_NOT_FOUND"

    def __init__(self, topic_id: str):
        super().__init__(f"Topic not found: {topic_id}")
        self.topic_id = topic_id

    def details(self) -> Dict[str, Any]:
        return {"topic_id": self.topic_id}
