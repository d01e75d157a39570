from __future__ import annotations

from typing import List, Literal, Optional
from pydantic import BaseModel, Field

from examprep.core.contracts import TestConfiguration

Mode = Literal["practice", "retry"]


class AssembleTestsRequest(BaseModel):
    """Counts are range-checked by the engine so bad values surface as INVALID_CONFIGURATION."""

    user_id: str
    curriculum: str = ""
    grade: Optional[int] = None
    subject: str = ""
    topic_ids: List[str] = Field(default_factory=list)
    question_count: int
    test_count: int = 1
    mode: Mode = "practice"
    relevance_query: Optional[str] = None

    def to_configuration(self) -> TestConfiguration:
        return TestConfiguration(
            topic_ids=tuple(self.topic_ids),
            question_count=self.question_count,
            test_count=self.test_count,
            curriculum=self.curriculum,
            grade=self.grade,
            subject=self.subject,
            mode=self.mode,
            relevance_query=self.relevance_query,
        )


class RetryTestRequest(BaseModel):
    user_id: str
