from __future__ import annotations

from typing import List, Literal, Optional
from pydantic import BaseModel, Field, model_validator

from examprep.core.contracts import DEFAULT_DIFFICULTY, QuestionRecord, new_question_id, utcnow

QuestionTypeIn = Literal["single_choice", "free_text", "numeric"]


class IndexQuestionRequest(BaseModel):
    question_id: Optional[str] = None
    topic_id: str = Field(min_length=1)
    question_text: str = Field(min_length=1)
    question_type: QuestionTypeIn = "single_choice"
    options: List[str] = Field(default_factory=list)
    correct_answers: List[str] = Field(min_length=1)
    syllabus_reference: str = ""
    difficulty: str = DEFAULT_DIFFICULTY
    source: Literal["seed", "generated"] = "seed"

    @model_validator(mode="after")
    def _check_options(self):
        if self.question_type == "single_choice":
            if len(self.options) < 2:
                raise ValueError("single_choice questions need at least two options")
            if not any(a in self.options for a in self.correct_answers):
                raise ValueError("a correct answer must match one of the options")
        return self

    def to_record(self) -> QuestionRecord:
        return QuestionRecord(
            question_id=(self.question_id or "").strip() or new_question_id(),
            topic_id=self.topic_id,
            question_text=self.question_text,
            question_type=self.question_type,
            correct_answers=tuple(self.correct_answers),
            syllabus_reference=self.syllabus_reference,
            options=tuple(self.options),
            difficulty=self.difficulty,
            created_at=utcnow(),
            source=self.source,
        )
