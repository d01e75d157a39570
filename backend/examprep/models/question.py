from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from examprep.db.base_class import Base


class Question(Base):
    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    topic_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    # single_choice | free_text | numeric
    question_type: Mapped[str] = mapped_column(String(32), nullable=False, default="single_choice")
    options: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    correct_answers: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    syllabus_reference: Mapped[str] = mapped_column(Text, nullable=False, default="")
    difficulty: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="exam_realistic",
        server_default=text("'exam_realistic'"),
    )
    # seed | generated
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="seed", server_default=text("'seed'"))

    # Cached embedding (list of floats). Recomputed when the embedding backend's dimension changes.
    embedding: Mapped[list[float] | None] = mapped_column(JSON, nullable=True)
    embedding_model: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Text corrections create a new row and retire the old one.
    retired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
