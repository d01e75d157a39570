from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from examprep.db.base_class import Base


class QuestionExposure(Base):
    """First time a user was shown a question. One row per (user, question)."""

    __tablename__ = "question_exposures"
    __table_args__ = (UniqueConstraint("user_id", "question_id", name="uq_question_exposures_user_question"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    question_id: Mapped[str] = mapped_column(String(64), nullable=False)
    topic_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
