from __future__ import annotations

from sqlalchemy import JSON, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from examprep.db.base_class import Base


class SyllabusTopic(Base):
    """Read-only view of the syllabus collaborator's topic table."""

    __tablename__ = "syllabus_topics"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    curriculum: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    grade: Mapped[int] = mapped_column(Integer, nullable=False)
    subject: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    topic_name: Mapped[str] = mapped_column(String(255), nullable=False)
    syllabus_section: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    official_content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    learning_objectives: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
