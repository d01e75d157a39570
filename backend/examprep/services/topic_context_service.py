from __future__ import annotations

from typing import Dict, Iterable, List

from sqlalchemy.orm import Session

from examprep.core.contracts import TopicContext
from examprep.core.errors import TopicNotFound
from examprep.models.syllabus_topic import SyllabusTopic


SYNTHETIC_TOPIC_PREFIX = "llm-"


def is_synthetic_topic(topic_id: str) -> bool:
    """Topics created on the fly by the syllabus collaborator (not stored in the DB)."""
    return str(topic_id or "").startswith(SYNTHETIC_TOPIC_PREFIX)


def parse_synthetic_topic(topic_id: str) -> TopicContext:
    """Build a context from ``llm-{curriculum}-{grade}-{subject...}-{index}``.

    The subject may itself contain dashes (``llm-cbse-8-social-studies-2``).
    """
    parts = topic_id[len(SYNTHETIC_TOPIC_PREFIX):].split("-")
    if len(parts) < 4:
        raise TopicNotFound(topic_id)
    try:
        grade = int(parts[1])
        index = int(parts[-1])
    except ValueError:
        raise TopicNotFound(topic_id)

    curriculum = parts[0].upper()
    subject = " ".join(p for p in parts[2:-1] if p)
    if not subject:
        raise TopicNotFound(topic_id)
    topic_name = f"{subject[:1].upper()}{subject[1:]} Topic {index + 1}"

    return TopicContext(
        topic_id=topic_id,
        topic_name=topic_name,
        content=(
            f"{curriculum} Class {grade} {subject}: {topic_name}. Exam-realistic questions "
            f"following the official {curriculum} curriculum standards."
        ),
        related_concepts=(
            f"{curriculum} curriculum standards",
            f"Class {grade} level difficulty",
            f"{subject} fundamentals",
        ),
        syllabus_section=topic_name,
        curriculum=curriculum,
        grade=grade,
        subject=subject,
    )


def _row_to_context(row: SyllabusTopic) -> TopicContext:
    return TopicContext(
        topic_id=row.id,
        topic_name=row.topic_name,
        content=f"{row.topic_name}: {row.official_content}".strip(),
        related_concepts=tuple(str(x) for x in (row.learning_objectives or []) if str(x).strip()),
        syllabus_section=row.syllabus_section or row.topic_name,
        curriculum=row.curriculum,
        grade=row.grade,
        subject=row.subject,
    )


def get_topic_context(db: Session, topic_id: str) -> TopicContext:
    if is_synthetic_topic(topic_id):
        return parse_synthetic_topic(topic_id)
    row = db.get(SyllabusTopic, topic_id)
    if row is None:
        raise TopicNotFound(topic_id)
    return _row_to_context(row)


def get_topic_contexts(db: Session, topic_ids: Iterable[str]) -> Dict[str, TopicContext]:
    """Resolve several topics at once. Raises ``TopicNotFound`` for the first unknown id."""
    out: Dict[str, TopicContext] = {}
    for tid in topic_ids:
        if tid not in out:
            out[tid] = get_topic_context(db, tid)
    return out


def find_unknown_topics(db: Session, topic_ids: Iterable[str]) -> List[str]:
    missing: List[str] = []
    for tid in topic_ids:
        try:
            get_topic_context(db, tid)
        except TopicNotFound:
            missing.append(tid)
    return missing
