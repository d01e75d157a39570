from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

from examprep.core.config import settings
from examprep.core.contracts import (
    AlignmentScore,
    QuestionRecord,
    TopicContext,
    new_question_id,
    utcnow,
)
from examprep.core.errors import GenerationUnavailable
from examprep.services import llm_service
from examprep.services.embedding_service import adapter_retrying
from examprep.services.novelty import StemDeduplicator


logger = logging.getLogger(__name__)


MATH_SUBJECTS = (
    "mathematics",
    "math",
    "physics",
    "chemistry",
    "statistics",
    "calculus",
    "algebra",
    "geometry",
    "trigonometry",
    "arithmetic",
)

_TYPE_ALIASES = {
    "single_choice": "single_choice",
    "multiplechoice": "single_choice",
    "multiple_choice": "single_choice",
    "mcq": "single_choice",
    "free_text": "free_text",
    "shortanswer": "free_text",
    "short_answer": "free_text",
    "essay": "free_text",
    "numeric": "numeric",
    "numerical": "numeric",
}


def is_math_subject(subject: str | None) -> bool:
    s = (subject or "").lower()
    return bool(s) and any(m in s for m in MATH_SUBJECTS)


def _clamp01(x: Any) -> float:
    try:
        v = float(x)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(1.0, v))


class QuestionGenerator:
    """Synthesizes syllabus-grounded questions when the corpus runs short."""

    name = "base"

    def __init__(self, min_score: Optional[float] = None):
        self.min_score = float(min_score if min_score is not None else settings.ALIGNMENT_MIN_SCORE)

    def generate(self, topic_context: TopicContext, exclude_texts: Sequence[str], count: int) -> List[QuestionRecord]:
        raise NotImplementedError

    def validate_syllabus_alignment(self, record: QuestionRecord, topic_context: TopicContext) -> AlignmentScore:
        raise NotImplementedError

    def _new_record(
        self,
        topic_context: TopicContext,
        *,
        text: str,
        question_type: str,
        correct_answers: Iterable[str],
        options: Iterable[str] = (),
        syllabus_reference: str = "",
    ) -> QuestionRecord:
        ref = (syllabus_reference or "").strip() or topic_context.syllabus_section or topic_context.content[:50]
        return QuestionRecord(
            question_id=new_question_id(),
            topic_id=topic_context.topic_id,
            question_text=text.strip(),
            question_type=question_type,  # type: ignore[arg-type]
            correct_answers=tuple(str(a).strip() for a in correct_answers if str(a).strip()),
            syllabus_reference=ref,
            options=tuple(str(o).strip() for o in options if str(o).strip()),
            created_at=utcnow(),
            source="generated",
        )


# ---------- LLM-backed ----------

_SYSTEM_PROMPT = """You are an expert educational content creator writing exam-realistic questions for school curricula.

Every question must:
1. Strictly align with the provided syllabus content
2. Match the difficulty of real exams (no easier or harder)
3. Be clear, unambiguous and age-appropriate
4. Have a verified, accurate correct answer
5. Not duplicate or closely resemble the listed existing questions

Question types:
- single_choice: exactly 4 options and exactly one correct answer (must match an option)
- free_text: a brief written response (1-3 sentences)
- numeric: a numerical answer (with units if applicable)

Return a JSON object:
{"questions": [{"questionText": "...", "questionType": "single_choice|free_text|numeric",
 "options": ["..."], "correctAnswer": "...", "syllabusReference": "specific section or concept"}]}"""


class LLMQuestionGenerator(QuestionGenerator):
    name = "llm"

    def __init__(
        self,
        model: Optional[str] = None,
        min_score: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        max_exclude_in_prompt: Optional[int] = None,
    ):
        super().__init__(min_score=min_score)
        self.model = model or settings.OPENAI_CHAT_MODEL
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.max_exclude_in_prompt = int(
            max_exclude_in_prompt if max_exclude_in_prompt is not None else settings.GEN_MAX_EXCLUDE_IN_PROMPT
        )

    def _call(self, messages: List[Dict[str, str]], *, temperature: float, max_tokens: int) -> Dict[str, Any]:
        try:
            for attempt in adapter_retrying(self.max_attempts, self.backoff_base):
                with attempt:
                    obj = llm_service.chat_json(
                        messages=messages,
                        model=self.model,
                        temperature=temperature,
                        max_tokens=max_tokens,
                        timeout_sec=settings.OPENAI_HTTP_TIMEOUT_SEC,
                    )
        except Exception as e:
            logger.error("LLM generation call failed after retries: %s", e)
            raise GenerationUnavailable(f"{type(e).__name__}: {str(e)[:200]}") from e
        return obj

    def build_generation_prompt(self, ctx: TopicContext, exclude_texts: Sequence[str], count: int) -> str:
        lines = [
            f"Generate {count} exam-realistic questions based on the following syllabus content.",
            "",
            f"Topic: {ctx.topic_name}",
            f"Syllabus section: {ctx.syllabus_section or ctx.topic_name}",
            f"Syllabus content: {ctx.content}",
        ]
        if ctx.curriculum or ctx.grade is not None:
            lines.append(f"Curriculum: {ctx.curriculum} grade {ctx.grade if ctx.grade is not None else '-'} {ctx.subject}".rstrip())
        if ctx.related_concepts:
            lines.append("")
            lines.append("Key concepts:")
            lines.extend(f"- {c}" for c in ctx.related_concepts)
        if is_math_subject(ctx.subject):
            lines.append("")
            lines.append(
                "MATH SUBJECT: generate only quantitative, calculation-based problems and verify every calculation."
            )
        shown = [t for t in exclude_texts if (t or "").strip()][: self.max_exclude_in_prompt]
        if shown:
            lines.append("")
            lines.append("Do NOT create questions similar to these existing questions:")
            lines.extend(f"{i}. {t.strip()}" for i, t in enumerate(shown, start=1))
        lines.append("")
        lines.append(f"Generate exactly {count} questions, each with a specific syllabus reference.")
        return "\n".join(lines)

    def _parse_item(self, item: Any, ctx: TopicContext) -> Optional[QuestionRecord]:
        if not isinstance(item, dict):
            return None
        text = str(item.get("questionText") or item.get("question_text") or item.get("stem") or "").strip()
        qtype = _TYPE_ALIASES.get(
            re.sub(r"[\s-]", "", str(item.get("questionType") or item.get("question_type") or "")).lower()
        )
        answers = item.get("correctAnswers") or item.get("correct_answers") or item.get("correctAnswer")
        if isinstance(answers, (str, int, float)):
            answers = [str(answers)]
        if not text or not qtype or not isinstance(answers, list) or not answers:
            return None
        options = item.get("options") or []
        if not isinstance(options, list):
            options = []
        if qtype == "single_choice":
            opts = [str(o).strip() for o in options]
            if len(opts) < 2 or not any(str(a).strip() in opts for a in answers):
                return None
        else:
            options = []
        return self._new_record(
            ctx,
            text=text,
            question_type=qtype,
            correct_answers=[str(a) for a in answers],
            options=options,
            syllabus_reference=str(item.get("syllabusReference") or item.get("syllabus_reference") or ""),
        )

    def generate(self, topic_context: TopicContext, exclude_texts: Sequence[str], count: int) -> List[QuestionRecord]:
        if int(count) <= 0:
            return []
        obj = self._call(
            [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": self.build_generation_prompt(topic_context, exclude_texts, int(count))},
            ],
            temperature=0.4,
            max_tokens=4000,
        )
        items = obj.get("questions")
        if not isinstance(items, list):
            logger.warning("LLM returned no 'questions' array for topic %s", topic_context.topic_id)
            return []
        out: List[QuestionRecord] = []
        for item in items:
            rec = self._parse_item(item, topic_context)
            if rec is None:
                logger.info("Skipping malformed generated question for topic %s", topic_context.topic_id)
                continue
            out.append(rec)
        return out[: int(count)]

    def validate_syllabus_alignment(self, record: QuestionRecord, topic_context: TopicContext) -> AlignmentScore:
        prompt = "\n".join(
            [
                "Validate whether this question aligns with the syllabus content.",
                "",
                f"Question: {record.question_text}",
                f"Question type: {record.question_type}",
                f"Options: {', '.join(record.options)}" if record.options else "",
                f"Correct answer: {', '.join(record.correct_answers)}",
                "",
                f"Syllabus content: {topic_context.content}",
                f"Key concepts: {', '.join(topic_context.related_concepts)}",
                "",
                "Return a JSON object: "
                '{"score": 0.0-1.0, "reasoning": "...", "syllabusReferences": ["concept", "..."]}',
            ]
        )
        obj = self._call(
            [
                {
                    "role": "system",
                    "content": "You are an expert educational content validator. Assess whether questions align with syllabus content.",
                },
                {"role": "user", "content": prompt},
            ],
            temperature=0.3,
            max_tokens=500,
        )
        score = _clamp01(obj.get("score"))
        refs = obj.get("syllabusReferences") or obj.get("syllabus_references") or []
        if not isinstance(refs, list):
            refs = [str(refs)]
        return AlignmentScore(
            aligned=score >= self.min_score,
            score=score,
            rationale=str(obj.get("reasoning") or obj.get("rationale") or "No reasoning provided"),
            syllabus_references=tuple(str(r) for r in refs),
        )


# ---------- offline / deterministic ----------

_STOPWORDS = {
    "the", "and", "for", "are", "was", "with", "that", "this", "from", "into", "its", "their", "have",
    "has", "how", "what", "why", "which", "who", "when", "where", "does", "did", "can", "will",
    "explain", "describe", "state", "give", "example", "illustrates", "key", "idea", "covered",
    "applies", "role", "play", "plays", "using", "between", "within", "about", "one", "two",
}

_OFFLINE_TEMPLATES = (
    "Explain {concept} as covered in {topic}.",
    "Give one example that illustrates {concept}.",
    "State the key idea of {concept} and how it applies in {topic}.",
    "Describe the role {concept} plays within {topic}.",
)


def _content_tokens(text: str) -> List[str]:
    return [t for t in re.findall(r"[\w']+", (text or "").lower()) if len(t) > 2 and t not in _STOPWORDS]


class OfflineQuestionGenerator(QuestionGenerator):
    """Deterministic, network-free generator.

    Builds free-text prompts from the topic's key concepts; alignment is the share
    of the question's content words that appear in the syllabus text.
    """

    name = "offline"

    def generate(self, topic_context: TopicContext, exclude_texts: Sequence[str], count: int) -> List[QuestionRecord]:
        if int(count) <= 0:
            return []
        concepts = [c for c in topic_context.related_concepts if c.strip()] or [topic_context.topic_name]
        dedup = StemDeduplicator(exclude_texts)
        out: List[QuestionRecord] = []
        for template in _OFFLINE_TEMPLATES:
            for concept in concepts:
                if len(out) >= int(count):
                    return out
                text = template.format(concept=concept.strip(), topic=topic_context.topic_name)
                if not dedup.accept(text):
                    continue
                out.append(
                    self._new_record(
                        topic_context,
                        text=text,
                        question_type="free_text",
                        correct_answers=[f"{concept.strip()}: {topic_context.content[:200]}"],
                    )
                )
        return out

    def validate_syllabus_alignment(self, record: QuestionRecord, topic_context: TopicContext) -> AlignmentScore:
        q_tokens = set(_content_tokens(record.question_text))
        syllabus = " ".join([topic_context.topic_name, topic_context.grounding_text(), topic_context.syllabus_section])
        s_tokens = set(_content_tokens(syllabus))
        if not q_tokens:
            return AlignmentScore(aligned=False, score=0.0, rationale="question has no content words")
        hits = sorted(q_tokens & s_tokens)
        score = len(hits) / len(q_tokens)
        return AlignmentScore(
            aligned=score >= self.min_score,
            score=score,
            rationale=f"{len(hits)}/{len(q_tokens)} content words found in the syllabus text",
            syllabus_references=tuple(hits),
        )


def get_question_generator(mode: Optional[str] = None) -> QuestionGenerator:
    m = (mode or settings.QUESTION_GEN_MODE or "auto").strip().lower()
    if m == "auto":
        m = "llm" if llm_service.llm_available() else "offline"
    if m == "llm":
        return LLMQuestionGenerator()
    if m == "offline":
        return OfflineQuestionGenerator()
    raise ValueError(f"Unknown QUESTION_GEN_MODE: {mode!r}")
