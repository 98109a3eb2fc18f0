"""
Quiz definitions and their question types.

Questions form a tagged union keyed by `type`. The correct answer is typed
when a question is parsed (option index, boolean, or text), so grading only
ever compares already-typed values via `Question.is_correct`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Type

from coursegate.errors import ValidationError

MCQ = "mcq"
TRUE_FALSE = "true-false"
SHORT_ANSWER = "short-answer"


@dataclass(frozen=True)
class Question:
    text: str
    points: int = 1

    type: ClassVar[str] = ""

    @property
    def correct_answer(self) -> Any:  # pragma: no cover - overridden
        raise NotImplementedError

    def is_correct(self, answer: object) -> bool:  # pragma: no cover - overridden
        raise NotImplementedError

    def to_dict(self, *, include_answer: bool = True) -> dict:
        data: Dict[str, Any] = {"text": self.text, "type": self.type, "points": self.points}
        if include_answer:
            data["correct_answer"] = self.correct_answer
        return data


@dataclass(frozen=True)
class McqQuestion(Question):
    options: Tuple[str, ...] = ()
    answer_index: int = 0

    type: ClassVar[str] = MCQ

    @property
    def correct_answer(self) -> int:
        return self.answer_index

    def is_correct(self, answer: object) -> bool:
        # bool is an int subclass; True must not match option 1
        if isinstance(answer, bool) or not isinstance(answer, int):
            return False
        return answer == self.answer_index

    def to_dict(self, *, include_answer: bool = True) -> dict:
        data = super().to_dict(include_answer=include_answer)
        data["options"] = list(self.options)
        return data


@dataclass(frozen=True)
class TrueFalseQuestion(Question):
    answer_value: bool = True

    type: ClassVar[str] = TRUE_FALSE

    @property
    def correct_answer(self) -> bool:
        return self.answer_value

    def is_correct(self, answer: object) -> bool:
        return isinstance(answer, bool) and answer is self.answer_value


@dataclass(frozen=True)
class ShortAnswerQuestion(Question):
    answer_text: str = ""

    type: ClassVar[str] = SHORT_ANSWER

    @property
    def correct_answer(self) -> str:
        return self.answer_text

    def is_correct(self, answer: object) -> bool:
        if not isinstance(answer, str):
            return False
        return answer.strip().lower() == self.answer_text.strip().lower()


QUESTION_TYPES: Dict[str, Type[Question]] = {
    MCQ: McqQuestion,
    TRUE_FALSE: TrueFalseQuestion,
    SHORT_ANSWER: ShortAnswerQuestion,
}


def _parse_points(value: object) -> int:
    if value is None:
        return 1
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("invalid_points")
    if value < 1:
        raise ValidationError("invalid_points")
    return value


def parse_question(raw: object) -> Question:
    """Parse a question payload into its typed variant.

    Accepts `text`/`question_text` and `type`/`question_type` so stored rows
    and API payloads share the same path. Raises `ValidationError` with a
    field-specific code on malformed input, e.g. a missing correct answer.
    """
    if not isinstance(raw, Mapping):
        raise ValidationError("invalid_question")
    text = raw.get("text", raw.get("question_text"))
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("invalid_question_text")
    qtype = raw.get("type", raw.get("question_type", MCQ))
    if qtype not in QUESTION_TYPES:
        raise ValidationError("invalid_question_type")
    points = _parse_points(raw.get("points"))
    if "correct_answer" not in raw or raw.get("correct_answer") is None:
        raise ValidationError("missing_correct_answer")
    answer = raw["correct_answer"]

    if qtype == MCQ:
        options = raw.get("options")
        if not isinstance(options, (list, tuple)) or len(options) < 2:
            raise ValidationError("invalid_options")
        cleaned = []
        for opt in options:
            if not isinstance(opt, str) or not opt.strip():
                raise ValidationError("invalid_options")
            cleaned.append(opt.strip())
        if isinstance(answer, bool) or not isinstance(answer, int) or not (0 <= answer < len(cleaned)):
            raise ValidationError("invalid_correct_answer")
        return McqQuestion(text=text.strip(), points=points, options=tuple(cleaned), answer_index=answer)
    if qtype == TRUE_FALSE:
        if not isinstance(answer, bool):
            raise ValidationError("invalid_correct_answer")
        return TrueFalseQuestion(text=text.strip(), points=points, answer_value=answer)
    if not isinstance(answer, str) or not answer.strip():
        raise ValidationError("invalid_correct_answer")
    return ShortAnswerQuestion(text=text.strip(), points=points, answer_text=answer.strip())


@dataclass(frozen=True)
class QuizDefinition:
    id: str
    course_id: str
    title: str
    questions: Tuple[Question, ...] = ()
    section_id: Optional[str] = None
    description: str = ""
    passing_score: int = 70
    time_limit_minutes: int = 0
    attempts_allowed: int = -1
    is_required: bool = False
    is_active: bool = True
    created_by: str = ""
    created_at: str = ""
    updated_at: str = ""

    @property
    def total_points(self) -> int:
        return sum(q.points for q in self.questions)

    @property
    def has_attempt_limit(self) -> bool:
        return self.attempts_allowed >= 0

    def to_dict(self, *, include_answers: bool = True) -> dict:
        return {
            "id": self.id,
            "course_id": self.course_id,
            "section_id": self.section_id,
            "title": self.title,
            "description": self.description,
            "questions": [q.to_dict(include_answer=include_answers) for q in self.questions],
            "passing_score": self.passing_score,
            "time_limit": self.time_limit_minutes,
            "attempts_allowed": self.attempts_allowed,
            "is_required": self.is_required,
            "is_active": self.is_active,
            "total_points": self.total_points,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


__all__ = [
    "MCQ",
    "TRUE_FALSE",
    "SHORT_ANSWER",
    "QUESTION_TYPES",
    "Question",
    "McqQuestion",
    "TrueFalseQuestion",
    "ShortAnswerQuestion",
    "QuizDefinition",
    "parse_question",
]
