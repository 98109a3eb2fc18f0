"""Teaching quizzes service layer.

Why:
    Encapsulates quiz authoring (create/update/delete) and quiz reads so that
    web adapters remain framework-free and validation can be unit-tested
    independently of FastAPI. Every authoring decision goes through the
    permission resolver with `manage_content`.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from coursegate.errors import Forbidden, NotFound, ValidationError
from coursegate.identity_access.domain import Principal
from coursegate.learning.domain import COMPLETED, QuizAttempt
from coursegate.teaching.permissions import MANAGE_CONTENT, CapabilityGrant, Course, PermissionResolver
from coursegate.teaching.quizzes import Question, QuizDefinition, parse_question

logger = logging.getLogger("coursegate.teaching.quizzes")


class QuizzesRepoProtocol(Protocol):
    def get_course(self, course_id: str) -> Optional[Course]:
        ...

    def is_member(self, course_id: str, student_id: str) -> bool:
        ...

    def get_grant(self, course_id: str, teacher_id: str) -> Optional[CapabilityGrant]:
        ...

    def create_quiz(self, quiz: QuizDefinition) -> QuizDefinition:
        ...

    def get_quiz(self, quiz_id: str) -> Optional[QuizDefinition]:
        ...

    def list_quizzes_for_course(self, course_id: str, *, active_only: bool = False) -> List[QuizDefinition]:
        ...

    def update_quiz(self, quiz_id: str, **fields: Any) -> Optional[QuizDefinition]:
        ...

    def delete_quiz(self, quiz_id: str) -> bool:
        ...


class AttemptsReaderProtocol(Protocol):
    def list_attempts(
        self,
        *,
        quiz_id: str,
        student_id: Optional[str] = None,
        statuses: Optional[Sequence[str]] = None,
    ) -> List[QuizAttempt]:
        ...

    def delete_attempts_for_quiz(self, quiz_id: str) -> int:
        ...


_UNSET = object()


def _normalize_title(value: object) -> str:
    if value is None or not isinstance(value, str):
        raise ValidationError("invalid_title")
    trimmed = value.strip()
    if not trimmed or len(trimmed) > 200:
        raise ValidationError("invalid_title")
    return trimmed


def _normalize_description(value: object) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("invalid_description")
    return value.strip()


def _normalize_questions(value: object) -> Tuple[Question, ...]:
    if value is None:
        return ()
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ValidationError("invalid_questions")
    return tuple(parse_question(item) for item in value)


def _normalize_int(value: object, code: str, *, minimum: Optional[int] = None, maximum: Optional[int] = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(code)
    if minimum is not None and value < minimum:
        raise ValidationError(code)
    if maximum is not None and value > maximum:
        raise ValidationError(code)
    return value


def _normalize_passing_score(value: object) -> int:
    if value is None:
        return 70
    return _normalize_int(value, "invalid_passing_score", minimum=0, maximum=100)


def _normalize_time_limit(value: object) -> int:
    if value is None:
        return 0
    return _normalize_int(value, "invalid_time_limit", minimum=0)


def _normalize_attempts_allowed(value: object) -> int:
    if value is None:
        return -1
    attempts = _normalize_int(value, "invalid_attempts_allowed")
    # Any negative value means unlimited; store the canonical -1.
    return -1 if attempts < 0 else attempts


def _normalize_flag(value: object, code: str, default: bool) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(code)
    return value


def _normalize_section_id(value: object) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("invalid_section_id")
    trimmed = value.strip()
    return trimmed or None


def _attempt_summary(attempts: List[QuizAttempt]) -> dict:
    completed = [a for a in attempts if a.status == COMPLETED]
    return {
        "user_attempts": [
            {"id": a.id, "status": a.status, "percentage": a.percentage, "passed": a.passed} for a in attempts
        ],
        "attempt_count": len(completed),
        "best_score": max([0] + [a.percentage for a in completed]),
        "has_passed": any(a.passed for a in attempts),
    }


@dataclass
class QuizzesService:
    """Use cases for quiz authoring and quiz reads (framework-independent)."""

    repo: QuizzesRepoProtocol
    attempts: AttemptsReaderProtocol

    def __post_init__(self) -> None:
        self.resolver = PermissionResolver(self.repo)

    def _course(self, course_id: str) -> Course:
        course = self.repo.get_course(course_id)
        if course is None:
            raise NotFound("course_not_found")
        return course

    def _quiz(self, quiz_id: str) -> QuizDefinition:
        quiz = self.repo.get_quiz(quiz_id)
        if quiz is None:
            raise NotFound("quiz_not_found")
        return quiz

    def _is_author(self, principal: Principal, course: Course) -> bool:
        return self.resolver.resolve(principal, course, MANAGE_CONTENT)

    def _require_author(self, principal: Principal, course: Course) -> None:
        if not self._is_author(principal, course):
            raise Forbidden("not_authorized_to_manage_quizzes")

    def create_quiz(
        self,
        principal: Principal,
        *,
        course_id: object,
        title: object,
        questions: object = None,
        section_id: object = None,
        description: object = None,
        passing_score: object = None,
        time_limit: object = None,
        attempts_allowed: object = None,
        is_required: object = None,
    ) -> QuizDefinition:
        if not isinstance(course_id, str) or not course_id.strip():
            raise ValidationError("invalid_course_id")
        course = self._course(course_id.strip())
        self._require_author(principal, course)
        quiz = QuizDefinition(
            id="",
            course_id=course.id,
            title=_normalize_title(title),
            questions=_normalize_questions(questions),
            section_id=_normalize_section_id(section_id),
            description=_normalize_description(description),
            passing_score=_normalize_passing_score(passing_score),
            time_limit_minutes=_normalize_time_limit(time_limit),
            attempts_allowed=_normalize_attempts_allowed(attempts_allowed),
            is_required=_normalize_flag(is_required, "invalid_is_required", False),
            is_active=True,
            created_by=principal.id,
        )
        created = self.repo.create_quiz(quiz)
        logger.info("Quiz created id=%s course=%s by=%s", created.id, course.id, principal.id)
        return created

    def update_quiz(
        self,
        principal: Principal,
        quiz_id: str,
        *,
        title: object = _UNSET,
        description: object = _UNSET,
        questions: object = _UNSET,
        passing_score: object = _UNSET,
        time_limit: object = _UNSET,
        attempts_allowed: object = _UNSET,
        is_required: object = _UNSET,
        is_active: object = _UNSET,
        section_id: object = _UNSET,
    ) -> QuizDefinition:
        """Apply a partial update; unset (or null) fields keep their value.

        `section_id` is the exception: an explicit null detaches the quiz
        from its section.
        """
        quiz = self._quiz(quiz_id)
        course = self._course(quiz.course_id)
        self._require_author(principal, course)
        fields: dict[str, Any] = {}
        if title is not _UNSET and title is not None:
            fields["title"] = _normalize_title(title)
        if description is not _UNSET and description is not None:
            fields["description"] = _normalize_description(description)
        if questions is not _UNSET and questions is not None:
            fields["questions"] = _normalize_questions(questions)
        if passing_score is not _UNSET and passing_score is not None:
            fields["passing_score"] = _normalize_passing_score(passing_score)
        if time_limit is not _UNSET and time_limit is not None:
            fields["time_limit_minutes"] = _normalize_time_limit(time_limit)
        if attempts_allowed is not _UNSET and attempts_allowed is not None:
            fields["attempts_allowed"] = _normalize_attempts_allowed(attempts_allowed)
        if is_required is not _UNSET and is_required is not None:
            fields["is_required"] = _normalize_flag(is_required, "invalid_is_required", quiz.is_required)
        if is_active is not _UNSET and is_active is not None:
            fields["is_active"] = _normalize_flag(is_active, "invalid_is_active", quiz.is_active)
        if section_id is not _UNSET:
            fields["section_id"] = _normalize_section_id(section_id)
        updated = self.repo.update_quiz(quiz.id, **fields)
        if updated is None:
            raise NotFound("quiz_not_found")
        logger.info("Quiz updated id=%s fields=%s by=%s", quiz.id, ",".join(sorted(fields)) or "-", principal.id)
        return updated

    def delete_quiz(self, principal: Principal, quiz_id: str) -> None:
        quiz = self._quiz(quiz_id)
        course = self._course(quiz.course_id)
        self._require_author(principal, course)
        removed = self.attempts.delete_attempts_for_quiz(quiz.id)
        if not self.repo.delete_quiz(quiz.id):
            raise NotFound("quiz_not_found")
        logger.info("Quiz deleted id=%s attempts_removed=%s by=%s", quiz.id, removed, principal.id)

    def get_quiz(self, principal: Principal, quiz_id: str) -> dict:
        """Return a quiz; answers are included for authors only.

        Course staff without authoring rights see every quiz, inactive ones
        included. Enrolled students never see inactive quizzes, which surface
        as not found.
        """
        quiz = self._quiz(quiz_id)
        course = self._course(quiz.course_id)
        if self._is_author(principal, course):
            return quiz.to_dict(include_answers=True)
        if self.resolver.is_course_staff(principal, course):
            return quiz.to_dict(include_answers=False)
        if not self.repo.is_member(course.id, principal.id):
            raise Forbidden("not_enrolled")
        if not quiz.is_active:
            raise NotFound("quiz_not_found")
        return quiz.to_dict(include_answers=False)

    def list_course_quizzes(self, principal: Principal, course_id: str) -> List[dict]:
        course = self._course(course_id)
        author = self._is_author(principal, course)
        staff = author or self.resolver.is_course_staff(principal, course)
        if not staff and not self.repo.is_member(course.id, principal.id):
            raise Forbidden("not_enrolled")
        quizzes = self.repo.list_quizzes_for_course(course.id, active_only=not staff)
        items: List[dict] = []
        for quiz in quizzes:
            data = quiz.to_dict(include_answers=author)
            mine = self.attempts.list_attempts(quiz_id=quiz.id, student_id=principal.id)
            data.update(_attempt_summary(mine))
            items.append(data)
        return items


__all__ = ["QuizzesService", "QuizzesRepoProtocol", "AttemptsReaderProtocol", "_UNSET"]
