"""
Quiz API routes: authoring, listing, attempts and analytics.

Why:
    Thin adapter over `QuizzesService` and the attempt use cases. The adapter
    enforces authentication (middleware), CSRF on writes and maps domain
    errors to HTTP; every authorization decision lives in the services.

Notes:
    - Request models accept snake_case and the camelCase names older clients
      send (`courseId`, `passingScore`, ...). Field values are validated in the
      service so malformed input yields 400 rather than FastAPI's 422.
    - Repositories come from `coursegate.web.wiring`; tests swap them there.
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field

from coursegate.errors import ValidationError
from coursegate.learning.grading import parse_submitted_answers
from coursegate.learning.usecases import (
    GetAttemptInput,
    GetAttemptUseCase,
    ListMyAttemptsInput,
    ListMyAttemptsUseCase,
    QuizAnalyticsInput,
    QuizAnalyticsUseCase,
    StartAttemptInput,
    StartAttemptUseCase,
    SubmitAttemptInput,
    SubmitAttemptUseCase,
)
from coursegate.teaching.services.quizzes import QuizzesService
from coursegate.web import wiring

from .security import DOMAIN_ERRORS, _csrf_guard, _error_response, _json_private, _require_principal

quizzes_router = APIRouter(tags=["Quizzes"])
logger = logging.getLogger("coursegate.web.quizzes")


def _quizzes_service() -> QuizzesService:
    return QuizzesService(wiring.get_teaching_repo(), wiring.get_attempt_ledger())


# --- Request models ------------------------------------------------------------


class QuizCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    course_id: Any = Field(default=None, alias="courseId")
    section_id: Any = Field(default=None, alias="sectionId")
    title: Any = None
    description: Any = None
    questions: Any = None
    passing_score: Any = Field(default=None, alias="passingScore")
    time_limit: Any = Field(default=None, alias="timeLimit")
    attempts_allowed: Any = Field(default=None, alias="attemptsAllowed")
    is_required: Any = Field(default=None, alias="isRequired")


class QuizUpdate(BaseModel):
    # Only fields present in the body are applied (see `model_fields_set`).
    model_config = ConfigDict(populate_by_name=True)

    title: Any = None
    description: Any = None
    questions: Any = None
    passing_score: Any = Field(default=None, alias="passingScore")
    time_limit: Any = Field(default=None, alias="timeLimit")
    attempts_allowed: Any = Field(default=None, alias="attemptsAllowed")
    is_required: Any = Field(default=None, alias="isRequired")
    is_active: Any = Field(default=None, alias="isActive")
    section_id: Any = Field(default=None, alias="sectionId")


class AttemptSubmit(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    attempt_id: Any = Field(default=None, alias="attemptId")
    answers: Any = None


# --- Authoring -----------------------------------------------------------------


@quizzes_router.post("/api/quizzes")
async def create_quiz(request: Request, payload: QuizCreate):
    """Create a quiz on a course.

    Behavior:
        - 201 with the full quiz (answers included) on success
        - 400 on malformed payload (e.g. `missing_correct_answer`)
        - 403 when the caller lacks `manage_content` on the course
        - 404 when the course does not exist
    """
    principal, error = _require_principal(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        quiz = _quizzes_service().create_quiz(
            principal,
            course_id=payload.course_id,
            title=payload.title,
            questions=payload.questions,
            section_id=payload.section_id,
            description=payload.description,
            passing_score=payload.passing_score,
            time_limit=payload.time_limit,
            attempts_allowed=payload.attempts_allowed,
            is_required=payload.is_required,
        )
    except DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return _json_private(quiz.to_dict(include_answers=True), status_code=201)


@quizzes_router.get("/api/quizzes/course/{course_id}")
async def list_course_quizzes(request: Request, course_id: str):
    """List a course's quizzes.

    Authors see every quiz with answers; enrolled students (and any course
    teacher) see active quizzes without answers plus their attempt summary.
    """
    principal, error = _require_principal(request)
    if error:
        return error
    try:
        items = _quizzes_service().list_course_quizzes(principal, course_id)
    except DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return _json_private(items)


@quizzes_router.get("/api/quizzes/attempts/{attempt_id}")
async def get_attempt(request: Request, attempt_id: str):
    """Return one attempt to its student or to course staff.

    The quiz is included with correct answers only once the attempt is
    finished; during an attempt answers stay hidden.
    """
    principal, error = _require_principal(request)
    if error:
        return error
    repo = wiring.get_teaching_repo()
    try:
        attempt = GetAttemptUseCase(repo, wiring.get_attempt_ledger()).execute(
            GetAttemptInput(attempt_id=attempt_id, principal=principal)
        )
    except DOMAIN_ERRORS as exc:
        return _error_response(exc)
    quiz = repo.get_quiz(attempt.quiz_id)
    return _json_private(
        {
            "attempt": attempt.to_dict(),
            "quiz": quiz.to_dict(include_answers=attempt.is_finished) if quiz else None,
        }
    )


@quizzes_router.get("/api/quizzes/{quiz_id}")
async def get_quiz(request: Request, quiz_id: str):
    principal, error = _require_principal(request)
    if error:
        return error
    try:
        data = _quizzes_service().get_quiz(principal, quiz_id)
    except DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return _json_private(data)


@quizzes_router.put("/api/quizzes/{quiz_id}")
async def update_quiz(request: Request, quiz_id: str, payload: QuizUpdate):
    """Partially update a quiz (author-only).

    Omitted or null fields keep their value; an explicit `section_id: null`
    detaches the quiz from its section.
    """
    principal, error = _require_principal(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    fields = {name: getattr(payload, name) for name in payload.model_fields_set}
    try:
        quiz = _quizzes_service().update_quiz(principal, quiz_id, **fields)
    except DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return _json_private(quiz.to_dict(include_answers=True))


@quizzes_router.delete("/api/quizzes/{quiz_id}")
async def delete_quiz(request: Request, quiz_id: str):
    """Delete a quiz and all its attempts (author-only)."""
    principal, error = _require_principal(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        _quizzes_service().delete_quiz(principal, quiz_id)
    except DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return _json_private({"deleted": True, "id": quiz_id})


# --- Attempts ------------------------------------------------------------------


@quizzes_router.post("/api/quizzes/{quiz_id}/start")
async def start_attempt(request: Request, quiz_id: str):
    """Start or resume the caller's attempt.

    Behavior:
        - 200 with `{attempt, quiz, resumed}`; the quiz never carries answers
        - 400 `attempt_limit_exceeded` or `quiz_inactive`
        - 403 when the caller is not enrolled
        - 404 for unknown quizzes
    """
    principal, error = _require_principal(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        result = StartAttemptUseCase(wiring.get_teaching_repo(), wiring.get_attempt_ledger()).execute(
            StartAttemptInput(quiz_id=quiz_id, principal=principal)
        )
    except DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return _json_private(
        {
            "attempt": result.attempt.to_dict(),
            "quiz": result.quiz.to_dict(include_answers=False),
            "resumed": not result.created,
        }
    )


@quizzes_router.post("/api/quizzes/{quiz_id}/submit")
async def submit_attempt(request: Request, quiz_id: str, payload: AttemptSubmit):
    """Grade and close an attempt.

    Behavior:
        - 200 with `{attempt, quiz, result}`; the quiz includes correct answers
          for review
        - 400 `already_submitted`, `time_limit_exceeded` or malformed body
        - 403 when the caller does not own the attempt
        - 404 for unknown attempts
    """
    principal, error = _require_principal(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        if not isinstance(payload.attempt_id, str) or not payload.attempt_id.strip():
            raise ValidationError("invalid_attempt_id")
        answers = parse_submitted_answers(payload.answers)
        outcome = SubmitAttemptUseCase(wiring.get_teaching_repo(), wiring.get_attempt_ledger()).execute(
            SubmitAttemptInput(
                attempt_id=payload.attempt_id.strip(),
                principal=principal,
                answers=answers,
                quiz_id=quiz_id,
            )
        )
    except DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return _json_private(
        {
            "attempt": outcome.attempt.to_dict(),
            "quiz": outcome.quiz.to_dict(include_answers=True),
            "result": outcome.result.to_dict(passing_score=outcome.quiz.passing_score),
        }
    )


@quizzes_router.get("/api/quizzes/{quiz_id}/my-attempts")
async def list_my_attempts(request: Request, quiz_id: str):
    principal, error = _require_principal(request)
    if error:
        return error
    try:
        attempts = ListMyAttemptsUseCase(wiring.get_attempt_ledger()).execute(
            ListMyAttemptsInput(quiz_id=quiz_id, principal=principal)
        )
    except DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return _json_private([a.to_dict() for a in attempts])


@quizzes_router.get("/api/quizzes/{quiz_id}/analytics")
async def quiz_analytics(request: Request, quiz_id: str):
    """Aggregated results over completed attempts (requires `manage_content`)."""
    principal, error = _require_principal(request)
    if error:
        return error
    try:
        data = QuizAnalyticsUseCase(wiring.get_teaching_repo(), wiring.get_attempt_ledger()).execute(
            QuizAnalyticsInput(quiz_id=quiz_id, principal=principal)
        )
    except DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return _json_private(data)
