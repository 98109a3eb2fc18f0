"""
Quiz attempt engine: start, submit and read attempts.

State machine:
    in-progress -> completed   (submit within the grace-extended time limit)
    in-progress -> timed-out   (submit after it; stored ungraded)

Concurrency lives in the ledger: `start_attempt` is one atomic
check-and-create and `finish_attempt` is a compare-and-swap on the
`in-progress` status. Timeouts are detected lazily on submit; there is no
background sweeper.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
import logging
import math
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from coursegate.errors import AttemptLimitExceeded, Forbidden, InvalidState, NotFound, TimeLimitExceeded
from coursegate.identity_access.domain import Principal
from coursegate.learning import telemetry
from coursegate.learning.domain import (
    COMPLETED,
    GRACE_PERIOD_MINUTES,
    TIMED_OUT,
    GradeResult,
    QuizAttempt,
    SubmittedAnswer,
)
from coursegate.learning.grading import grade
from coursegate.teaching.permissions import CapabilityGrant, Course, PermissionResolver
from coursegate.teaching.quizzes import QuizDefinition

logger = logging.getLogger("coursegate.learning.attempts")


class AttemptLedgerProtocol(Protocol):
    def start_attempt(
        self, *, quiz: QuizDefinition, student_id: str, started_at: str
    ) -> Tuple[QuizAttempt, bool]:
        ...

    def get_attempt(self, attempt_id: str) -> Optional[QuizAttempt]:
        ...

    def finish_attempt(self, attempt: QuizAttempt) -> bool:
        ...

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


class QuizCatalogProtocol(Protocol):
    """Read-side collaborators: quizzes, courses, enrollment and grants."""

    def get_quiz(self, quiz_id: str) -> Optional[QuizDefinition]:
        ...

    def get_course(self, course_id: str) -> Optional[Course]:
        ...

    def is_member(self, course_id: str, student_id: str) -> bool:
        ...

    def get_grant(self, course_id: str, teacher_id: str) -> Optional[CapabilityGrant]:
        ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _round_seconds(seconds: float) -> int:
    return max(0, int(math.floor(seconds + 0.5)))


@dataclass
class StartAttemptInput:
    quiz_id: str
    principal: Principal


@dataclass
class StartAttemptResult:
    attempt: QuizAttempt
    quiz: QuizDefinition
    created: bool


class StartAttemptUseCase:
    def __init__(
        self,
        catalog: QuizCatalogProtocol,
        ledger: AttemptLedgerProtocol,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._catalog = catalog
        self._ledger = ledger
        self._clock = clock

    def execute(self, req: StartAttemptInput) -> StartAttemptResult:
        """Start (or resume) the caller's attempt on a quiz.

        Behavior:
            - 404 semantics (`NotFound`) when the quiz does not exist.
            - `InvalidState("quiz_inactive")` for deactivated quizzes.
            - `Forbidden("not_enrolled")` unless the caller is a course member.
            - Returns the existing in-progress attempt when there is one
              (`created=False`); otherwise the ledger enforces the attempt
              ceiling and creates a new attempt atomically.

        Permissions:
            Caller must be enrolled in the quiz's course.
        """
        quiz = self._catalog.get_quiz(req.quiz_id)
        if quiz is None:
            raise NotFound("quiz_not_found")
        if not quiz.is_active:
            raise InvalidState("quiz_inactive")
        student_id = req.principal.id
        if not self._catalog.is_member(quiz.course_id, student_id):
            raise Forbidden("not_enrolled")
        try:
            attempt, created = self._ledger.start_attempt(
                quiz=quiz,
                student_id=student_id,
                started_at=to_iso(self._clock()),
            )
        except AttemptLimitExceeded:
            telemetry.increment_counter(telemetry.ATTEMPTS_REJECTED, reason="attempt_limit")
            logger.info("Attempt limit reached quiz=%s student=%s", quiz.id, student_id)
            raise
        if created:
            telemetry.increment_counter(telemetry.ATTEMPTS_STARTED, outcome="created")
            logger.info("Attempt started id=%s quiz=%s student=%s", attempt.id, quiz.id, student_id)
        else:
            telemetry.increment_counter(telemetry.ATTEMPTS_STARTED, outcome="resumed")
            logger.debug("Attempt resumed id=%s quiz=%s student=%s", attempt.id, quiz.id, student_id)
        return StartAttemptResult(attempt=attempt, quiz=quiz, created=created)


@dataclass
class SubmitAttemptInput:
    attempt_id: str
    principal: Principal
    answers: List[SubmittedAnswer]
    quiz_id: Optional[str] = None


@dataclass
class SubmitAttemptResult:
    attempt: QuizAttempt
    quiz: QuizDefinition
    result: GradeResult


class SubmitAttemptUseCase:
    def __init__(
        self,
        catalog: QuizCatalogProtocol,
        ledger: AttemptLedgerProtocol,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._catalog = catalog
        self._ledger = ledger
        self._clock = clock

    def execute(self, req: SubmitAttemptInput) -> SubmitAttemptResult:
        """Grade and close an in-progress attempt exactly once.

        Behavior:
            - `NotFound` for unknown attempts (or a quiz id that does not
              match the attempt), `Forbidden` when the caller does not own
              the attempt, `InvalidState("already_submitted")` otherwise.
            - Late submissions (time limit + one minute grace) are stored as
              `timed-out` without grading and raise `TimeLimitExceeded`.
            - On time: grade against the current quiz definition and store
              the attempt as `completed`.
            - The final write is a compare-and-swap; losing a race to a
              concurrent submit surfaces as `already_submitted`.
        """
        attempt = self._ledger.get_attempt(req.attempt_id)
        if attempt is None or (req.quiz_id is not None and attempt.quiz_id != req.quiz_id):
            raise NotFound("attempt_not_found")
        if attempt.student_id != req.principal.id:
            raise Forbidden("not_attempt_owner")
        if not attempt.is_in_progress:
            raise InvalidState("already_submitted")
        quiz = self._catalog.get_quiz(attempt.quiz_id)
        if quiz is None:
            raise NotFound("quiz_not_found")

        now = self._clock()
        elapsed_seconds = (now - parse_iso(attempt.started_at)).total_seconds()
        elapsed_minutes = elapsed_seconds / 60.0
        completed_at = to_iso(now)
        time_taken = _round_seconds(elapsed_seconds)

        if quiz.time_limit_minutes > 0 and elapsed_minutes > quiz.time_limit_minutes + GRACE_PERIOD_MINUTES:
            timed_out = replace(
                attempt,
                status=TIMED_OUT,
                completed_at=completed_at,
                time_taken_seconds=time_taken,
            )
            if not self._ledger.finish_attempt(timed_out):
                raise InvalidState("already_submitted")
            telemetry.increment_counter(telemetry.ATTEMPTS_FINISHED, status=TIMED_OUT)
            logger.info(
                "Attempt timed out id=%s quiz=%s elapsed_min=%.1f limit_min=%s",
                attempt.id,
                quiz.id,
                elapsed_minutes,
                quiz.time_limit_minutes,
            )
            raise TimeLimitExceeded()

        result = grade(quiz, req.answers)
        completed = replace(
            attempt,
            status=COMPLETED,
            answers=result.graded_answers,
            score=result.score,
            total_points=result.total_points,
            percentage=result.percentage,
            passed=result.passed,
            completed_at=completed_at,
            time_taken_seconds=time_taken,
        )
        if not self._ledger.finish_attempt(completed):
            raise InvalidState("already_submitted")
        telemetry.increment_counter(telemetry.ATTEMPTS_FINISHED, status=COMPLETED)
        logger.info(
            "Attempt completed id=%s quiz=%s percentage=%s passed=%s",
            attempt.id,
            quiz.id,
            result.percentage,
            result.passed,
        )
        return SubmitAttemptResult(attempt=completed, quiz=quiz, result=result)


@dataclass
class GetAttemptInput:
    attempt_id: str
    principal: Principal


class GetAttemptUseCase:
    def __init__(self, catalog: QuizCatalogProtocol, ledger: AttemptLedgerProtocol) -> None:
        self._catalog = catalog
        self._ledger = ledger
        self._resolver = PermissionResolver(catalog)

    def execute(self, req: GetAttemptInput) -> QuizAttempt:
        """Return one attempt to its student or to any course staff member."""
        attempt = self._ledger.get_attempt(req.attempt_id)
        if attempt is None:
            raise NotFound("attempt_not_found")
        if attempt.student_id == req.principal.id:
            return attempt
        course = self._catalog.get_course(attempt.course_id)
        if course is None or not self._resolver.is_course_staff(req.principal, course):
            raise Forbidden("not_authorized_for_attempt")
        return attempt


@dataclass
class ListMyAttemptsInput:
    quiz_id: str
    principal: Principal


class ListMyAttemptsUseCase:
    def __init__(self, ledger: AttemptLedgerProtocol) -> None:
        self._ledger = ledger

    def execute(self, req: ListMyAttemptsInput) -> List[QuizAttempt]:
        attempts = self._ledger.list_attempts(quiz_id=req.quiz_id, student_id=req.principal.id)
        return sorted(attempts, key=lambda a: parse_iso(a.started_at), reverse=True)


__all__ = [
    "AttemptLedgerProtocol",
    "QuizCatalogProtocol",
    "StartAttemptInput",
    "StartAttemptResult",
    "StartAttemptUseCase",
    "SubmitAttemptInput",
    "SubmitAttemptResult",
    "SubmitAttemptUseCase",
    "GetAttemptInput",
    "GetAttemptUseCase",
    "ListMyAttemptsInput",
    "ListMyAttemptsUseCase",
    "parse_iso",
    "to_iso",
    "utcnow",
]
