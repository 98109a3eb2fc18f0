"""Quiz attempt engine: start/resume, limits, submit, timeouts and reads.

Uses the in-memory repositories with an injectable clock so time-limit
scenarios are deterministic.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from coursegate.errors import (
    AttemptLimitExceeded,
    Forbidden,
    InvalidState,
    NotFound,
    TimeLimitExceeded,
)
from coursegate.identity_access.domain import Principal
from coursegate.learning import telemetry
from coursegate.learning.domain import COMPLETED, IN_PROGRESS, TIMED_OUT, SubmittedAnswer
from coursegate.learning.repo_memory import InMemoryAttemptLedger
from coursegate.learning.usecases import (
    GetAttemptInput,
    GetAttemptUseCase,
    ListMyAttemptsInput,
    ListMyAttemptsUseCase,
    StartAttemptInput,
    StartAttemptUseCase,
    SubmitAttemptInput,
    SubmitAttemptUseCase,
)
from coursegate.learning.usecases.attempts import parse_iso
from coursegate.teaching.permissions import CapabilityGrant
from coursegate.teaching.quizzes import McqQuestion, QuizDefinition
from coursegate.teaching.repo_memory import InMemoryTeachingRepo

STUDENT = Principal("student-1", "student")
OTHER_STUDENT = Principal("student-2", "student")
T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


def _mcq(answer_index: int) -> McqQuestion:
    return McqQuestion(text="Q", points=1, options=("a", "b", "c"), answer_index=answer_index)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(T0)


@pytest.fixture
def repo() -> InMemoryTeachingRepo:
    r = InMemoryTeachingRepo()
    r.add_course("course-1", "owner-1")
    r.add_member("course-1", STUDENT.id)
    r.add_member("course-1", OTHER_STUDENT.id)
    return r


@pytest.fixture
def ledger() -> InMemoryAttemptLedger:
    return InMemoryAttemptLedger()


def _add_quiz(repo: InMemoryTeachingRepo, **overrides) -> QuizDefinition:
    fields = dict(
        id="",
        course_id="course-1",
        title="Fractions",
        questions=(_mcq(1), _mcq(2)),
        passing_score=50,
    )
    fields.update(overrides)
    return repo.create_quiz(QuizDefinition(**fields))


def _start(repo, ledger, clock, quiz_id, principal=STUDENT):
    return StartAttemptUseCase(repo, ledger, clock=clock).execute(StartAttemptInput(quiz_id=quiz_id, principal=principal))


def _submit(repo, ledger, clock, attempt_id, answers, principal=STUDENT, quiz_id=None):
    return SubmitAttemptUseCase(repo, ledger, clock=clock).execute(
        SubmitAttemptInput(attempt_id=attempt_id, principal=principal, answers=answers, quiz_id=quiz_id)
    )


def test_start_creates_in_progress_attempt(repo, ledger, clock):
    quiz = _add_quiz(repo)
    result = _start(repo, ledger, clock, quiz.id)
    assert result.created is True
    assert result.attempt.status == IN_PROGRESS
    assert result.attempt.total_points == 2
    assert result.attempt.started_at == T0.isoformat()
    assert telemetry.counter_value(telemetry.ATTEMPTS_STARTED, outcome="created") == 1


def test_start_resumes_existing_in_progress_attempt(repo, ledger, clock):
    quiz = _add_quiz(repo)
    first = _start(repo, ledger, clock, quiz.id)
    clock.advance(minutes=3)
    second = _start(repo, ledger, clock, quiz.id)
    assert second.created is False
    assert second.attempt.id == first.attempt.id
    assert len(ledger.list_attempts(quiz_id=quiz.id, student_id=STUDENT.id)) == 1


def test_start_requires_enrollment(repo, ledger, clock):
    quiz = _add_quiz(repo)
    with pytest.raises(Forbidden) as exc:
        _start(repo, ledger, clock, quiz.id, principal=Principal("outsider", "student"))
    assert exc.value.code == "not_enrolled"


def test_start_rejects_inactive_and_unknown_quizzes(repo, ledger, clock):
    quiz = _add_quiz(repo, is_active=False)
    with pytest.raises(InvalidState) as exc:
        _start(repo, ledger, clock, quiz.id)
    assert exc.value.code == "quiz_inactive"
    with pytest.raises(NotFound):
        _start(repo, ledger, clock, "missing")


def test_two_mcq_scenario_completes_with_full_score(repo, ledger, clock):
    quiz = _add_quiz(repo)
    attempt = _start(repo, ledger, clock, quiz.id).attempt
    clock.advance(seconds=95)

    outcome = _submit(repo, ledger, clock, attempt.id, [SubmittedAnswer(0, 1), SubmittedAnswer(1, 2)])

    stored = ledger.get_attempt(attempt.id)
    assert stored.status == COMPLETED
    assert (stored.score, stored.total_points, stored.percentage, stored.passed) == (2, 2, 100, True)
    assert stored.time_taken_seconds == 95
    assert stored.completed_at == (T0 + timedelta(seconds=95)).isoformat()
    assert outcome.result.percentage == 100


def test_submit_at_minute_twelve_times_out_without_grading(repo, ledger, clock):
    quiz = _add_quiz(repo, time_limit_minutes=10)
    attempt = _start(repo, ledger, clock, quiz.id).attempt
    clock.advance(minutes=12)

    with pytest.raises(TimeLimitExceeded):
        _submit(repo, ledger, clock, attempt.id, [SubmittedAnswer(0, 1), SubmittedAnswer(1, 2)])

    stored = ledger.get_attempt(attempt.id)
    assert stored.status == TIMED_OUT
    assert stored.score == 0
    assert stored.answers == ()
    assert stored.time_taken_seconds == 720
    assert telemetry.counter_value(telemetry.ATTEMPTS_FINISHED, status=TIMED_OUT) == 1


def test_submit_within_grace_minute_is_graded(repo, ledger, clock):
    quiz = _add_quiz(repo, time_limit_minutes=10)
    attempt = _start(repo, ledger, clock, quiz.id).attempt
    clock.advance(minutes=10, seconds=59)
    outcome = _submit(repo, ledger, clock, attempt.id, [SubmittedAnswer(0, 1)])
    assert outcome.attempt.status == COMPLETED
    assert outcome.result.percentage == 50


def test_unlimited_time_never_times_out(repo, ledger, clock):
    quiz = _add_quiz(repo, time_limit_minutes=0)
    attempt = _start(repo, ledger, clock, quiz.id).attempt
    clock.advance(days=2)
    assert _submit(repo, ledger, clock, attempt.id, []).attempt.status == COMPLETED


def test_attempts_allowed_one_blocks_second_start(repo, ledger, clock):
    quiz = _add_quiz(repo, attempts_allowed=1)
    attempt = _start(repo, ledger, clock, quiz.id).attempt
    _submit(repo, ledger, clock, attempt.id, [])

    with pytest.raises(AttemptLimitExceeded):
        _start(repo, ledger, clock, quiz.id)
    assert telemetry.counter_value(telemetry.ATTEMPTS_REJECTED, reason="attempt_limit") == 1


def test_timed_out_attempt_counts_toward_limit(repo, ledger, clock):
    quiz = _add_quiz(repo, attempts_allowed=1, time_limit_minutes=5)
    attempt = _start(repo, ledger, clock, quiz.id).attempt
    clock.advance(minutes=30)
    with pytest.raises(TimeLimitExceeded):
        _submit(repo, ledger, clock, attempt.id, [])
    with pytest.raises(AttemptLimitExceeded):
        _start(repo, ledger, clock, quiz.id)


def test_attempts_allowed_zero_allows_no_attempt(repo, ledger, clock):
    quiz = _add_quiz(repo, attempts_allowed=0)
    with pytest.raises(AttemptLimitExceeded):
        _start(repo, ledger, clock, quiz.id)


def test_negative_attempts_allowed_is_unlimited(repo, ledger, clock):
    quiz = _add_quiz(repo, attempts_allowed=-1)
    for _ in range(5):
        attempt = _start(repo, ledger, clock, quiz.id).attempt
        _submit(repo, ledger, clock, attempt.id, [])
    assert len(ledger.list_attempts(quiz_id=quiz.id, statuses=[COMPLETED])) == 5


def test_limit_is_per_student(repo, ledger, clock):
    quiz = _add_quiz(repo, attempts_allowed=1)
    attempt = _start(repo, ledger, clock, quiz.id).attempt
    _submit(repo, ledger, clock, attempt.id, [])
    assert _start(repo, ledger, clock, quiz.id, principal=OTHER_STUDENT).created is True


def test_submit_twice_is_already_submitted(repo, ledger, clock):
    quiz = _add_quiz(repo)
    attempt = _start(repo, ledger, clock, quiz.id).attempt
    _submit(repo, ledger, clock, attempt.id, [SubmittedAnswer(0, 1)])
    with pytest.raises(InvalidState) as exc:
        _submit(repo, ledger, clock, attempt.id, [SubmittedAnswer(0, 1), SubmittedAnswer(1, 2)])
    assert exc.value.code == "already_submitted"
    assert ledger.get_attempt(attempt.id).score == 1


def test_submit_by_other_student_is_forbidden(repo, ledger, clock):
    quiz = _add_quiz(repo)
    attempt = _start(repo, ledger, clock, quiz.id).attempt
    with pytest.raises(Forbidden):
        _submit(repo, ledger, clock, attempt.id, [], principal=OTHER_STUDENT)
    assert ledger.get_attempt(attempt.id).status == IN_PROGRESS


def test_submit_unknown_attempt_or_mismatched_quiz(repo, ledger, clock):
    quiz = _add_quiz(repo)
    other = _add_quiz(repo, title="Other")
    attempt = _start(repo, ledger, clock, quiz.id).attempt
    with pytest.raises(NotFound):
        _submit(repo, ledger, clock, "nope", [])
    with pytest.raises(NotFound):
        _submit(repo, ledger, clock, attempt.id, [], quiz_id=other.id)


def test_grading_uses_quiz_definition_at_submit_time(repo, ledger, clock):
    quiz = _add_quiz(repo)
    attempt = _start(repo, ledger, clock, quiz.id).attempt
    assert attempt.total_points == 2
    repo.update_quiz(quiz.id, questions=(_mcq(1), _mcq(2), _mcq(0)))
    outcome = _submit(repo, ledger, clock, attempt.id, [SubmittedAnswer(0, 1), SubmittedAnswer(1, 2)])
    assert outcome.attempt.total_points == 3
    assert outcome.attempt.percentage == 67


def test_get_attempt_visible_to_owner_student_and_staff(repo, ledger, clock):
    quiz = _add_quiz(repo)
    attempt = _start(repo, ledger, clock, quiz.id).attempt
    use_case = GetAttemptUseCase(repo, ledger)
    assert use_case.execute(GetAttemptInput(attempt.id, STUDENT)).id == attempt.id
    assert use_case.execute(GetAttemptInput(attempt.id, Principal("owner-1", "instructor"))).id == attempt.id
    repo.insert_grant(CapabilityGrant(course_id="course-1", teacher_id="ta-1", granted_by="owner-1"))
    assert use_case.execute(GetAttemptInput(attempt.id, Principal("ta-1", "instructor"))).id == attempt.id
    with pytest.raises(Forbidden):
        use_case.execute(GetAttemptInput(attempt.id, OTHER_STUDENT))
    with pytest.raises(NotFound):
        use_case.execute(GetAttemptInput("missing", STUDENT))


def test_list_my_attempts_newest_first_and_scoped(repo, ledger, clock):
    quiz = _add_quiz(repo)
    first = _start(repo, ledger, clock, quiz.id).attempt
    _submit(repo, ledger, clock, first.id, [])
    clock.advance(hours=1)
    second = _start(repo, ledger, clock, quiz.id).attempt
    _start(repo, ledger, clock, quiz.id, principal=OTHER_STUDENT)

    mine = ListMyAttemptsUseCase(ledger).execute(ListMyAttemptsInput(quiz_id=quiz.id, principal=STUDENT))
    assert [a.id for a in mine] == [second.id, first.id]


def test_parse_iso_keeps_fractional_seconds_from_database_rows():
    assert parse_iso("2026-03-01T09:00:00.250000+00:00") == T0 + timedelta(milliseconds=250)
    assert parse_iso("2026-03-01T09:00:00") == T0
