"""Postgres-backed attempt ledger for the Learning context."""

from __future__ import annotations

from typing import Any, Iterable, List, Optional, Sequence, Tuple
import logging
import os

from coursegate.errors import AttemptLimitExceeded
from coursegate.learning.domain import FINISHED_STATUSES, IN_PROGRESS, GradedAnswer, QuizAttempt
from coursegate.teaching.quizzes import QuizDefinition

try:  # pragma: no cover -- optional dependency in some environments
    import psycopg
    from psycopg.types.json import Json

    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover
    psycopg = None  # type: ignore
    Json = None  # type: ignore
    HAVE_PSYCOPG = False
else:  # pragma: no cover
    try:
        from psycopg.errors import UniqueViolation  # type: ignore
    except Exception:
        UniqueViolation = None  # type: ignore

logger = logging.getLogger("coursegate.learning.repo_db")

_START_RETRIES = 1

_ATTEMPT_COLUMNS_SQL = """
    id::text,
    quiz_id::text,
    student_sub,
    course_id::text,
    to_char(started_at at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS.US"+00:00"'),
    status,
    answers,
    score,
    total_points,
    percentage,
    passed,
    case
      when completed_at is null then null
      else to_char(completed_at at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS.US"+00:00"')
    end,
    time_taken_seconds
"""


def _dsn() -> str:
    """Resolve the Postgres DSN (first non-empty wins).

    Order of precedence:
      1) COURSEGATE_DATABASE_URL (context-specific override)
      2) DATABASE_URL (app-wide default)
    """
    for candidate in (os.getenv("COURSEGATE_DATABASE_URL"), os.getenv("DATABASE_URL")):
        if candidate:
            return candidate
    raise RuntimeError("Database DSN unavailable for attempt ledger")


def _is_unique_violation(exc: Exception) -> bool:
    sqlstate = getattr(exc, "sqlstate", None) or getattr(exc, "pgcode", None)
    return bool(UniqueViolation and isinstance(exc, UniqueViolation)) or sqlstate == "23505"


def _answers_from_json(raw: Optional[Iterable[Any]]) -> Tuple[GradedAnswer, ...]:
    out = []
    for item in raw or []:
        out.append(
            GradedAnswer(
                question_index=int(item.get("question_index", 0)),
                answer=item.get("answer"),
                is_correct=bool(item.get("is_correct")),
                points_earned=int(item.get("points_earned") or 0),
            )
        )
    return tuple(out)


def _row_to_attempt(row: Sequence[Any]) -> QuizAttempt:
    return QuizAttempt(
        id=row[0],
        quiz_id=row[1],
        student_id=row[2],
        course_id=row[3],
        started_at=row[4],
        status=row[5],
        answers=_answers_from_json(row[6]),
        score=int(row[7] or 0),
        total_points=int(row[8] or 0),
        percentage=int(row[9] or 0),
        passed=bool(row[10]),
        completed_at=row[11],
        time_taken_seconds=int(row[12] or 0),
    )


class DBAttemptLedger:
    """Persistence adapter used by the attempt use cases.

    Concurrency:
        `start_attempt` serializes on a transaction-scoped advisory lock keyed
        on (student, quiz). The partial unique index on in-progress attempts
        backs it up; a violation is retried once, which then resumes the
        attempt the concurrent caller created. `finish_attempt` is a
        compare-and-swap on `status = 'in-progress'`.
    """

    def __init__(self, dsn: Optional[str] = None) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBAttemptLedger")
        self._dsn = dsn or _dsn()

    def start_attempt(
        self, *, quiz: QuizDefinition, student_id: str, started_at: str
    ) -> Tuple[QuizAttempt, bool]:
        for retry in range(_START_RETRIES + 1):
            try:
                return self._start_once(quiz=quiz, student_id=student_id, started_at=started_at)
            except Exception as exc:
                if _is_unique_violation(exc) and retry < _START_RETRIES:
                    logger.info("Start attempt conflict quiz=%s student=%s; retrying", quiz.id, student_id)
                    continue
                raise
        raise RuntimeError("unreachable")  # pragma: no cover

    def _start_once(self, *, quiz: QuizDefinition, student_id: str, started_at: str) -> Tuple[QuizAttempt, bool]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("select pg_advisory_xact_lock(hashtext(%s))", (f"{student_id}:{quiz.id}",))
                cur.execute(
                    f"""
                    select {_ATTEMPT_COLUMNS_SQL}
                      from public.quiz_attempts
                     where quiz_id::text = %s and student_sub = %s and status = %s
                     limit 1
                    """,
                    (quiz.id, student_id, IN_PROGRESS),
                )
                existing = cur.fetchone()
                if existing:
                    conn.commit()
                    return _row_to_attempt(existing), False
                if quiz.has_attempt_limit:
                    cur.execute(
                        """
                        select count(*) from public.quiz_attempts
                         where quiz_id::text = %s and student_sub = %s and status = any(%s)
                        """,
                        (quiz.id, student_id, sorted(FINISHED_STATUSES)),
                    )
                    finished = int(cur.fetchone()[0])
                    if finished >= quiz.attempts_allowed:
                        conn.rollback()
                        raise AttemptLimitExceeded()
                cur.execute(
                    f"""
                    insert into public.quiz_attempts
                        (quiz_id, course_id, student_sub, status, answers, total_points, started_at)
                    values (%s, %s, %s, %s, '[]'::jsonb, %s, %s::timestamptz)
                    returning {_ATTEMPT_COLUMNS_SQL}
                    """,
                    (quiz.id, quiz.course_id, student_id, IN_PROGRESS, quiz.total_points, started_at),
                )
                row = cur.fetchone()
                if row is None:
                    raise RuntimeError("quiz_attempts insert returned no row")
                conn.commit()
        return _row_to_attempt(row), True

    def get_attempt(self, attempt_id: str) -> Optional[QuizAttempt]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"select {_ATTEMPT_COLUMNS_SQL} from public.quiz_attempts where id::text = %s",
                    (attempt_id,),
                )
                row = cur.fetchone()
        return _row_to_attempt(row) if row else None

    def finish_attempt(self, attempt: QuizAttempt) -> bool:
        """Write the terminal state only if the row is still in progress."""
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    update public.quiz_attempts
                       set status = %s,
                           answers = %s,
                           score = %s,
                           total_points = %s,
                           percentage = %s,
                           passed = %s,
                           completed_at = %s::timestamptz,
                           time_taken_seconds = %s
                     where id::text = %s and status = %s
                    returning id::text
                    """,
                    (
                        attempt.status,
                        Json([a.to_dict() for a in attempt.answers]),
                        attempt.score,
                        attempt.total_points,
                        attempt.percentage,
                        attempt.passed,
                        attempt.completed_at,
                        attempt.time_taken_seconds,
                        attempt.id,
                        IN_PROGRESS,
                    ),
                )
                row = cur.fetchone()
                conn.commit()
        return row is not None

    def list_attempts(
        self,
        *,
        quiz_id: str,
        student_id: Optional[str] = None,
        statuses: Optional[Sequence[str]] = None,
    ) -> List[QuizAttempt]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select {_ATTEMPT_COLUMNS_SQL}
                      from public.quiz_attempts
                     where quiz_id::text = %s
                       and (%s::text is null or student_sub = %s)
                       and (%s::text[] is null or status = any(%s::text[]))
                     order by started_at, id
                    """,
                    (
                        quiz_id,
                        student_id,
                        student_id,
                        list(statuses) if statuses is not None else None,
                        list(statuses) if statuses is not None else None,
                    ),
                )
                rows = cur.fetchall() or []
        return [_row_to_attempt(r) for r in rows]

    def delete_attempts_for_quiz(self, quiz_id: str) -> int:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("delete from public.quiz_attempts where quiz_id::text = %s", (quiz_id,))
                deleted = cur.rowcount
                conn.commit()
        return int(deleted or 0)


__all__ = ["DBAttemptLedger", "HAVE_PSYCOPG"]
