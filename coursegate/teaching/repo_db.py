"""
Postgres-backed repository for Teaching (courses, grants, quizzes).

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- Courses and memberships are owned by other services; this repo only reads
  them. Grants and quizzes are written here.
- Timestamps are rendered via `to_char` so every driver yields the same ISO
  string, microseconds included.
"""
from __future__ import annotations

from typing import Any, List, Optional, Tuple
import os

from coursegate.teaching.permissions import CAPABILITIES, CapabilityGrant, Course
from coursegate.teaching.quizzes import QuizDefinition, parse_question

try:
    import psycopg
    from psycopg import sql
    from psycopg.types.json import Json
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    sql = None  # type: ignore
    Json = None  # type: ignore
    HAVE_PSYCOPG = False
else:  # pragma: no cover - import errors handled above
    try:
        from psycopg.errors import UniqueViolation  # type: ignore
    except Exception:  # pragma: no cover - fallback when errors module unavailable
        UniqueViolation = None  # type: ignore


def _dsn() -> str:
    """Resolve the DSN for DB access; context override first, then the app default."""
    candidates = [
        os.getenv("COURSEGATE_DATABASE_URL"),
        os.getenv("DATABASE_URL"),
    ]
    for dsn in candidates:
        if dsn:
            return dsn
    raise RuntimeError("Database DSN unavailable for DBTeachingRepo")


_TS = """to_char({col} at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS.US"+00:00"')"""

_GRANT_COLUMNS_SQL = f"""
    course_id::text,
    teacher_id,
    granted_by,
    capabilities,
    {_TS.format(col="created_at")},
    {_TS.format(col="updated_at")}
"""

_QUIZ_COLUMNS_SQL = f"""
    id::text,
    course_id::text,
    section_id,
    title,
    description,
    questions,
    passing_score,
    time_limit_minutes,
    attempts_allowed,
    is_required,
    is_active,
    created_by,
    {_TS.format(col="created_at")},
    {_TS.format(col="updated_at")}
"""

# Python field name -> column name for partial quiz updates.
_QUIZ_UPDATABLE = {
    "title": "title",
    "description": "description",
    "questions": "questions",
    "section_id": "section_id",
    "passing_score": "passing_score",
    "time_limit_minutes": "time_limit_minutes",
    "attempts_allowed": "attempts_allowed",
    "is_required": "is_required",
    "is_active": "is_active",
}


def _is_unique_violation(exc: Exception) -> bool:
    sqlstate = getattr(exc, "sqlstate", None) or getattr(exc, "pgcode", None)
    return bool(UniqueViolation and isinstance(exc, UniqueViolation)) or sqlstate == "23505"


def _grant_from_row(row: Tuple) -> CapabilityGrant:
    return CapabilityGrant(
        course_id=row[0],
        teacher_id=row[1],
        granted_by=row[2] or "",
        capabilities=frozenset(c for c in (row[3] or []) if c in CAPABILITIES),
        created_at=row[4] or "",
        updated_at=row[5] or "",
    )


def _questions_json(questions) -> Any:
    return Json([q.to_dict(include_answer=True) for q in questions])


def _quiz_from_row(row: Tuple) -> QuizDefinition:
    return QuizDefinition(
        id=row[0],
        course_id=row[1],
        section_id=row[2],
        title=row[3],
        description=row[4] or "",
        questions=tuple(parse_question(q) for q in (row[5] or [])),
        passing_score=int(row[6]),
        time_limit_minutes=int(row[7]),
        attempts_allowed=int(row[8]),
        is_required=bool(row[9]),
        is_active=bool(row[10]),
        created_by=row[11] or "",
        created_at=row[12] or "",
        updated_at=row[13] or "",
    )


class DBTeachingRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        """Initialize the repository without opening a connection eagerly.

        Parameters:
            dsn: Optional explicit DSN. When omitted, resolves from env
                 (`COURSEGATE_DATABASE_URL`, then `DATABASE_URL`).
        """
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBTeachingRepo")
        self._dsn = dsn or _dsn()

    # --- external collaborators (read side) -------------------------------------
    def get_course(self, course_id: str) -> Optional[Course]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "select id::text, teacher_id from public.courses where id::text = %s",
                    (course_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return Course(id=row[0], owner_id=row[1])

    def is_member(self, course_id: str, student_id: str) -> bool:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    select 1 from public.course_memberships
                    where course_id::text = %s and student_id = %s
                    limit 1
                    """,
                    (course_id, student_id),
                )
                return cur.fetchone() is not None

    # --- capability grants ----------------------------------------------------
    def get_grant(self, course_id: str, teacher_id: str) -> Optional[CapabilityGrant]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select {_GRANT_COLUMNS_SQL}
                    from public.course_teachers
                    where course_id::text = %s and teacher_id = %s
                    """,
                    (course_id, teacher_id),
                )
                row = cur.fetchone()
        return _grant_from_row(row) if row else None

    def list_grants(self, course_id: str) -> List[CapabilityGrant]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select {_GRANT_COLUMNS_SQL}
                    from public.course_teachers
                    where course_id::text = %s
                    order by created_at desc, teacher_id
                    """,
                    (course_id,),
                )
                rows = cur.fetchall() or []
        return [_grant_from_row(r) for r in rows]

    def insert_grant(self, grant: CapabilityGrant) -> bool:
        """Insert a grant; returns False when one already exists for the pair."""
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(
                        """
                        insert into public.course_teachers
                            (course_id, teacher_id, granted_by, capabilities, created_at, updated_at)
                        values (%s, %s, %s, %s, %s::timestamptz, %s::timestamptz)
                        on conflict (course_id, teacher_id) do nothing
                        returning teacher_id
                        """,
                        (
                            grant.course_id,
                            grant.teacher_id,
                            grant.granted_by,
                            sorted(grant.capabilities),
                            grant.created_at,
                            grant.updated_at,
                        ),
                    )
                except Exception as exc:
                    if _is_unique_violation(exc):
                        conn.rollback()
                        return False
                    raise
                row = cur.fetchone()
                conn.commit()
        return row is not None

    def update_grant_capabilities(
        self, course_id: str, teacher_id: str, capabilities: frozenset, updated_at: str
    ) -> Optional[CapabilityGrant]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    update public.course_teachers
                       set capabilities = %s, updated_at = %s::timestamptz
                     where course_id::text = %s and teacher_id = %s
                    returning {_GRANT_COLUMNS_SQL}
                    """,
                    (sorted(capabilities), updated_at, course_id, teacher_id),
                )
                row = cur.fetchone()
                conn.commit()
        return _grant_from_row(row) if row else None

    def delete_grant(self, course_id: str, teacher_id: str) -> bool:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "delete from public.course_teachers where course_id::text = %s and teacher_id = %s",
                    (course_id, teacher_id),
                )
                deleted = cur.rowcount
                conn.commit()
        return bool(deleted)

    # --- quizzes --------------------------------------------------------------
    def create_quiz(self, quiz: QuizDefinition) -> QuizDefinition:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    insert into public.quizzes
                        (course_id, section_id, title, description, questions, passing_score,
                         time_limit_minutes, attempts_allowed, is_required, is_active, created_by)
                    values (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    returning {_QUIZ_COLUMNS_SQL}
                    """,
                    (
                        quiz.course_id,
                        quiz.section_id,
                        quiz.title,
                        quiz.description,
                        _questions_json(quiz.questions),
                        quiz.passing_score,
                        quiz.time_limit_minutes,
                        quiz.attempts_allowed,
                        quiz.is_required,
                        quiz.is_active,
                        quiz.created_by,
                    ),
                )
                row = cur.fetchone()
                if row is None:
                    raise RuntimeError("quizzes insert returned no row")
                conn.commit()
        return _quiz_from_row(row)

    def get_quiz(self, quiz_id: str) -> Optional[QuizDefinition]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"select {_QUIZ_COLUMNS_SQL} from public.quizzes where id::text = %s",
                    (quiz_id,),
                )
                row = cur.fetchone()
        return _quiz_from_row(row) if row else None

    def list_quizzes_for_course(self, course_id: str, *, active_only: bool = False) -> List[QuizDefinition]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    select {_QUIZ_COLUMNS_SQL}
                    from public.quizzes
                    where course_id::text = %s and (not %s or is_active)
                    order by created_at, id
                    """,
                    (course_id, active_only),
                )
                rows = cur.fetchall() or []
        return [_quiz_from_row(r) for r in rows]

    def update_quiz(self, quiz_id: str, **fields: Any) -> Optional[QuizDefinition]:
        """Apply a partial update of the given fields; unknown names raise ValueError."""
        unknown = set(fields) - set(_QUIZ_UPDATABLE)
        if unknown:
            raise ValueError(f"unknown quiz fields: {sorted(unknown)}")
        assignments = [sql.SQL("updated_at = now()")]
        params: List[Any] = []
        for name, value in fields.items():
            assignments.append(sql.SQL("{} = %s").format(sql.Identifier(_QUIZ_UPDATABLE[name])))
            params.append(_questions_json(value) if name == "questions" else value)
        query = sql.SQL("update public.quizzes set {} where id::text = %s returning " + _QUIZ_COLUMNS_SQL).format(
            sql.SQL(", ").join(assignments)
        )
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(query, (*params, quiz_id))
                row = cur.fetchone()
                conn.commit()
        return _quiz_from_row(row) if row else None

    def delete_quiz(self, quiz_id: str) -> bool:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("delete from public.quizzes where id::text = %s", (quiz_id,))
                deleted = cur.rowcount
                conn.commit()
        return bool(deleted)


__all__ = ["DBTeachingRepo", "HAVE_PSYCOPG"]
