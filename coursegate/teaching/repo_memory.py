"""
In-memory Teaching repository (courses, memberships, grants, quizzes).

Why:
    Tests and local development without Postgres use this fallback. It mirrors
    the DB repo surface so services and routes never branch on the backend.
    Courses and memberships are owned by external collaborators; the seeding
    helpers (`add_course`, `add_member`) exist for tests and dev fixtures.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from coursegate.teaching.permissions import CapabilityGrant, Course
from coursegate.teaching.quizzes import QuizDefinition


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryTeachingRepo:
    def __init__(self) -> None:
        self.courses: Dict[str, Course] = {}
        # members[course_id] = { student_id: joined_at_iso }
        self.members: Dict[str, Dict[str, str]] = {}
        self.grants: Dict[Tuple[str, str], CapabilityGrant] = {}
        self.quizzes: Dict[str, QuizDefinition] = {}
        self._lock = Lock()

    # --- external collaborators (read side + seeding) -------------------------

    def add_course(self, course_id: str, owner_id: str) -> Course:
        course = Course(id=course_id, owner_id=owner_id)
        self.courses[course_id] = course
        self.members.setdefault(course_id, {})
        return course

    def get_course(self, course_id: str) -> Optional[Course]:
        return self.courses.get(course_id)

    def add_member(self, course_id: str, student_id: str) -> bool:
        bucket = self.members.setdefault(course_id, {})
        if student_id in bucket:
            return False
        bucket[student_id] = _now_iso()
        return True

    def is_member(self, course_id: str, student_id: str) -> bool:
        return student_id in (self.members.get(course_id) or {})

    # --- capability grants ----------------------------------------------------

    def get_grant(self, course_id: str, teacher_id: str) -> Optional[CapabilityGrant]:
        return self.grants.get((course_id, teacher_id))

    def list_grants(self, course_id: str) -> List[CapabilityGrant]:
        items = [g for (cid, _), g in self.grants.items() if cid == course_id]
        return sorted(items, key=lambda g: g.created_at, reverse=True)

    def insert_grant(self, grant: CapabilityGrant) -> bool:
        key = (grant.course_id, grant.teacher_id)
        with self._lock:
            if key in self.grants:
                return False
            self.grants[key] = grant
            return True

    def update_grant_capabilities(
        self, course_id: str, teacher_id: str, capabilities: frozenset, updated_at: str
    ) -> Optional[CapabilityGrant]:
        key = (course_id, teacher_id)
        with self._lock:
            current = self.grants.get(key)
            if current is None:
                return None
            updated = replace(current, capabilities=frozenset(capabilities), updated_at=updated_at)
            self.grants[key] = updated
            return updated

    def delete_grant(self, course_id: str, teacher_id: str) -> bool:
        with self._lock:
            return self.grants.pop((course_id, teacher_id), None) is not None

    # --- quizzes --------------------------------------------------------------

    def create_quiz(self, quiz: QuizDefinition) -> QuizDefinition:
        now = _now_iso()
        stored = replace(quiz, id=quiz.id or str(uuid4()), created_at=now, updated_at=now)
        self.quizzes[stored.id] = stored
        return stored

    def get_quiz(self, quiz_id: str) -> Optional[QuizDefinition]:
        return self.quizzes.get(quiz_id)

    def list_quizzes_for_course(self, course_id: str, *, active_only: bool = False) -> List[QuizDefinition]:
        items = [q for q in self.quizzes.values() if q.course_id == course_id]
        if active_only:
            items = [q for q in items if q.is_active]
        return sorted(items, key=lambda q: q.created_at)

    def update_quiz(self, quiz_id: str, **fields: Any) -> Optional[QuizDefinition]:
        current = self.quizzes.get(quiz_id)
        if current is None:
            return None
        updated = replace(current, updated_at=_now_iso(), **fields)
        self.quizzes[quiz_id] = updated
        return updated

    def delete_quiz(self, quiz_id: str) -> bool:
        return self.quizzes.pop(quiz_id, None) is not None


__all__ = ["InMemoryTeachingRepo"]
