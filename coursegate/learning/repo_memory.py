"""
In-memory attempt ledger for tests and local offline work.

A single lock serializes the start check-and-create and the finish
compare-and-swap, standing in for the advisory lock and partial unique index
the Postgres ledger relies on.
"""
from __future__ import annotations

from threading import Lock
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from coursegate.errors import AttemptLimitExceeded
from coursegate.learning.domain import FINISHED_STATUSES, IN_PROGRESS, QuizAttempt
from coursegate.teaching.quizzes import QuizDefinition


class InMemoryAttemptLedger:
    def __init__(self) -> None:
        self._attempts: Dict[str, QuizAttempt] = {}
        self._lock = Lock()

    def start_attempt(
        self, *, quiz: QuizDefinition, student_id: str, started_at: str
    ) -> Tuple[QuizAttempt, bool]:
        with self._lock:
            mine = [
                a for a in self._attempts.values() if a.quiz_id == quiz.id and a.student_id == student_id
            ]
            for attempt in mine:
                if attempt.status == IN_PROGRESS:
                    return attempt, False
            finished = sum(1 for a in mine if a.status in FINISHED_STATUSES)
            if quiz.has_attempt_limit and finished >= quiz.attempts_allowed:
                raise AttemptLimitExceeded()
            attempt = QuizAttempt(
                id=str(uuid4()),
                quiz_id=quiz.id,
                student_id=student_id,
                course_id=quiz.course_id,
                started_at=started_at,
                total_points=quiz.total_points,
            )
            self._attempts[attempt.id] = attempt
            return attempt, True

    def get_attempt(self, attempt_id: str) -> Optional[QuizAttempt]:
        return self._attempts.get(attempt_id)

    def finish_attempt(self, attempt: QuizAttempt) -> bool:
        with self._lock:
            current = self._attempts.get(attempt.id)
            if current is None or current.status != IN_PROGRESS:
                return False
            self._attempts[attempt.id] = attempt
            return True

    def list_attempts(
        self,
        *,
        quiz_id: str,
        student_id: Optional[str] = None,
        statuses: Optional[Sequence[str]] = None,
    ) -> List[QuizAttempt]:
        items = [a for a in self._attempts.values() if a.quiz_id == quiz_id]
        if student_id is not None:
            items = [a for a in items if a.student_id == student_id]
        if statuses is not None:
            wanted = set(statuses)
            items = [a for a in items if a.status in wanted]
        return items

    def delete_attempts_for_quiz(self, quiz_id: str) -> int:
        with self._lock:
            doomed = [aid for aid, a in self._attempts.items() if a.quiz_id == quiz_id]
            for aid in doomed:
                self._attempts.pop(aid, None)
            return len(doomed)


__all__ = ["InMemoryAttemptLedger"]
