from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from coursegate.errors import Forbidden, NotFound
from coursegate.identity_access.domain import Principal
from coursegate.learning.domain import COMPLETED, QuizAttempt
from coursegate.teaching.permissions import MANAGE_CONTENT, PermissionResolver

from .attempts import AttemptLedgerProtocol, QuizCatalogProtocol, parse_iso

_TOP_PERFORMERS = 10
_RECENT_ATTEMPTS = 10


def _rate(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return int(100 * part / whole + 0.5)


@dataclass
class QuizAnalyticsInput:
    quiz_id: str
    principal: Principal


class QuizAnalyticsUseCase:
    def __init__(self, catalog: QuizCatalogProtocol, ledger: AttemptLedgerProtocol) -> None:
        self._catalog = catalog
        self._ledger = ledger
        self._resolver = PermissionResolver(catalog)

    def execute(self, req: QuizAnalyticsInput) -> dict:
        """Aggregate completed attempts of a quiz for its authors.

        Behavior:
            - Only `completed` attempts count; timed-out and in-progress
              attempts are excluded from every figure.
            - Averages and rates are rounded to whole numbers.
            - Top performers rank each student's best percentage (ties keep
              first-seen order); recent attempts are the ten newest.

        Permissions:
            Requires `manage_content` on the quiz's course (owner/admin
            always pass).
        """
        quiz = self._catalog.get_quiz(req.quiz_id)
        if quiz is None:
            raise NotFound("quiz_not_found")
        course = self._catalog.get_course(quiz.course_id)
        if course is None:
            raise NotFound("course_not_found")
        if not self._resolver.resolve(req.principal, course, MANAGE_CONTENT):
            raise Forbidden("not_authorized_for_analytics")

        attempts = self._ledger.list_attempts(quiz_id=quiz.id, statuses=[COMPLETED])
        attempts = sorted(attempts, key=lambda a: parse_iso(a.completed_at or a.started_at))
        total = len(attempts)
        passed = sum(1 for a in attempts if a.passed)
        avg_score = int(sum(a.percentage for a in attempts) / total + 0.5) if total else 0
        avg_time = int(sum(a.time_taken_seconds for a in attempts) / total + 0.5) if total else 0

        question_stats = []
        for idx, question in enumerate(quiz.questions):
            answered = [ans for a in attempts for ans in a.answers if ans.question_index == idx]
            correct = sum(1 for ans in answered if ans.is_correct)
            question_stats.append(
                {
                    "question_index": idx,
                    "question_text": question.text,
                    "total_answers": len(answered),
                    "correct_count": correct,
                    "correct_rate": _rate(correct, len(answered)),
                }
            )

        best: Dict[str, QuizAttempt] = {}
        for attempt in attempts:
            current = best.get(attempt.student_id)
            if current is None or attempt.percentage > current.percentage:
                best[attempt.student_id] = attempt
        ranked = sorted(best.values(), key=lambda a: a.percentage, reverse=True)[:_TOP_PERFORMERS]
        top_performers: List[dict] = [
            {
                "student_id": a.student_id,
                "percentage": a.percentage,
                "passed": a.passed,
                "time_taken": a.time_taken_seconds,
            }
            for a in ranked
        ]

        return {
            "quiz_title": quiz.title,
            "total_questions": len(quiz.questions),
            "passing_score": quiz.passing_score,
            "overview": {
                "total_attempts": total,
                "unique_students": len(best),
                "passed_attempts": passed,
                "pass_rate": _rate(passed, total),
                "avg_score": avg_score,
                "avg_time_taken": avg_time,
            },
            "question_stats": question_stats,
            "top_performers": top_performers,
            "recent_attempts": [a.to_dict() for a in reversed(attempts[-_RECENT_ATTEMPTS:])],
        }


__all__ = ["QuizAnalyticsInput", "QuizAnalyticsUseCase"]
