"""Quiz attempt records and grading results for the Learning context."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Tuple

IN_PROGRESS = "in-progress"
COMPLETED = "completed"
TIMED_OUT = "timed-out"

ATTEMPT_STATUSES = (IN_PROGRESS, COMPLETED, TIMED_OUT)
FINISHED_STATUSES = frozenset({COMPLETED, TIMED_OUT})

# Extra minutes allowed past a quiz's time limit before a submission is late.
GRACE_PERIOD_MINUTES = 1


@dataclass(frozen=True)
class SubmittedAnswer:
    question_index: int
    answer: Any


@dataclass(frozen=True)
class GradedAnswer:
    question_index: int
    answer: Any
    is_correct: bool
    points_earned: int

    def to_dict(self) -> dict:
        return {
            "question_index": self.question_index,
            "answer": self.answer,
            "is_correct": self.is_correct,
            "points_earned": self.points_earned,
        }


@dataclass(frozen=True)
class GradeResult:
    score: int
    total_points: int
    percentage: int
    passed: bool
    graded_answers: Tuple[GradedAnswer, ...] = ()

    def to_dict(self, *, passing_score: Optional[int] = None) -> dict:
        data = {
            "score": self.score,
            "total_points": self.total_points,
            "percentage": self.percentage,
            "passed": self.passed,
        }
        if passing_score is not None:
            data["passing_score"] = passing_score
        return data


@dataclass(frozen=True)
class QuizAttempt:
    id: str
    quiz_id: str
    student_id: str
    course_id: str
    started_at: str
    status: str = IN_PROGRESS
    answers: Tuple[GradedAnswer, ...] = field(default_factory=tuple)
    score: int = 0
    total_points: int = 0
    percentage: int = 0
    passed: bool = False
    completed_at: Optional[str] = None
    time_taken_seconds: int = 0

    @property
    def is_in_progress(self) -> bool:
        return self.status == IN_PROGRESS

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quiz_id": self.quiz_id,
            "student_id": self.student_id,
            "course_id": self.course_id,
            "answers": [a.to_dict() for a in self.answers],
            "score": self.score,
            "total_points": self.total_points,
            "percentage": self.percentage,
            "passed": self.passed,
            "status": self.status,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "time_taken": self.time_taken_seconds,
        }


__all__ = [
    "IN_PROGRESS",
    "COMPLETED",
    "TIMED_OUT",
    "ATTEMPT_STATUSES",
    "FINISHED_STATUSES",
    "GRACE_PERIOD_MINUTES",
    "SubmittedAnswer",
    "GradedAnswer",
    "GradeResult",
    "QuizAttempt",
]
