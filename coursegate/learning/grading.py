"""
Deterministic grading of submitted quiz answers.

`grade` is pure: identical (quiz, answers) always yield an identical
`GradeResult`. Totals come from the quiz definition passed in, i.e. the live
definition at grading time rather than a snapshot taken at attempt start.
"""
from __future__ import annotations

import math
from typing import Iterable, List, Mapping, Sequence

from coursegate.errors import ValidationError
from coursegate.teaching.quizzes import QuizDefinition

from .domain import GradeResult, GradedAnswer, SubmittedAnswer


def _percentage(score: int, total_points: int) -> int:
    if total_points <= 0:
        return 0
    # Half-up rounding, clamped so the result always stays within 0..100.
    value = int(math.floor(100 * score / total_points + 0.5))
    return max(0, min(100, value))


def parse_submitted_answers(raw: object) -> List[SubmittedAnswer]:
    """Normalize an API `answers` array into `SubmittedAnswer` records.

    Entries without an integer `question_index` (or `questionIndex`) are
    dropped, mirroring how grading ignores unknown questions.
    """
    if raw is None:
        return []
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Sequence):
        raise ValidationError("invalid_answers")
    out: List[SubmittedAnswer] = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        idx = entry.get("question_index", entry.get("questionIndex"))
        if isinstance(idx, bool) or not isinstance(idx, int):
            continue
        out.append(SubmittedAnswer(question_index=idx, answer=entry.get("answer")))
    return out


def grade(quiz: QuizDefinition, answers: Iterable[SubmittedAnswer]) -> GradeResult:
    questions = quiz.questions
    score = 0
    graded: List[GradedAnswer] = []
    seen: set[int] = set()
    for submitted in answers:
        idx = submitted.question_index
        if not (0 <= idx < len(questions)) or idx in seen:
            continue
        seen.add(idx)
        question = questions[idx]
        correct = question.is_correct(submitted.answer)
        earned = question.points if correct else 0
        score += earned
        graded.append(
            GradedAnswer(
                question_index=idx,
                answer=submitted.answer,
                is_correct=correct,
                points_earned=earned,
            )
        )
    total_points = quiz.total_points
    percentage = _percentage(score, total_points)
    return GradeResult(
        score=score,
        total_points=total_points,
        percentage=percentage,
        passed=percentage >= quiz.passing_score,
        graded_answers=tuple(graded),
    )


__all__ = ["grade", "parse_submitted_answers"]
