"""Unit tests for QuizzesService (authoring gate, validation, visibility)."""
from __future__ import annotations

import pytest

from coursegate.errors import Forbidden, NotFound, ValidationError
from coursegate.identity_access.domain import Principal
from coursegate.learning.repo_memory import InMemoryAttemptLedger
from coursegate.teaching.permissions import MANAGE_CONTENT, MANAGE_STUDENTS, CapabilityGrant
from coursegate.teaching.repo_memory import InMemoryTeachingRepo
from coursegate.teaching.services.quizzes import QuizzesService

OWNER = Principal("owner-1", "instructor")
STUDENT = Principal("student-1", "student")

MCQ = {"text": "2 + 2?", "type": "mcq", "options": ["3", "4"], "correct_answer": 1}


@pytest.fixture
def repo() -> InMemoryTeachingRepo:
    r = InMemoryTeachingRepo()
    r.add_course("course-1", OWNER.id)
    r.add_member("course-1", STUDENT.id)
    return r


@pytest.fixture
def ledger() -> InMemoryAttemptLedger:
    return InMemoryAttemptLedger()


@pytest.fixture
def service(repo, ledger) -> QuizzesService:
    return QuizzesService(repo, ledger)


def _grant(repo: InMemoryTeachingRepo, teacher_id: str, *caps: str) -> Principal:
    repo.insert_grant(
        CapabilityGrant(course_id="course-1", teacher_id=teacher_id, granted_by=OWNER.id, capabilities=frozenset(caps))
    )
    return Principal(teacher_id, "instructor")


def test_create_quiz_applies_defaults(service: QuizzesService):
    quiz = service.create_quiz(OWNER, course_id="course-1", title="  Basics ", questions=[MCQ])
    assert quiz.id
    assert quiz.title == "Basics"
    assert quiz.passing_score == 70
    assert quiz.time_limit_minutes == 0
    assert quiz.attempts_allowed == -1
    assert quiz.is_active is True
    assert quiz.created_by == OWNER.id
    assert quiz.total_points == 1


def test_create_quiz_accepts_zero_passing_score(service: QuizzesService):
    quiz = service.create_quiz(OWNER, course_id="course-1", title="Warmup", passing_score=0)
    assert quiz.passing_score == 0


def test_negative_attempts_allowed_is_stored_as_unlimited(service: QuizzesService):
    quiz = service.create_quiz(OWNER, course_id="course-1", title="Q", attempts_allowed=-5)
    assert quiz.attempts_allowed == -1


def test_teacher_with_manage_content_may_author(service: QuizzesService, repo):
    teacher = _grant(repo, "teacher-1", MANAGE_CONTENT)
    assert service.create_quiz(teacher, course_id="course-1", title="Q").created_by == "teacher-1"


def test_teacher_without_manage_content_is_forbidden(service: QuizzesService, repo):
    teacher = _grant(repo, "teacher-1", MANAGE_STUDENTS)
    with pytest.raises(Forbidden) as exc:
        service.create_quiz(teacher, course_id="course-1", title="Q")
    assert exc.value.code == "not_authorized_to_manage_quizzes"
    with pytest.raises(Forbidden):
        service.create_quiz(STUDENT, course_id="course-1", title="Q")


@pytest.mark.parametrize(
    "overrides, code",
    [
        ({"title": ""}, "invalid_title"),
        ({"title": "x" * 201}, "invalid_title"),
        ({"passing_score": 101}, "invalid_passing_score"),
        ({"passing_score": "70"}, "invalid_passing_score"),
        ({"time_limit": -1}, "invalid_time_limit"),
        ({"questions": "nope"}, "invalid_questions"),
        ({"questions": [{"text": "Q", "type": "mcq", "options": ["a", "b"]}]}, "missing_correct_answer"),
        ({"is_required": "yes"}, "invalid_is_required"),
    ],
)
def test_create_quiz_validation(service: QuizzesService, overrides, code):
    kwargs = {"course_id": "course-1", "title": "Q"}
    kwargs.update(overrides)
    with pytest.raises(ValidationError) as exc:
        service.create_quiz(OWNER, **kwargs)
    assert exc.value.code == code


def test_create_quiz_has_no_upper_bound_on_time_limit_or_description(service: QuizzesService):
    quiz = service.create_quiz(
        OWNER, course_id="course-1", title="Take-home exam", description="d" * 6000, time_limit=1500
    )
    assert quiz.time_limit_minutes == 1500
    assert len(quiz.description) == 6000
    updated = service.update_quiz(OWNER, quiz.id, time_limit=3 * 24 * 60)
    assert updated.time_limit_minutes == 4320


def test_create_quiz_unknown_course(service: QuizzesService):
    with pytest.raises(NotFound):
        service.create_quiz(OWNER, course_id="course-404", title="Q")


def test_update_keeps_unset_fields_and_clears_section(service: QuizzesService):
    quiz = service.create_quiz(OWNER, course_id="course-1", title="Q", section_id="sec-1", passing_score=60)
    updated = service.update_quiz(OWNER, quiz.id, title="Renamed", passing_score=None)
    assert updated.title == "Renamed"
    assert updated.passing_score == 60
    assert updated.section_id == "sec-1"

    cleared = service.update_quiz(OWNER, quiz.id, section_id=None)
    assert cleared.section_id is None


def test_update_requires_author(service: QuizzesService):
    quiz = service.create_quiz(OWNER, course_id="course-1", title="Q")
    with pytest.raises(Forbidden):
        service.update_quiz(STUDENT, quiz.id, title="Mine now")
    with pytest.raises(NotFound):
        service.update_quiz(OWNER, "missing", title="x")


def test_delete_quiz_cascades_to_attempts(service: QuizzesService, repo, ledger):
    quiz = service.create_quiz(OWNER, course_id="course-1", title="Q", questions=[MCQ])
    ledger.start_attempt(quiz=quiz, student_id=STUDENT.id, started_at="2026-03-01T09:00:00+00:00")

    service.delete_quiz(OWNER, quiz.id)

    assert repo.get_quiz(quiz.id) is None
    assert ledger.list_attempts(quiz_id=quiz.id) == []


def test_get_quiz_hides_answers_from_students(service: QuizzesService):
    quiz = service.create_quiz(OWNER, course_id="course-1", title="Q", questions=[MCQ])
    assert service.get_quiz(OWNER, quiz.id)["questions"][0]["correct_answer"] == 1
    assert "correct_answer" not in service.get_quiz(STUDENT, quiz.id)["questions"][0]


def test_get_quiz_rejects_outsiders_and_hides_inactive(service: QuizzesService):
    quiz = service.create_quiz(OWNER, course_id="course-1", title="Q")
    with pytest.raises(Forbidden) as exc:
        service.get_quiz(Principal("outsider", "student"), quiz.id)
    assert exc.value.code == "not_enrolled"

    service.update_quiz(OWNER, quiz.id, is_active=False)
    with pytest.raises(NotFound):
        service.get_quiz(STUDENT, quiz.id)
    assert service.get_quiz(OWNER, quiz.id)["is_active"] is False


def test_list_course_quizzes_for_student_includes_attempt_summary(service: QuizzesService, ledger):
    active = service.create_quiz(OWNER, course_id="course-1", title="Active", questions=[MCQ])
    hidden = service.create_quiz(OWNER, course_id="course-1", title="Hidden")
    service.update_quiz(OWNER, hidden.id, is_active=False)
    ledger.start_attempt(quiz=active, student_id=STUDENT.id, started_at="2026-03-01T09:00:00+00:00")

    items = service.list_course_quizzes(STUDENT, "course-1")

    assert [q["title"] for q in items] == ["Active"]
    assert "correct_answer" not in items[0]["questions"][0]
    assert len(items[0]["user_attempts"]) == 1
    assert items[0]["attempt_count"] == 0
    assert items[0]["best_score"] == 0
    assert items[0]["has_passed"] is False


def test_list_course_quizzes_for_author_includes_inactive(service: QuizzesService):
    service.create_quiz(OWNER, course_id="course-1", title="A")
    hidden = service.create_quiz(OWNER, course_id="course-1", title="B")
    service.update_quiz(OWNER, hidden.id, is_active=False)
    assert len(service.list_course_quizzes(OWNER, "course-1")) == 2


def test_grant_holder_without_manage_content_sees_inactive_quizzes_without_answers(service: QuizzesService, repo):
    teacher = _grant(repo, "teacher-2", MANAGE_STUDENTS)
    service.create_quiz(OWNER, course_id="course-1", title="A", questions=[MCQ])
    hidden = service.create_quiz(OWNER, course_id="course-1", title="B", questions=[MCQ])
    service.update_quiz(OWNER, hidden.id, is_active=False)

    items = service.list_course_quizzes(teacher, "course-1")

    assert sorted(q["title"] for q in items) == ["A", "B"]
    assert all("correct_answer" not in q["questions"][0] for q in items)
    single = service.get_quiz(teacher, hidden.id)
    assert single["is_active"] is False
    assert "correct_answer" not in single["questions"][0]
