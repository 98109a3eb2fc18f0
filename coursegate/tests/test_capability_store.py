"""Capability Store invariants against the in-memory teaching repository."""
from __future__ import annotations

import pytest

from coursegate.errors import AlreadyExists, InvalidTarget, NotFound
from coursegate.teaching.capabilities import CapabilityStore
from coursegate.teaching.permissions import FULL_ACCESS, MANAGE_CONTENT, MANAGE_STUDENTS
from coursegate.teaching.repo_memory import InMemoryTeachingRepo


def _clock() -> str:
    return "2026-01-01T00:00:00+00:00"


@pytest.fixture
def store() -> CapabilityStore:
    repo = InMemoryTeachingRepo()
    repo.add_course("course-1", "owner-1")
    return CapabilityStore(repo, clock=_clock)


def test_grant_then_get_and_list(store: CapabilityStore):
    grant = store.grant("course-1", "teacher-1", "owner-1", {MANAGE_CONTENT})
    assert grant.capabilities == frozenset({MANAGE_CONTENT})
    assert grant.created_at == grant.updated_at == _clock()
    assert store.get("course-1", "teacher-1") == grant
    assert [g.teacher_id for g in store.list("course-1")] == ["teacher-1"]


def test_duplicate_grant_fails_with_already_exists(store: CapabilityStore):
    store.grant("course-1", "teacher-1", "owner-1", {MANAGE_CONTENT})
    with pytest.raises(AlreadyExists) as exc:
        store.grant("course-1", "teacher-1", "owner-1", {MANAGE_STUDENTS})
    assert exc.value.code == "teacher_already_added"
    assert store.get("course-1", "teacher-1").capabilities == frozenset({MANAGE_CONTENT})


def test_owner_can_never_be_granted(store: CapabilityStore):
    with pytest.raises(InvalidTarget):
        store.grant("course-1", "owner-1", "owner-1", {FULL_ACCESS})
    assert store.list("course-1") == []


def test_owner_cannot_be_revoked_or_modified(store: CapabilityStore):
    with pytest.raises(InvalidTarget):
        store.revoke("course-1", "owner-1")
    with pytest.raises(InvalidTarget):
        store.update("course-1", "owner-1", {MANAGE_CONTENT})


def test_revoke_missing_grant_is_not_found(store: CapabilityStore):
    with pytest.raises(NotFound) as exc:
        store.revoke("course-1", "teacher-x")
    assert exc.value.code == "teacher_not_found"


def test_revoke_removes_grant(store: CapabilityStore):
    store.grant("course-1", "teacher-1", "owner-1", set())
    store.revoke("course-1", "teacher-1")
    assert store.get("course-1", "teacher-1") is None


def test_update_replaces_capabilities(store: CapabilityStore):
    store.grant("course-1", "teacher-1", "owner-1", {MANAGE_CONTENT})
    updated = store.update("course-1", "teacher-1", {MANAGE_STUDENTS})
    assert updated.capabilities == frozenset({MANAGE_STUDENTS})
    assert updated.granted_by == "owner-1"


def test_unknown_course_is_not_found(store: CapabilityStore):
    with pytest.raises(NotFound) as exc:
        store.grant("course-404", "teacher-1", "owner-1", set())
    assert exc.value.code == "course_not_found"


def test_unknown_capability_rejected(store: CapabilityStore):
    with pytest.raises(ValueError):
        store.grant("course-1", "teacher-1", "owner-1", {"root"})
