"""
Capability Store: per-course teacher grants.

Invariants:
    - At most one grant per (course_id, teacher_id).
    - The course owner is never stored as a grant; granting to, updating or
      revoking the owner fails with `InvalidTarget`.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, FrozenSet, List, Optional, Protocol

from coursegate.errors import AlreadyExists, InvalidTarget, NotFound
from coursegate.teaching.permissions import CAPABILITIES, CapabilityGrant, Course


class GrantRepoProtocol(Protocol):
    def get_course(self, course_id: str) -> Optional[Course]:
        ...

    def get_grant(self, course_id: str, teacher_id: str) -> Optional[CapabilityGrant]:
        ...

    def list_grants(self, course_id: str) -> List[CapabilityGrant]:
        ...

    def insert_grant(self, grant: CapabilityGrant) -> bool:
        ...

    def update_grant_capabilities(
        self, course_id: str, teacher_id: str, capabilities: frozenset, updated_at: str
    ) -> Optional[CapabilityGrant]:
        ...

    def delete_grant(self, course_id: str, teacher_id: str) -> bool:
        ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _checked(capabilities: FrozenSet[str] | set[str]) -> frozenset:
    unknown = set(capabilities) - set(CAPABILITIES)
    if unknown:
        raise ValueError(f"unknown capabilities: {sorted(unknown)}")
    return frozenset(capabilities)


@dataclass
class CapabilityStore:
    repo: GrantRepoProtocol
    clock: Callable[[], str] = _now_iso

    def _course(self, course_id: str) -> Course:
        course = self.repo.get_course(course_id)
        if course is None:
            raise NotFound("course_not_found")
        return course

    def grant(
        self,
        course_id: str,
        teacher_id: str,
        granted_by: str,
        capabilities: FrozenSet[str] | set[str],
    ) -> CapabilityGrant:
        course = self._course(course_id)
        if teacher_id == course.owner_id:
            raise InvalidTarget("owner_has_full_access")
        now = self.clock()
        grant = CapabilityGrant(
            course_id=course_id,
            teacher_id=teacher_id,
            granted_by=granted_by,
            capabilities=_checked(capabilities),
            created_at=now,
            updated_at=now,
        )
        if not self.repo.insert_grant(grant):
            raise AlreadyExists("teacher_already_added")
        return grant

    def update(
        self,
        course_id: str,
        teacher_id: str,
        capabilities: FrozenSet[str] | set[str],
    ) -> CapabilityGrant:
        course = self._course(course_id)
        if teacher_id == course.owner_id:
            raise InvalidTarget("cannot_modify_owner")
        updated = self.repo.update_grant_capabilities(course_id, teacher_id, _checked(capabilities), self.clock())
        if updated is None:
            raise NotFound("teacher_not_found")
        return updated

    def revoke(self, course_id: str, teacher_id: str) -> None:
        course = self._course(course_id)
        if teacher_id == course.owner_id:
            raise InvalidTarget("cannot_remove_owner")
        if not self.repo.delete_grant(course_id, teacher_id):
            raise NotFound("teacher_not_found")

    def get(self, course_id: str, teacher_id: str) -> Optional[CapabilityGrant]:
        return self.repo.get_grant(course_id, teacher_id)

    def list(self, course_id: str) -> List[CapabilityGrant]:
        return self.repo.list_grants(course_id)


__all__ = ["CapabilityStore", "GrantRepoProtocol"]
