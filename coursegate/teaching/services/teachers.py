"""Course teachers service layer.

Why:
    Wraps the Capability Store with the permission gate (`manage_teachers`)
    and the privileged-flag clamp so web adapters stay thin and the rules can
    be unit-tested without FastAPI.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import List

from coursegate.errors import Forbidden, InvalidTarget, NotFound, ValidationError
from coursegate.identity_access.domain import Principal
from coursegate.teaching.capabilities import CapabilityStore, GrantRepoProtocol
from coursegate.teaching.permissions import (
    MANAGE_TEACHERS,
    CapabilityGrant,
    Course,
    EffectiveRole,
    PermissionResolver,
    clamp_capabilities,
    parse_capabilities,
)

logger = logging.getLogger("coursegate.teaching.teachers")


def _normalize_teacher_id(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("invalid_teacher_id")
    return value.strip()


@dataclass
class CourseTeachersService:
    """Use cases for course teacher grants (framework-independent)."""

    repo: GrantRepoProtocol

    def __post_init__(self) -> None:
        self.store = CapabilityStore(self.repo)
        self.resolver = PermissionResolver(self.repo)

    def _course(self, course_id: str) -> Course:
        course = self.repo.get_course(course_id)
        if course is None:
            raise NotFound("course_not_found")
        return course

    def _require_manage_teachers(self, principal: Principal, course: Course) -> None:
        if not self.resolver.resolve(principal, course, MANAGE_TEACHERS):
            raise Forbidden("not_authorized_to_manage_teachers")

    def add_teacher(
        self,
        principal: Principal,
        course_id: str,
        teacher_id: object,
        permissions: object = None,
    ) -> CapabilityGrant:
        course = self._course(course_id)
        self._require_manage_teachers(principal, course)
        target = _normalize_teacher_id(teacher_id)
        requested = parse_capabilities(permissions)
        capabilities = clamp_capabilities(
            requested,
            frozenset(),
            may_grant_privileged=self.resolver.is_admin_or_owner(principal, course),
        )
        grant = self.store.grant(course.id, target, principal.id, capabilities)
        logger.info(
            "Teacher added course=%s teacher=%s by=%s caps=%s",
            course.id,
            target,
            principal.id,
            ",".join(sorted(capabilities)) or "-",
        )
        return grant

    def update_teacher(
        self,
        principal: Principal,
        course_id: str,
        teacher_id: str,
        permissions: object = None,
    ) -> CapabilityGrant:
        """Merge permission flags into an existing grant.

        Flags missing from the payload keep their value. A grantor who is
        neither admin nor owner cannot change `full_access` or
        `manage_teachers`; such requests succeed with those flags unchanged.
        """
        course = self._course(course_id)
        self._require_manage_teachers(principal, course)
        if teacher_id == course.owner_id:
            raise InvalidTarget("cannot_modify_owner")
        previous = self.store.get(course.id, teacher_id)
        if previous is None:
            raise NotFound("teacher_not_found")
        requested = parse_capabilities(permissions)
        capabilities = clamp_capabilities(
            requested,
            previous.capabilities,
            may_grant_privileged=self.resolver.is_admin_or_owner(principal, course),
        )
        grant = self.store.update(course.id, teacher_id, capabilities)
        logger.info("Teacher permissions updated course=%s teacher=%s by=%s", course.id, teacher_id, principal.id)
        return grant

    def remove_teacher(self, principal: Principal, course_id: str, teacher_id: str) -> None:
        course = self._course(course_id)
        self._require_manage_teachers(principal, course)
        self.store.revoke(course.id, teacher_id)
        logger.info("Teacher removed course=%s teacher=%s by=%s", course.id, teacher_id, principal.id)

    def leave_course(self, principal: Principal, course_id: str) -> None:
        """Self-revoke; needs no capability beyond holding a grant."""
        course = self._course(course_id)
        if principal.id == course.owner_id:
            raise InvalidTarget("cannot_remove_owner")
        if self.store.get(course.id, principal.id) is None:
            raise NotFound("not_a_teacher")
        self.store.revoke(course.id, principal.id)
        logger.info("Teacher left course=%s teacher=%s", course.id, principal.id)

    def list_teachers(self, principal: Principal, course_id: str) -> dict:
        course = self._course(course_id)
        if not self.resolver.is_course_staff(principal, course):
            raise Forbidden("not_authorized_for_course")
        teachers: List[dict] = [g.to_dict() for g in self.store.list(course.id)]
        return {"creator": {"id": course.owner_id, "is_creator": True}, "teachers": teachers}

    def my_permissions(self, principal: Principal, course_id: str) -> EffectiveRole:
        return self.resolver.effective_role(principal, self._course(course_id))


__all__ = ["CourseTeachersService"]
