"""
Permission resolver for capability-gated course operations.

Why:
    Every gated route used to repeat its own admin/owner/teacher branching.
    All decisions now go through `PermissionResolver.resolve` with a named
    capability constant; `effective_role` only describes the caller for UIs.

Evaluation order (first match wins):
    1. admin role
    2. course owner (implicit, never stored as a grant)
    3. no grant -> deny
    4. grant with `full_access`
    5. grant with the requested capability
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional, Protocol

from coursegate.errors import ValidationError
from coursegate.identity_access.domain import Principal

MANAGE_CONTENT = "manage_content"
MANAGE_STUDENTS = "manage_students"
FULL_ACCESS = "full_access"
MANAGE_TEACHERS = "manage_teachers"

CAPABILITIES = (MANAGE_CONTENT, MANAGE_STUDENTS, FULL_ACCESS, MANAGE_TEACHERS)
# Only admins and course owners may set or change these on a grant.
PRIVILEGED_CAPABILITIES = frozenset({FULL_ACCESS, MANAGE_TEACHERS})


@dataclass(frozen=True)
class Course:
    id: str
    owner_id: str


@dataclass(frozen=True)
class CapabilityGrant:
    course_id: str
    teacher_id: str
    granted_by: str
    capabilities: FrozenSet[str] = frozenset()
    created_at: str = ""
    updated_at: str = ""

    def flags(self) -> dict[str, bool]:
        return capability_flags(self.capabilities)

    def to_dict(self) -> dict:
        return {
            "course_id": self.course_id,
            "teacher_id": self.teacher_id,
            "granted_by": self.granted_by,
            "permissions": self.flags(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class GrantLookupProtocol(Protocol):
    def get_grant(self, course_id: str, teacher_id: str) -> Optional[CapabilityGrant]:
        ...


def capability_flags(capabilities: FrozenSet[str] | set[str]) -> dict[str, bool]:
    return {cap: cap in capabilities for cap in CAPABILITIES}


def parse_capabilities(value: object) -> dict[str, bool]:
    """Normalize a `{capability: bool}` payload; unknown keys are rejected."""
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValidationError("invalid_permissions")
    out: dict[str, bool] = {}
    for key, flag in value.items():
        if key not in CAPABILITIES:
            raise ValidationError("invalid_permissions")
        if flag is None:
            continue
        if not isinstance(flag, bool):
            raise ValidationError("invalid_permissions")
        out[key] = flag
    return out


def clamp_capabilities(
    requested: Mapping[str, bool],
    previous: FrozenSet[str],
    *,
    may_grant_privileged: bool,
) -> FrozenSet[str]:
    """Merge requested flags over `previous`.

    Privileged flags requested by a grantor that is neither admin nor owner
    keep their previous value instead of raising.
    """
    result = set(previous)
    for cap in CAPABILITIES:
        if cap not in requested:
            continue
        if cap in PRIVILEGED_CAPABILITIES and not may_grant_privileged:
            continue
        if requested[cap]:
            result.add(cap)
        else:
            result.discard(cap)
    return frozenset(result)


@dataclass(frozen=True)
class EffectiveRole:
    role: str  # "admin" | "owner" | "teacher" | "student"
    capabilities: FrozenSet[str] = field(default_factory=frozenset)

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "is_admin": self.role == "admin",
            "is_creator": self.role == "owner",
            "is_teacher": self.role == "teacher",
            "permissions": capability_flags(self.capabilities),
        }


@dataclass
class PermissionResolver:
    """Authorization decisions for (principal, course, capability)."""

    grants: GrantLookupProtocol

    def resolve(self, principal: Principal, course: Course, capability: str) -> bool:
        if capability not in CAPABILITIES:
            raise ValueError(f"unknown capability: {capability}")
        if principal.is_admin:
            return True
        if principal.id == course.owner_id:
            return True
        grant = self.grants.get_grant(course.id, principal.id)
        if grant is None:
            return False
        if FULL_ACCESS in grant.capabilities:
            return True
        return capability in grant.capabilities

    def effective_role(self, principal: Principal, course: Course) -> EffectiveRole:
        if principal.is_admin:
            return EffectiveRole("admin", frozenset(CAPABILITIES))
        if principal.id == course.owner_id:
            return EffectiveRole("owner", frozenset(CAPABILITIES))
        grant = self.grants.get_grant(course.id, principal.id)
        if grant is not None:
            return EffectiveRole("teacher", grant.capabilities)
        return EffectiveRole("student")

    def is_admin_or_owner(self, principal: Principal, course: Course) -> bool:
        return principal.is_admin or principal.id == course.owner_id

    def is_course_staff(self, principal: Principal, course: Course) -> bool:
        """True for admin, owner, or any grant holder regardless of flags."""
        if self.is_admin_or_owner(principal, course):
            return True
        return self.grants.get_grant(course.id, principal.id) is not None


__all__ = [
    "MANAGE_CONTENT",
    "MANAGE_STUDENTS",
    "FULL_ACCESS",
    "MANAGE_TEACHERS",
    "CAPABILITIES",
    "PRIVILEGED_CAPABILITIES",
    "Course",
    "CapabilityGrant",
    "EffectiveRole",
    "PermissionResolver",
    "capability_flags",
    "clamp_capabilities",
    "parse_capabilities",
]
