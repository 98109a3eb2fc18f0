"""
Identity domain constants and simple helpers.

Why:
- Centralize allowed roles to avoid drift between the web layer and services.
- The core never authenticates; it consumes an already-resolved principal.
"""

from __future__ import annotations

from dataclasses import dataclass

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({"student", "instructor", "admin"})

_ROLE_PRIORITY = ("admin", "instructor", "student")


@dataclass(frozen=True)
class Principal:
    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def primary_role(roles: list[str]) -> str:
    """Collapse a role list into the single highest-priority role."""
    lowered = [r.lower() for r in roles if isinstance(r, str)]
    for r in _ROLE_PRIORITY:
        if r in lowered:
            return r
    return "student"


def principal_from_user(user: dict | None) -> Principal | None:
    """Build a Principal from the request-state user mapping set by the auth middleware."""
    if not user:
        return None
    sub = user.get("sub")
    if not sub:
        return None
    roles = user.get("roles") or []
    if not isinstance(roles, list):
        roles = []
    return Principal(id=str(sub), role=primary_role(roles))


__all__ = ["ALLOWED_ROLES", "Principal", "primary_role", "principal_from_user"]
