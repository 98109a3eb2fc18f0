"""
Course teacher management routes and the caller's effective permissions.

Why:
    Course owners (and teachers holding `manage_teachers`) delegate parts of a
    course to other teachers. The adapter stays thin: `CourseTeachersService`
    gates every write and clamps privileged flags.

Notes:
    - `DELETE /teachers/leave` is registered before `/teachers/{teacher_id}`
      so "leave" is never taken as a teacher id.
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field

from coursegate.teaching.services.teachers import CourseTeachersService
from coursegate.web import wiring

from .security import DOMAIN_ERRORS, _csrf_guard, _error_response, _json_private, _require_principal

course_teachers_router = APIRouter(tags=["Course Teachers"])
logger = logging.getLogger("coursegate.web.course_teachers")


def _teachers_service() -> CourseTeachersService:
    return CourseTeachersService(wiring.get_teaching_repo())


class TeacherAdd(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    teacher_id: Any = Field(default=None, alias="teacherId")
    permissions: Any = None


class TeacherPermissionsUpdate(BaseModel):
    permissions: Any = None


@course_teachers_router.get("/api/courses/{course_id}/my-permissions")
async def my_permissions(request: Request, course_id: str):
    """Return the caller's effective role and capability flags for a course.

    Informational only; every gated operation re-checks through the resolver.
    """
    principal, error = _require_principal(request)
    if error:
        return error
    try:
        role = _teachers_service().my_permissions(principal, course_id)
    except DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return _json_private(role.to_dict())


@course_teachers_router.get("/api/courses/{course_id}/teachers")
async def list_teachers(request: Request, course_id: str):
    principal, error = _require_principal(request)
    if error:
        return error
    try:
        data = _teachers_service().list_teachers(principal, course_id)
    except DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return _json_private(data)


@course_teachers_router.post("/api/courses/{course_id}/teachers")
async def add_teacher(request: Request, course_id: str, payload: TeacherAdd):
    """Grant a teacher access to a course.

    Behavior:
        - 201 with the stored grant
        - 400 `teacher_already_added`, `owner_has_full_access` or invalid input
        - 403 without `manage_teachers`; 404 for unknown courses
    """
    principal, error = _require_principal(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        grant = _teachers_service().add_teacher(principal, course_id, payload.teacher_id, payload.permissions)
    except DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return _json_private(grant.to_dict(), status_code=201)


@course_teachers_router.delete("/api/courses/{course_id}/teachers/leave")
async def leave_course(request: Request, course_id: str):
    """Remove the caller's own grant; owners cannot leave their course."""
    principal, error = _require_principal(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        _teachers_service().leave_course(principal, course_id)
    except DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return _json_private({"left": True, "course_id": course_id})


@course_teachers_router.put("/api/courses/{course_id}/teachers/{teacher_id}")
async def update_teacher(request: Request, course_id: str, teacher_id: str, payload: TeacherPermissionsUpdate):
    principal, error = _require_principal(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        grant = _teachers_service().update_teacher(principal, course_id, teacher_id, payload.permissions)
    except DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return _json_private(grant.to_dict())


@course_teachers_router.delete("/api/courses/{course_id}/teachers/{teacher_id}")
async def remove_teacher(request: Request, course_id: str, teacher_id: str):
    principal, error = _require_principal(request)
    if error:
        return error
    csrf = _csrf_guard(request)
    if csrf:
        return csrf
    try:
        _teachers_service().remove_teacher(principal, course_id, teacher_id)
    except DOMAIN_ERRORS as exc:
        return _error_response(exc)
    return _json_private({"removed": True, "teacher_id": teacher_id})
