"""
Domain error taxonomy shared by the Teaching and Learning contexts.

Why:
    Services raise these instead of HTTP responses so the web adapters can map
    them to status codes in one place. Each error subclasses the builtin the
    adapters already catch (LookupError -> 404, PermissionError -> 403,
    ValueError -> 400) and carries a stable snake_case `code` that becomes the
    `detail` field of the JSON error body.
"""
from __future__ import annotations


class _CodedError:
    default_code = "error"

    def __init__(self, code: str | None = None) -> None:
        self.code = code or self.default_code
        super().__init__(self.code)  # type: ignore[call-arg]


class NotFound(_CodedError, LookupError):
    default_code = "not_found"


class Forbidden(_CodedError, PermissionError):
    default_code = "forbidden"


class InvalidState(_CodedError, ValueError):
    default_code = "invalid_state"


class AttemptLimitExceeded(_CodedError, ValueError):
    default_code = "attempt_limit_exceeded"


class TimeLimitExceeded(_CodedError, ValueError):
    default_code = "time_limit_exceeded"


class AlreadyExists(_CodedError, ValueError):
    default_code = "already_exists"


class InvalidTarget(_CodedError, ValueError):
    default_code = "invalid_target"


class ValidationError(_CodedError, ValueError):
    default_code = "invalid_input"


__all__ = [
    "NotFound",
    "Forbidden",
    "InvalidState",
    "AttemptLimitExceeded",
    "TimeLimitExceeded",
    "AlreadyExists",
    "InvalidTarget",
    "ValidationError",
]
