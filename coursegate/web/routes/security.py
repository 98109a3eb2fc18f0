"""
Shared web helpers for the quiz and course-teacher routes.

Contains the CSRF same-origin check, private (no-store) JSON responses and
the mapping from domain errors to HTTP status codes. Keeping a single
implementation avoids security drift between adapters.
"""
from __future__ import annotations

import os
from urllib.parse import urlparse

from fastapi import Request
from fastapi.responses import JSONResponse

from coursegate.identity_access.domain import Principal, principal_from_user
from coursegate.web.config import is_prod_like


def _default_port(scheme: str) -> int:
    return 443 if scheme == "https" else 80


def _parse_origin(url: str) -> tuple[str, str, int]:
    p = urlparse(url)
    if not p.scheme or not p.hostname:
        raise ValueError("invalid_origin")
    scheme = p.scheme.lower()
    host = p.hostname.lower()
    port = p.port if p.port is not None else _default_port(scheme)
    return scheme, host, int(port)


def _parse_server(req: Request) -> tuple[str, str, int]:
    trust_proxy = (os.getenv("COURSEGATE_TRUST_PROXY", "false") or "").lower() == "true"
    if trust_proxy:
        xf_proto_raw = req.headers.get("x-forwarded-proto") or req.url.scheme or ""
        xf_host_raw = req.headers.get("x-forwarded-host") or req.headers.get("host") or ""
        xf_proto = xf_proto_raw.split(",")[0].strip()
        xf_host = xf_host_raw.split(",")[0].strip()
        scheme = (xf_proto or req.url.scheme or "http").lower()
        if ":" in xf_host:
            host_only, port_str = xf_host.rsplit(":", 1)
            try:
                port = int(port_str)
            except ValueError:
                port = _default_port(scheme)
            host = host_only.lower()
        else:
            host = (xf_host or (req.url.hostname or "")).lower()
            port = int(req.url.port) if req.url.port else _default_port(scheme)
        xf_port_raw = req.headers.get("x-forwarded-port") or ""
        if xf_port_raw:
            try:
                port = int(xf_port_raw.split(",")[0].strip())
            except ValueError:
                port = _default_port(scheme)
        return scheme, host, port

    scheme = (req.url.scheme or "http").lower()
    host = (req.url.hostname or "").lower()
    port = int(req.url.port) if req.url.port else _default_port(scheme)
    return scheme, host, port


def _is_same_origin(request: Request) -> bool:
    """Verify same-origin using Origin or Referer headers.

    Behavior:
    - If Origin is present, require exact scheme/host/port match with server.
    - Else if Referer is present, validate its origin similarly.
    - Else (no headers): allow to not break non-browser clients.
    Proxy awareness: Only trust X-Forwarded-* when COURSEGATE_TRUST_PROXY=true.
    """
    try:
        server = _parse_server(request)
        origin_val = request.headers.get("origin")
        if origin_val:
            return _parse_origin(origin_val) == server
        referer_val = request.headers.get("referer")
        if referer_val:
            return _parse_origin(referer_val) == server
        return True
    except ValueError:
        return False


def _private_headers(vary_origin: bool) -> dict[str, str]:
    headers = {"Cache-Control": "private, no-store"}
    if vary_origin:
        headers["Vary"] = "Origin"
    return headers


def _json_private(payload, *, status_code: int = 200, vary_origin: bool = False) -> JSONResponse:
    """Return a JSONResponse with cache disabled for shared caches and browsers.

    Quiz and grant endpoints expose user- and role-scoped data; respond with
    "private, no-store" so proxies and browsers never keep a copy.
    """
    return JSONResponse(content=payload, status_code=status_code, headers=_private_headers(vary_origin))


def _private_error(payload: dict, *, status_code: int, vary_origin: bool = False) -> JSONResponse:
    """Return error JSON with private, no-store cache headers."""
    return JSONResponse(content=payload, status_code=status_code, headers=_private_headers(vary_origin))


def _csrf_guard(request: Request) -> JSONResponse | None:
    """Enforce same-origin for browser write requests.

    Behavior:
        - In prod-like environments or when STRICT_CSRF=true, require that
          either Origin or Referer is present AND same-origin. Missing or
          foreign headers result in 403 with detail=csrf_violation.
        - In non-strict modes, fall back to best-effort `_is_same_origin`,
          which permits requests without these headers (server-to-server calls).
    """
    strict_toggle = (os.getenv("STRICT_CSRF", "false") or "").lower() == "true"
    strict = is_prod_like() or strict_toggle

    if strict:
        origin_present = request.headers.get("origin") or request.headers.get("referer")
        if not origin_present or not _is_same_origin(request):
            return _private_error({"error": "forbidden", "detail": "csrf_violation"}, status_code=403)
        return None

    if not _is_same_origin(request):
        return _private_error({"error": "forbidden", "detail": "csrf_violation"}, status_code=403)
    return None


def _require_principal(request: Request) -> tuple[Principal | None, JSONResponse | None]:
    """Return (principal, error_response) from the user set by the auth middleware."""
    user = getattr(request.state, "user", None)
    principal = principal_from_user(user if isinstance(user, dict) else None)
    if principal is None:
        return None, _private_error({"error": "unauthenticated"}, status_code=401)
    return principal, None


def _error_response(exc: Exception) -> JSONResponse:
    """Map a domain error to its HTTP status.

    LookupError -> 404, PermissionError -> 403, ValueError -> 400. The error
    `code` becomes the `detail` field.
    """
    code = getattr(exc, "code", None) or "invalid_input"
    if isinstance(exc, LookupError):
        return _private_error({"error": "not_found", "detail": code}, status_code=404)
    if isinstance(exc, PermissionError):
        return _private_error({"error": "forbidden", "detail": code}, status_code=403)
    return _private_error({"error": "bad_request", "detail": code}, status_code=400)


DOMAIN_ERRORS = (LookupError, PermissionError, ValueError)
