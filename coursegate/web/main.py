"coursegate web application"
from __future__ import annotations

import logging
import os
import sys

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from coursegate.identity_access.domain import primary_role
from coursegate.identity_access.stores import SessionStore
from coursegate.web import config as _cfg
from coursegate.web.routes.course_teachers import course_teachers_router
from coursegate.web.routes.quizzes import quizzes_router


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out/opt-in via COURSEGATE_ENABLE_DOTENV (default true
      outside pytest).
    """
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("COURSEGATE_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


try:
    from dotenv import load_dotenv
    if _should_load_dotenv():
        load_dotenv()
except ImportError:
    pass

# Minimal production safety checks (fail-fast on insecure config)
_cfg.ensure_secure_config_on_startup()

logger = logging.getLogger("coursegate.web")
SESSION_COOKIE_NAME = "coursegate_session"

app = FastAPI(title="coursegate", description="Course permissions and quiz attempts", version="0.1.0")


def _under_pytest() -> bool:
    return "pytest" in sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


def build_session_store(backend: str | None = None):
    """Return the session store the auth middleware consults.

    `db` reads sessions the identity service writes to `public.app_sessions`;
    anything else yields the in-memory store used in development and tests.
    """
    choice = (backend or _cfg.sessions_backend()).strip().lower()
    if choice == "db":
        from coursegate.identity_access.stores_db import DBSessionStore
        return DBSessionStore()
    return SessionStore()


# Tests create sessions directly in the in-memory store.
SESSION_STORE = SessionStore() if _under_pytest() else build_session_store()


# --- Auth & Security Middleware ------------------------------------------------

def _is_public_path(path: str) -> bool:
    return path in ("/health", "/favicon.ico")


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    path = request.url.path
    if _is_public_path(path):
        return await call_next(request)

    sid = request.cookies.get(SESSION_COOKIE_NAME)
    rec = None
    if sid:
        try:
            rec = SESSION_STORE.get(sid)
        except Exception as exc:
            logger.warning("Session store get failed: %s", exc.__class__.__name__)

    if not rec:
        headers = {"Cache-Control": "private, no-store", "Vary": "Origin"}
        return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=headers)

    # Expose minimal, read-only user context for downstream handlers.
    request.state.user = {"sub": rec.sub, "name": rec.name, "role": primary_role(rec.roles), "roles": rec.roles}
    return await call_next(request)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    if _cfg.is_prod_like():
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


# --- Routers -------------------------------------------------------------------

app.include_router(quizzes_router)
app.include_router(course_teachers_router)


@app.get("/health")
async def health_check():
    # Minimal health endpoint used by orchestrators and tests.
    return JSONResponse({"status": "healthy"}, headers={"Cache-Control": "private, no-store"})
