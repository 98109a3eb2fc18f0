"""
Configuration and startup security checks for coursegate.

Why: Quiz results and teacher grants are user-scoped data; we must prevent
accidental insecure deployments. This module provides a single guard that
enforces minimal production safety constraints without burdening local
development.

Permissions: The caller needs no special privileges. The function simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os

PROD_LIKE_ENVS = frozenset({"prod", "production", "stage", "staging"})


def current_environment() -> str:
    return (os.getenv("COURSEGATE_ENV", "dev") or "dev").strip().lower()


def _is_prod_like(env: str) -> bool:
    return (env or "").lower() in PROD_LIKE_ENVS


def is_prod_like() -> bool:
    return _is_prod_like(current_environment())


def database_dsn() -> str:
    """Return the configured DSN (context override first) or an empty string."""
    return (os.getenv("COURSEGATE_DATABASE_URL") or os.getenv("DATABASE_URL") or "").strip()


def sessions_backend() -> str:
    """Return the session backend (`memory` or `db`); defaults to `memory`."""
    return (os.getenv("SESSIONS_BACKEND", "memory") or "memory").strip().lower()


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - A database DSN must be configured; the in-memory fallback is dev-only.
    - The DSN must not explicitly disable TLS.
    - Sessions must come from the identity service table (`SESSIONS_BACKEND=db`).
    """
    if not is_prod_like():
        return  # dev/test remain permissive

    dsn = database_dsn()
    if not dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL is unset in production. The in-memory store is for development only."
        )

    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )

    if sessions_backend() != "db":
        raise SystemExit(
            "Refusing to start: SESSIONS_BACKEND must be 'db' in production. In-memory sessions cannot be issued there."
        )
