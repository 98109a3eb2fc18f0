"""
Repository wiring for the web adapters.

Why:
    Routes must not know whether they talk to Postgres or to the in-memory
    fallback. This module builds the teaching repository and the attempt
    ledger lazily (so `.env` and pytest fixtures are applied first) and lets
    tests swap either implementation.

Behavior:
    - Prefers the Postgres-backed repositories when psycopg is importable and
      a DSN is configured.
    - Falls back to in-memory repositories otherwise, logging a warning. Both
      repositories always come from the same backend.
"""
from __future__ import annotations

import logging

from coursegate.learning.repo_memory import InMemoryAttemptLedger
from coursegate.teaching.repo_memory import InMemoryTeachingRepo
from coursegate.web.config import database_dsn

logger = logging.getLogger("coursegate.web")

_TEACHING_REPO = None
_ATTEMPT_LEDGER = None


def _build_default_repos():
    """Return `(teaching_repo, attempt_ledger)` from one backend."""
    dsn = database_dsn()
    if not dsn:
        logger.warning("No database DSN configured; using in-memory repositories")
        return InMemoryTeachingRepo(), InMemoryAttemptLedger()
    try:
        from coursegate.learning.repo_db import DBAttemptLedger
        from coursegate.teaching.repo_db import DBTeachingRepo

        return DBTeachingRepo(dsn), DBAttemptLedger(dsn)
    except Exception as exc:
        logger.warning("DB repositories unavailable (%s); using in-memory fallback", exc.__class__.__name__)
        return InMemoryTeachingRepo(), InMemoryAttemptLedger()


def _ensure_wired() -> None:
    global _TEACHING_REPO, _ATTEMPT_LEDGER
    if _TEACHING_REPO is None or _ATTEMPT_LEDGER is None:
        teaching, ledger = _build_default_repos()
        if _TEACHING_REPO is None:
            _TEACHING_REPO = teaching
        if _ATTEMPT_LEDGER is None:
            _ATTEMPT_LEDGER = ledger


def get_teaching_repo():
    _ensure_wired()
    return _TEACHING_REPO


def get_attempt_ledger():
    _ensure_wired()
    return _ATTEMPT_LEDGER


def set_teaching_repo(repo) -> None:
    """Allow tests to swap the teaching repository implementation."""
    global _TEACHING_REPO
    _TEACHING_REPO = repo


def set_attempt_ledger(ledger) -> None:
    """Allow tests to swap the attempt ledger implementation."""
    global _ATTEMPT_LEDGER
    _ATTEMPT_LEDGER = ledger


def use_in_memory() -> tuple[InMemoryTeachingRepo, InMemoryAttemptLedger]:
    """Install fresh in-memory repositories and return them (tests, local dev)."""
    teaching, ledger = InMemoryTeachingRepo(), InMemoryAttemptLedger()
    set_teaching_repo(teaching)
    set_attempt_ledger(ledger)
    return teaching, ledger
