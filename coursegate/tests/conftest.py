"""
Pytest configuration for coursegate tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors), and
give every test fresh in-memory repositories, sessions and counters.
"""
from __future__ import annotations

import pytest

from coursegate.learning import telemetry
from coursegate.web import wiring


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Keep env-driven toggles from leaking across tests.

    Tests that need prod semantics, strict CSRF or proxy trust opt in
    explicitly with `monkeypatch.setenv`.
    """
    for var in ("COURSEGATE_ENV", "STRICT_CSRF", "COURSEGATE_TRUST_PROXY", "SESSIONS_BACKEND"):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture(autouse=True)
def memory_repos():
    """Install fresh in-memory repositories for the web adapters.

    Returns `(teaching_repo, attempt_ledger)` so tests can seed courses,
    memberships and grants directly.
    """
    repos = wiring.use_in_memory()
    yield repos


@pytest.fixture(autouse=True)
def _reset_telemetry():
    telemetry.reset_for_tests()
    yield
    telemetry.reset_for_tests()
