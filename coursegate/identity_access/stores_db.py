"""
Postgres-backed session lookup for deployed instances.

Why: Sessions are issued by the identity service and persisted in Postgres
(`public.app_sessions`). This app never logs anyone in; it only resolves the
opaque cookie id to the subject and roles the session row carries. The
in-memory `SessionStore` stays the default for development and tests.

Note: Imported only when `SESSIONS_BACKEND=db`.
"""
from __future__ import annotations

from typing import Optional
import re

from coursegate.web.config import database_dsn

from .stores import SessionRecord

try:
    import psycopg
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional dependency in dev
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")


class DBSessionStore:
    """Read-side session store over the identity service's session table.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string; defaults to the app DSN.
    table:
        Fully qualified table name. Defaults to `public.app_sessions`.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.app_sessions") -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBSessionStore")
        self._dsn = dsn or database_dsn()
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBSessionStore")
        # The name is interpolated into SQL, so only plain identifiers pass.
        if not _TABLE_RE.match(table or ""):
            raise ValueError("Invalid table name")
        self._table = table

    def get(self, session_id: str) -> Optional[SessionRecord]:
        if not session_id:
            return None
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"select session_id, sub, roles, name, extract(epoch from expires_at)::bigint "
                    f"from {self._table} where session_id = %s and expires_at > now()",
                    (session_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        roles = [r for r in row[2] if isinstance(r, str)] if isinstance(row[2], list) else []
        return SessionRecord(
            session_id=str(row[0]),
            sub=str(row[1]),
            name=row[3] or "",
            roles=roles,
            expires_at=int(row[4]) if row[4] is not None else None,
        )


__all__ = ["DBSessionStore", "HAVE_PSYCOPG"]
