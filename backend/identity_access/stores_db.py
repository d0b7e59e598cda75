"""
Database-backed SessionStore for production use (Postgres).

Why: In-memory sessions are not durable and do not scale across instances. This
store persists sessions in the `app_sessions` table while keeping the cookie
opaque (only the session id leaves the server).

Note: This module uses psycopg3. It is imported only when enabled via
`SESSIONS_BACKEND=db`. Tests can continue to use the in-memory store.
"""
from __future__ import annotations

from typing import List, Optional, Sequence
import os
import re
import secrets
import time

try:
    import psycopg
    from psycopg import sql as _sql
    from psycopg.types.json import Json
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional dependency in dev
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False

from .stores import SessionRecord


def _now() -> int:
    return int(time.time())


class DBSessionStore:
    """Postgres-backed session store.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string.
    table:
        Fully qualified table name. Defaults to `public.app_sessions`.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.app_sessions") -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBSessionStore")
        self._dsn = dsn or os.getenv("SESSION_DATABASE_URL") or os.getenv("DATABASE_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBSessionStore")
        # Validate table identifier early
        if not re.match(r'^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$', table or ''):
            raise ValueError("Invalid table name")
        self._table = table

    def _ident(self):
        if "." in self._table:
            schema, name = self._table.split(".", 1)
        else:
            schema, name = "public", self._table
        return _sql.SQL("{}.{}").format(_sql.Identifier(schema), _sql.Identifier(name))

    def create(self, *, sub: str, name: str = "", roles: Sequence[str], ttl_seconds: int = 3600) -> SessionRecord:
        sid = secrets.token_urlsafe(24)
        expires_at = _now() + ttl_seconds
        stmt = _sql.SQL(
            "insert into {} (session_id, sub, roles, name, expires_at) values (%s, %s, %s, %s, to_timestamp(%s))"
        ).format(self._ident())
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (sid, sub, Json(list(roles)), name, expires_at))
        return SessionRecord(session_id=sid, sub=sub, name=name, roles=list(roles), expires_at=expires_at)

    def get(self, session_id: str) -> Optional[SessionRecord]:
        stmt = _sql.SQL(
            "select session_id, sub, roles, name, extract(epoch from expires_at)::bigint "
            "from {} where session_id = %s and expires_at > now()"
        ).format(self._ident())
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (session_id,))
                row = cur.fetchone()
        if not row:
            return None
        roles = row[2] if isinstance(row[2], list) else []
        return SessionRecord(
            session_id=row[0],
            sub=row[1],
            roles=roles,
            name=row[3] or "",
            expires_at=int(row[4]) if row[4] is not None else None,
        )

    def delete(self, session_id: str) -> None:
        stmt = _sql.SQL("delete from {} where session_id = %s").format(self._ident())
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (session_id,))

    def count_active(self, sub: str) -> int:
        stmt = _sql.SQL("select count(*) from {} where sub = %s and expires_at >= now()").format(self._ident())
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (sub,))
                row = cur.fetchone()
        return int(row[0]) if row else 0

    def count_all_active(self) -> int:
        stmt = _sql.SQL("select count(*) from {} where expires_at >= now()").format(self._ident())
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt)
                row = cur.fetchone()
        return int(row[0]) if row else 0

    def delete_for_user(self, sub: str) -> int:
        stmt = _sql.SQL("delete from {} where sub = %s").format(self._ident())
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (sub,))
                return cur.rowcount or 0

    def update_roles(self, sub: str, roles: List[str]) -> None:
        stmt = _sql.SQL("update {} set roles = %s where sub = %s").format(self._ident())
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (Json(list(roles)), sub))
