"""
Database-backed SessionStore for production use (Postgres).

Why: In-memory sessions are not durable and do not scale across instances. This
store persists sessions in Postgres while keeping the cookie opaque.

Security:
- Intended to be used with a service connection string; the application role
  must not read `app_sessions` directly.
- Only the opaque `session_id` is set in the cookie; all user context stays
  server-side.

Note: This module uses psycopg3. It is imported only when enabled via
`SESSIONS_BACKEND=db`. Tests use the in-memory store or a fake driver.
"""
from __future__ import annotations

from typing import Optional, Sequence
import os
import re
import time

try:
    import psycopg
    from psycopg import sql
    from psycopg.types.json import Json
    HAVE_PSYCOPG = True
except ImportError:  # pragma: no cover - optional dependency in dev
    psycopg = None  # type: ignore
    sql = None  # type: ignore
    Json = None  # type: ignore
    HAVE_PSYCOPG = False

from .stores import DEFAULT_SESSION_TTL_SECONDS, SessionRecord

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")


def _now() -> int:
    return int(time.time())


class DBSessionStore:
    """Postgres-backed session store.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string.
    table:
        Table name, optionally schema-qualified. Defaults to `public.app_sessions`.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.app_sessions") -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBSessionStore")
        self._dsn = dsn or os.getenv("SESSION_DATABASE_URL") or os.getenv("DATABASE_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBSessionStore")
        if not _TABLE_RE.match(table or ""):
            raise ValueError("Invalid table name")
        self._table = table

    def _ident(self):
        if "." in self._table:
            schema, name = self._table.split(".", 1)
        else:
            schema, name = "public", self._table
        if sql is None:  # fake drivers in tests
            return f"{schema}.{name}"
        return sql.Identifier(schema, name)

    def _stmt(self, template: str):
        ident = self._ident()
        if isinstance(ident, str):
            return template.replace("{}", ident)
        return sql.SQL(template).format(ident)

    def create(
        self,
        *,
        sub: str,
        roles: Sequence[str],
        name: str,
        email: str = "",
        ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
    ) -> SessionRecord:
        expires_at = _now() + ttl_seconds
        stmt = self._stmt(
            "insert into {} (session_id, sub, roles, name, email, expires_at) "
            "values (encode(gen_random_bytes(32), 'hex'), %s, %s, %s, %s, to_timestamp(%s)) "
            "returning session_id"
        )
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (sub, Json(list(roles)), name, email, expires_at))
                row = cur.fetchone()
        sid = str(row[0]) if row else ""
        return SessionRecord(
            session_id=sid,
            sub=sub,
            roles=list(roles),
            name=name,
            email=email,
            expires_at=expires_at,
            ttl_seconds=ttl_seconds,
        )

    def get(self, session_id: str) -> Optional[SessionRecord]:
        stmt = self._stmt(
            "select session_id, sub, roles, name, email, extract(epoch from expires_at)::bigint "
            "from {} where session_id = %s and expires_at > now()"
        )
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
            email=row[4] or "",
            expires_at=int(row[5]) if row[5] is not None else None,
        )

    def delete(self, session_id: str) -> None:
        stmt = self._stmt("delete from {} where session_id = %s")
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (session_id,))

    def delete_for_sub(self, sub: str) -> int:
        stmt = self._stmt("delete from {} where sub = %s")
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (sub,))
                return int(getattr(cur, "rowcount", 0) or 0)
