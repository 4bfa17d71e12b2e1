"""
In-memory SessionStore for development and tests.

Why: Keep sessions opaque to the client. The cookie carries only a random
session id; role and identity stay server-side. For production, use the
DB-backed store in `stores_db`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence
import secrets
import threading
import time

DEFAULT_SESSION_TTL_SECONDS = 60 * 60 * 24 * 5  # 5 days


def _now() -> int:
    return int(time.time())


@dataclass
class SessionRecord:
    session_id: str
    sub: str
    roles: list[str]
    name: str
    email: str = ""
    expires_at: Optional[int] = None
    ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS
    created_at: int = field(default_factory=_now)


class SessionStore:
    def __init__(self) -> None:
        self._data: Dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def create(
        self,
        *,
        sub: str,
        roles: Sequence[str],
        name: str,
        email: str = "",
        ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
    ) -> SessionRecord:
        sid = secrets.token_urlsafe(32)
        rec = SessionRecord(
            session_id=sid,
            sub=sub,
            roles=list(roles),
            name=name,
            email=email,
            expires_at=_now() + ttl_seconds,
            ttl_seconds=ttl_seconds,
        )
        with self._lock:
            self._data[sid] = rec
        return rec

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            rec = self._data.get(session_id)
            if not rec:
                return None
            if rec.expires_at is not None and rec.expires_at <= _now():
                self._data.pop(session_id, None)
                return None
            return rec

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._data.pop(session_id, None)

    def delete_for_sub(self, sub: str) -> int:
        """Revoke every session of a user; returns the number removed."""
        with self._lock:
            doomed = [sid for sid, rec in self._data.items() if rec.sub == sub]
            for sid in doomed:
                self._data.pop(sid, None)
        return len(doomed)
