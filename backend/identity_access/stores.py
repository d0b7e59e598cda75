"""
In-memory session store for development and tests.

Why: Keep sessions opaque to the client. For production, use the DB-backed
store in `stores_db` (enabled via SESSIONS_BACKEND=db).

Security: Cookies carry only an opaque session id. Session data stays server-side.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional
import secrets
import threading
import time


def _now() -> int:
    return int(time.time())


@dataclass
class SessionRecord:
    session_id: str
    sub: str
    name: str
    roles: List[str] = field(default_factory=list)
    expires_at: Optional[int] = None


class SessionStore:
    def __init__(self):
        self._data: Dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def create(self, *, sub: str, name: str = "", roles: List[str], ttl_seconds: int = 3600) -> SessionRecord:
        sid = secrets.token_urlsafe(24)
        rec = SessionRecord(session_id=sid, sub=sub, name=name, roles=list(roles), expires_at=_now() + ttl_seconds)
        with self._lock:
            self._data[sid] = rec
        return rec

    def get(self, session_id: str) -> Optional[SessionRecord]:
        rec = self._data.get(session_id)
        if not rec:
            return None
        if rec.expires_at and rec.expires_at < _now():
            with self._lock:
                self._data.pop(session_id, None)
            return None
        return rec

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._data.pop(session_id, None)

    def count_active(self, sub: str) -> int:
        now = _now()
        return sum(1 for rec in list(self._data.values()) if rec.sub == sub and (not rec.expires_at or rec.expires_at >= now))

    def count_all_active(self) -> int:
        now = _now()
        return sum(1 for rec in list(self._data.values()) if not rec.expires_at or rec.expires_at >= now)

    def delete_for_user(self, sub: str) -> int:
        with self._lock:
            doomed = [sid for sid, rec in self._data.items() if rec.sub == sub]
            for sid in doomed:
                del self._data[sid]
        return len(doomed)

    def update_roles(self, sub: str, roles: List[str]) -> None:
        """Propagate a role change to live sessions of `sub`."""
        with self._lock:
            for rec in self._data.values():
                if rec.sub == sub:
                    rec.roles = list(roles)
