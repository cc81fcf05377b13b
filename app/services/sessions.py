from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from typing import Protocol


@dataclass(slots=True)
class SessionRecord:
    user_id: str
    expires_at: float


class SessionStore(Protocol):
    def get(self, session_id: str) -> str | None: ...
    def set(self, session_id: str, user_id: str) -> None: ...
    def destroy(self, session_id: str) -> None: ...


class InMemorySessionStore:
    """Session id -> user id mapping with a TTL, scoped to one instance.

    This service does not sign users in. A sign-in component sharing the
    instance populates it through `create`/`set`; the app lifespan's sweep
    calls `prune` to drop expired entries.
    """

    def __init__(self, ttl_seconds: int = 86400, clock=time.monotonic):
        self.ttl_seconds = max(int(ttl_seconds), 1)
        self._clock = clock
        self._sessions: dict[str, SessionRecord] = {}

    def get(self, session_id: str) -> str | None:
        record = self._sessions.get(session_id)
        if record is None:
            return None
        if record.expires_at <= self._clock():
            self._sessions.pop(session_id, None)
            return None
        return record.user_id

    def set(self, session_id: str, user_id: str) -> None:
        self._sessions[session_id] = SessionRecord(
            user_id=user_id,
            expires_at=self._clock() + self.ttl_seconds,
        )

    def destroy(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def create(self, user_id: str) -> str:
        """Mint a new session id for `user_id` and return it."""
        session_id = secrets.token_urlsafe(24)
        self.set(session_id, user_id)
        return session_id

    def prune(self) -> int:
        now = self._clock()
        expired = [sid for sid, record in self._sessions.items() if record.expires_at <= now]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)
