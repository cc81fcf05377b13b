from __future__ import annotations

from fastapi import Depends, Request

from app.agents.orchestrator import ResearchOrchestrator
from app.config import settings
from app.errors import AuthenticationError
from app.services.sessions import InMemorySessionStore, SessionStore

USER_ID_HEADER = "X-User-Id"

_orchestrator: ResearchOrchestrator | None = None
_session_store: SessionStore | None = None


def get_orchestrator() -> ResearchOrchestrator:
    """Get or create the process-wide research orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ResearchOrchestrator()
    return _orchestrator


def get_session_store() -> SessionStore:
    global _session_store
    if _session_store is None:
        _session_store = InMemorySessionStore(ttl_seconds=settings.session_ttl_seconds)
    return _session_store


def get_current_user_id(
    request: Request,
    sessions: SessionStore = Depends(get_session_store),
) -> str:
    """Resolve the caller's stable user id from the session cookie or a trusted proxy header."""
    session_id = request.cookies.get(settings.session_cookie_name, "")
    if session_id:
        user_id = sessions.get(session_id)
        if user_id:
            return user_id

    if settings.auth_header_enabled:
        user_id = request.headers.get(USER_ID_HEADER, "").strip()
        if user_id:
            return user_id

    raise AuthenticationError()
