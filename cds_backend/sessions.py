"""
In-memory session store

Tokens never leave the server; the browser only holds the opaque session id
in an HTTP-only cookie.
"""
import asyncio
import logging
import secrets
import time
from typing import Optional

from fastapi import Request, Response

from . import config
from .errors import NotAuthenticated

logger = logging.getLogger(__name__)

# session_id -> dict with PKCE state, tokens and endpoints
SESSIONS = {}


def _idle_too_long(session, now) -> bool:
    return now - session["last_accessed"] > config.SESSION_TTL_SECONDS


def purge_expired_sessions() -> int:
    """Drop every session idle past the TTL, returns how many were dropped"""
    now = time.time()
    expired = [sid for sid, session in SESSIONS.items() if _idle_too_long(session, now)]
    for sid in expired:
        del SESSIONS[sid]
    if expired:
        logger.info(f"Purged {len(expired)} expired session(s)")
    return len(expired)


def create_session() -> tuple:
    purge_expired_sessions()
    session_id = secrets.token_urlsafe(32)
    now = time.time()
    SESSIONS[session_id] = {
        # OAuth2 handshake (cleared after the code exchange)
        "state": None,
        "code_verifier": None,
        "launch": None,

        # Endpoints used for this session
        "authorization_endpoint": config.AUTHORIZATION_ENDPOINT,
        "token_endpoint": config.TOKEN_ENDPOINT,
        "fhir_base": config.FHIR_BASE_URL,

        # OAuth2 tokens (populated by the callback)
        "access_token": None,
        "refresh_token": None,
        "granted_scope": None,
        "id_token": None,
        "expires_at": None,
        # serializes token refreshes across concurrent requests
        "refresh_lock": asyncio.Lock(),

        "created_at": now,
        "last_accessed": now,
    }
    return session_id, SESSIONS[session_id]


def get_session(session_id: Optional[str]) -> Optional[dict]:
    if not session_id:
        return None
    session = SESSIONS.get(session_id)
    if session is None:
        return None

    now = time.time()
    if _idle_too_long(session, now):
        logger.info("Session idle past TTL, discarding")
        del SESSIONS[session_id]
        return None

    session["last_accessed"] = now
    return session


def destroy_session(session_id: Optional[str]) -> None:
    if session_id:
        SESSIONS.pop(session_id, None)


def is_authenticated(session: Optional[dict]) -> bool:
    return bool(session and session.get("access_token"))


def session_id_from(request: Request) -> Optional[str]:
    return request.cookies.get(config.SESSION_COOKIE_NAME)


def set_session_cookie(response: Response, session_id: str) -> None:
    response.set_cookie(
        key=config.SESSION_COOKIE_NAME,
        value=session_id,
        max_age=config.SESSION_TTL_SECONDS,
        httponly=True,
        samesite="lax",
        secure=config.SESSION_COOKIE_SECURE,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(config.SESSION_COOKIE_NAME)


def current_session(request: Request) -> Optional[dict]:
    """Session for the request cookie, or None"""
    return get_session(session_id_from(request))


def require_session(request: Request) -> dict:
    """FastAPI dependency: authenticated session or 401"""
    session = current_session(request)
    if not is_authenticated(session):
        raise NotAuthenticated()
    return session
