"""
auth/sessions.py -- Session Store Adapter over AuthStore.

A session binds a server-generated random id to the tokens issued at login
plus client metadata. Sessions are created at login and deleted at logout;
otherwise they expire passively at expires_at (there is no sweeper).

Session ids come from secrets.token_urlsafe(64): 64 random bytes, URL-safe
base64, so they can travel in the X-Session-Token header unescaped.

Refresh does not touch the session record. See DESIGN.md for that decision.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.errors import NotFoundError
from auth.models import Session
from auth.store import AuthStore

logger = logging.getLogger("etax.auth.sessions")

_SESSION_ID_BYTES = 64


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_session_id() -> str:
    return secrets.token_urlsafe(_SESSION_ID_BYTES)


class SessionManager:
    def __init__(
        self,
        store: AuthStore,
        ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.ttl = ttl
        self._clock = clock

    def open(
        self,
        user_id: int,
        access_token: str,
        refresh_token: str,
        user_agent: str = "",
        ip_address: str = "",
    ) -> Session:
        """Persist a new session and return it."""
        now = self._clock()
        session = Session(
            id=generate_session_id(),
            user_id=user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=now + self.ttl,
            created_at=now,
            last_used_at=now,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        self.store.create_session(session)
        return session

    def revoke(self, session_id: str) -> Session:
        """Delete a session. Raises NotFoundError if it does not exist.

        Returns the deleted session so the caller can audit who logged out.
        """
        session = self.store.get_session(session_id)
        if session is None or not self.store.delete_session(session_id):
            raise NotFoundError("Session not found")
        logger.info("Session revoked for user_id=%s", session.user_id)
        return session
