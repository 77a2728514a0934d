"""
auth/sessions.py -- Session registry: the revocation authority for tokens.

A bearer token authenticates a request only when the token issuer accepts its
signature and expiry AND this registry still holds an ACTIVE, unexpired
session for it. Logout flips the session to INACTIVE, which ends the token's
usefulness long before its exp claim.

Sign-in policy: every sign-in creates a fresh session. Tokens carry a random
jti, so one token never maps to two rows and existing sessions are never
reused.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.interfaces import SessionRepository
from auth.models import Session

logger = logging.getLogger("keyward.auth.sessions")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionRegistry:
    def __init__(
        self,
        store: SessionRepository,
        ttl_seconds: int = 60 * 60 * 24,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def create_session(
        self,
        user_id: str,
        token: str,
        ip_address: str | None = None,
        expires_at: datetime | None = None,
    ) -> Session:
        """Insert a new ACTIVE session.

        expires_at defaults to now + ttl_seconds; callers that know the token's
        exp claim pass it so the row and the token expire together.
        """
        now = self._clock()
        session = self._store.create(
            Session(
                user_id=user_id,
                token=token,
                ip_address=ip_address,
                created_at=now,
                expires_at=expires_at or now + timedelta(seconds=self.ttl_seconds),
            )
        )
        logger.info("Session %s created for user %s", session.id, user_id)
        return session

    def find_active_by_token(self, token: str) -> Session | None:
        return self._store.find_active_by_token(token, self._clock())

    def find_active_by_user_and_token(self, user_id: str, token: str) -> Session | None:
        return self._store.find_active_by_user_and_token(user_id, token, self._clock())

    def revoke(self, session_id: int) -> None:
        """Deactivate a session. Revoking an already inactive session is a no-op."""
        if self._store.deactivate(session_id):
            logger.info("Session %s revoked", session_id)
        else:
            logger.debug("Session %s was already inactive", session_id)

    def expire_stale(self) -> int:
        """Flip every session past its expiry to INACTIVE. Returns the count."""
        count = self._store.deactivate_expired(self._clock())
        if count:
            logger.info("Deactivated %d expired sessions", count)
        return count
