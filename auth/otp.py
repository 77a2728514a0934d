"""
auth/otp.py -- One-time passcodes for the password-reset flow.

Codes are six ASCII digits drawn from the secrets module, valid for a short
TTL and bound to one user id. Only HMAC-SHA256(SECRET_KEY, code) is stored,
so a leaked otp_codes table does not reveal live codes. The digest is
deterministic, which keeps lookup a plain indexed equality match.

consume() validates and deletes in one storage operation; the reset flow uses
it instead of validate() followed by invalidate(), so a code cannot be spent
twice by concurrent requests.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.interfaces import OtpRepository
from auth.models import OtpRecord

logger = logging.getLogger("keyward.auth.otp")

OTP_LENGTH = 6
_OTP_RE = re.compile(r"[0-9]{6}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OtpManager:
    """Generates, validates and expires reset codes.

    Usage:
        otp = OtpManager(OtpStore(engine), secret_key, ttl_seconds=600)
        code = otp.generate(user.id)
        otp.consume(user.id, code)   # True once, False afterwards
    """

    def __init__(
        self,
        store: OtpRepository,
        secret_key: str,
        ttl_seconds: int = 600,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._secret_key = secret_key.encode("utf-8")
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def generate(self, user_id: str) -> str:
        """Create a fresh code for user_id, replacing any outstanding ones."""
        code = f"{secrets.randbelow(10**OTP_LENGTH):0{OTP_LENGTH}d}"
        now = self._clock()
        self._store.delete_all_for_user(user_id)
        self._store.create(
            OtpRecord(
                user_id=user_id,
                code_hash=self._digest(code),
                created_at=now,
                expires_at=now + timedelta(seconds=self.ttl_seconds),
            )
        )
        logger.info("Reset code issued for user %s (valid %ds)", user_id, self.ttl_seconds)
        return code

    def validate(self, user_id: str, code: str) -> bool:
        """True if an unexpired code for user_id matches. Does not spend the code."""
        if not _is_well_formed(code):
            return False
        return self._store.find_valid(user_id, self._digest(code), self._clock()) is not None

    def consume(self, user_id: str, code: str) -> bool:
        """Atomically validate and spend a code. True only for the first successful call."""
        if not _is_well_formed(code):
            return False
        return self._store.consume(user_id, self._digest(code), self._clock())

    def invalidate(self, user_id: str) -> None:
        """Remove every outstanding code for user_id."""
        removed = self._store.delete_all_for_user(user_id)
        logger.debug("Invalidated %d reset codes for user %s", removed, user_id)

    def purge_expired(self) -> int:
        return self._store.purge_expired(self._clock())

    def _digest(self, code: str) -> str:
        return hmac.new(self._secret_key, code.encode("utf-8"), hashlib.sha256).hexdigest()


def _is_well_formed(code: str) -> bool:
    return isinstance(code, str) and _OTP_RE.fullmatch(code) is not None


class LoggingNotifier:
    """Default Notifier: records that a code was sent without revealing it.

    Real delivery (SMTP, a mail API) is an external collaborator; deployments
    plug in any object with a send_otp(email, code) method.
    """

    def send_otp(self, email: str, code: str) -> None:
        logger.info("Reset code dispatched to %s", _mask_email(email))


def _mask_email(email: str) -> str:
    local, _, domain = email.partition("@")
    return f"{local[:1]}***@{domain}" if domain else "***"
