"""
auth/models.py -- Domain dataclasses for credential lifecycle entities.

Pattern: Data class (pure data container, zero logic). Stores map rows to
these shapes; services and routes do the work.

Layer rule: stdlib only. No imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class SessionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


@dataclass
class User:
    """A local account.

    id is an opaque UUID string assigned at sign-up and never changed.
    email is stored lower-cased; username is stored exactly as given.
    hashed_password is a bcrypt hash, never the plaintext.
    """

    username: str
    email: str
    hashed_password: str
    id: str | None = None
    status: UserStatus = UserStatus.ACTIVE
    first_name: str | None = None
    last_name: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE


@dataclass(frozen=True)
class PublicUser:
    """User as returned across the service boundary -- no password hash."""

    id: str
    username: str
    email: str
    status: UserStatus
    first_name: str | None = None
    last_name: str | None = None
    created_at: str | None = None


def to_public(user: User) -> PublicUser:
    return PublicUser(
        id=user.id or "",
        username=user.username,
        email=user.email,
        status=user.status,
        first_name=user.first_name,
        last_name=user.last_name,
        created_at=user.created_at,
    )


@dataclass
class Session:
    """A persisted, revocable record of one issued access token.

    Logout flips status to INACTIVE; rows are kept as an audit trail.
    A session also stops counting as active once expires_at has passed.
    """

    user_id: str
    token: str
    expires_at: datetime
    id: int | None = None
    ip_address: str | None = None
    created_at: datetime | None = None
    status: SessionStatus = SessionStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE


@dataclass
class OtpRecord:
    """An outstanding password-reset code.

    code_hash is HMAC-SHA256(SECRET_KEY, code); the plain code only exists in
    the message sent to the user.
    """

    user_id: str
    code_hash: str
    expires_at: datetime
    id: int | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of an access token."""

    subject_id: str
    email: str
    issued_at: datetime
    expires_at: datetime
    token_id: str
