"""
auth/interfaces.py -- Collaborator contracts consumed by the auth services.

The services depend on these protocols, not on SQLAlchemy. auth/store.py
provides the SQL implementations; tests may pass any object with the same
methods. Every timestamp argument is a timezone-aware UTC datetime.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from auth.models import OtpRecord, Session, User


class UserRepository(Protocol):
    def find_by_email(self, email: str) -> User | None: ...

    def find_by_username(self, username: str) -> User | None: ...

    def find_by_id(self, user_id: str) -> User | None: ...

    def create(self, user: User) -> User:
        """Insert user and return it with id and timestamps set.

        Must raise sqlalchemy.exc.IntegrityError when username or email is taken.
        """
        ...

    def update_password(self, user_id: str, hashed_password: str) -> bool: ...


class SessionRepository(Protocol):
    def create(self, session: Session) -> Session: ...

    def find_active_by_token(self, token: str, now: datetime) -> Session | None: ...

    def find_active_by_user_and_token(self, user_id: str, token: str, now: datetime) -> Session | None: ...

    def deactivate(self, session_id: int) -> bool: ...

    def deactivate_expired(self, now: datetime) -> int: ...


class OtpRepository(Protocol):
    def create(self, record: OtpRecord) -> OtpRecord: ...

    def find_valid(self, user_id: str, code_hash: str, now: datetime) -> OtpRecord | None: ...

    def consume(self, user_id: str, code_hash: str, now: datetime) -> bool:
        """Atomically delete a matching unexpired record. True if one was deleted."""
        ...

    def delete_all_for_user(self, user_id: str) -> int: ...

    def purge_expired(self, now: datetime) -> int: ...


class Notifier(Protocol):
    def send_otp(self, email: str, code: str) -> None: ...
