"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore, SessionStore and OtpStore are
the repositories; the _row_to_* functions are the mappers. Services never
touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(username) and UNIQUE(email) are the final authority on duplicate
  sign-ups. The service's pre-check only gives a friendlier path; a racing
  insert still fails here with IntegrityError, which the service maps to the
  same Conflict outcome.

  OtpStore.consume() is a single DELETE whose row count decides validity, so
  two concurrent resets cannot both spend the same code.

Timestamps are stored as UTC ISO-8601 strings with a fixed microsecond width,
which keeps lexical order equal to chronological order for the expiry
comparisons done in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import Pool

from auth.models import OtpRecord, Session, SessionStatus, User, UserStatus

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(255)),
    Column("last_name", String(255)),
    Column("status", String(10), nullable=False, server_default=UserStatus.ACTIVE.value),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token", Text, nullable=False, unique=True),
    Column("ip_address", String(64)),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("status", String(10), nullable=False, server_default=SessionStatus.ACTIVE.value),
)

_otp_codes = Table(
    "otp_codes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), nullable=False),
    Column("code_hash", String(64), nullable=False),  # HMAC-SHA256 hex
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Index("ix_otp_codes_user_code", "user_id", "code_hash"),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_auth_engine(db_url: str, poolclass: type[Pool] | None = None) -> Engine:
    """Create the engine shared by all auth stores and ensure the schema exists.

    poolclass overrides SQLAlchemy's pool choice, e.g. SingletonThreadPool for
    a named shared-memory SQLite URI.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine_kwargs: dict = {"connect_args": connect_args}
    if poolclass is not None:
        engine_kwargs["poolclass"] = poolclass
    engine = create_engine(db_url, **engine_kwargs)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value)


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore(create_auth_engine("sqlite:///:memory:"))
        user = store.create(User(username="jdoe", email="j@x.com", hashed_password=h))
        store.find_by_email("j@x.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, user: User) -> User:
        """Insert a new user and return it with id and timestamps filled in.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. The caller treats that exactly like its own duplicate pre-check.
        """
        user_id = user.id or str(uuid.uuid4())
        now = _iso(_utcnow())
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    status=UserStatus(user.status).value,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        created = self.find_by_id(user_id)
        if created is None:
            raise RuntimeError(f"User {user_id} not found after insert")
        return created

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by exact (already normalized) email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_password(self, user_id: str, hashed_password: str) -> bool:
        """Replace the stored hash. Returns False if user_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(hashed_password=hashed_password, updated_at=_iso(_utcnow()))
            )
            conn.commit()
        return result.rowcount > 0


class SessionStore:
    """Repository for Session records. Rows are deactivated, never deleted."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, session: Session) -> Session:
        created_at = session.created_at or _utcnow()
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=session.user_id,
                    token=session.token,
                    ip_address=session.ip_address,
                    created_at=_iso(created_at),
                    expires_at=_iso(session.expires_at),
                    status=SessionStatus(session.status).value,
                )
            )
            conn.commit()
            session_id = result.inserted_primary_key[0]
        return Session(
            id=session_id,
            user_id=session.user_id,
            token=session.token,
            ip_address=session.ip_address,
            created_at=created_at,
            expires_at=session.expires_at,
            status=session.status,
        )

    def find_active_by_token(self, token: str, now: datetime) -> Session | None:
        """Return the ACTIVE, unexpired session holding token, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where(
                    (_sessions.c.token == token)
                    & (_sessions.c.status == SessionStatus.ACTIVE.value)
                    & (_sessions.c.expires_at > _iso(now))
                )
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def find_active_by_user_and_token(self, user_id: str, token: str, now: datetime) -> Session | None:
        """Like find_active_by_token, but the session must also belong to user_id."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where(
                    (_sessions.c.user_id == user_id)
                    & (_sessions.c.token == token)
                    & (_sessions.c.status == SessionStatus.ACTIVE.value)
                    & (_sessions.c.expires_at > _iso(now))
                )
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def find_by_id(self, session_id: int) -> Session | None:
        """Return a session regardless of status. Used for audits and tests."""
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def deactivate(self, session_id: int) -> bool:
        """Mark a session INACTIVE. Returns True only if it was ACTIVE before."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.id == session_id) & (_sessions.c.status == SessionStatus.ACTIVE.value))
                .values(status=SessionStatus.INACTIVE.value)
            )
            conn.commit()
        return result.rowcount > 0

    def deactivate_expired(self, now: datetime) -> int:
        """Mark every ACTIVE session past its expiry INACTIVE. Returns rows changed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.status == SessionStatus.ACTIVE.value) & (_sessions.c.expires_at <= _iso(now)))
                .values(status=SessionStatus.INACTIVE.value)
            )
            conn.commit()
        return result.rowcount


class OtpStore:
    """Repository for outstanding password-reset codes (stored as HMAC digests)."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, record: OtpRecord) -> OtpRecord:
        created_at = record.created_at or _utcnow()
        with self.engine.connect() as conn:
            result = conn.execute(
                _otp_codes.insert().values(
                    user_id=record.user_id,
                    code_hash=record.code_hash,
                    created_at=_iso(created_at),
                    expires_at=_iso(record.expires_at),
                )
            )
            conn.commit()
            record_id = result.inserted_primary_key[0]
        return OtpRecord(
            id=record_id,
            user_id=record.user_id,
            code_hash=record.code_hash,
            created_at=created_at,
            expires_at=record.expires_at,
        )

    def find_valid(self, user_id: str, code_hash: str, now: datetime) -> OtpRecord | None:
        """Return an unexpired record matching both user_id and code_hash, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _otp_codes.select().where(
                    (_otp_codes.c.user_id == user_id)
                    & (_otp_codes.c.code_hash == code_hash)
                    & (_otp_codes.c.expires_at > _iso(now))
                )
            ).fetchone()
        return _row_to_otp(row) if row is not None else None

    def consume(self, user_id: str, code_hash: str, now: datetime) -> bool:
        """Validate-and-delete in one statement. True if a live record was spent."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _otp_codes.delete().where(
                    (_otp_codes.c.user_id == user_id)
                    & (_otp_codes.c.code_hash == code_hash)
                    & (_otp_codes.c.expires_at > _iso(now))
                )
            )
            conn.commit()
        return result.rowcount > 0

    def delete_all_for_user(self, user_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_otp_codes.delete().where(_otp_codes.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def purge_expired(self, now: datetime) -> int:
        """Delete every expired record. Returns number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_otp_codes.delete().where(_otp_codes.c.expires_at <= _iso(now)))
            conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        status=UserStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        ip_address=row.ip_address,
        created_at=_parse(row.created_at),
        expires_at=_parse(row.expires_at),
        status=SessionStatus(row.status),
    )


def _row_to_otp(row) -> OtpRecord:
    return OtpRecord(
        id=row.id,
        user_id=row.user_id,
        code_hash=row.code_hash,
        created_at=_parse(row.created_at),
        expires_at=_parse(row.expires_at),
    )
