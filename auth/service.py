"""
auth/service.py -- Credential lifecycle flows.

AuthService coordinates sign-up, sign-in, logout, change-password,
forgot-password and reset-password, plus bearer-token validation for guarded
endpoints. It never touches SQL: every collaborator arrives through the
constructor, and create_auth_service() is the one place that wires the
concrete implementations together.

Every public method returns an AuthResult. Expected rejections carry an
ErrorKind; anything unexpected is logged with its stack trace and returned
as ErrorKind.INTERNAL, so raw storage errors never cross this boundary.

Security:
  [C1] Sign-in answers "unknown username", "wrong password" and "inactive
       account" with the same UNAUTHORIZED result, and runs bcrypt against a
       dummy hash when the user does not exist so timing is equal too.
  Forgot-password reveals unknown emails with BAD_REQUEST unless
       conceal_unknown_email is set, in which case it reports success.
  Reset-password spends the code with OtpManager.consume() (atomic), then
       invalidates any other outstanding codes for the user.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy.exc import IntegrityError

from auth.errors import AuthResult, ErrorKind, InvalidTokenError
from auth.interfaces import Notifier, UserRepository
from auth.models import PublicUser, TokenClaims, User, UserStatus, to_public
from auth.otp import LoggingNotifier, OtpManager
from auth.passwords import PasswordHasher
from auth.policy import PasswordPolicy, compile_policy
from auth.sessions import SessionRegistry
from auth.store import OtpStore, SessionStore, UserStore
from auth.tokens import TokenIssuer

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

    from core.config import Settings

logger = logging.getLogger("keyward.auth")

T = TypeVar("T")


def _guarded(flow: str) -> Callable[[Callable[..., AuthResult[T]]], Callable[..., AuthResult[T]]]:
    """Convert any unexpected exception raised by a flow into an INTERNAL result."""

    def decorator(method: Callable[..., AuthResult[T]]) -> Callable[..., AuthResult[T]]:
        @functools.wraps(method)
        def wrapper(*args, **kwargs) -> AuthResult[T]:
            try:
                return method(*args, **kwargs)
            except Exception:
                logger.exception("Unexpected failure during %s", flow)
                return AuthResult.failure(ErrorKind.INTERNAL, f"An error occurred during {flow}.")

        return wrapper

    return decorator


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    def __init__(
        self,
        users: UserRepository,
        sessions: SessionRegistry,
        tokens: TokenIssuer,
        otp: OtpManager,
        hasher: PasswordHasher,
        policy: PasswordPolicy,
        notifier: Notifier,
        default_status: UserStatus = UserStatus.ACTIVE,
        conceal_unknown_email: bool = False,
    ) -> None:
        self._users = users
        self._sessions = sessions
        self._tokens = tokens
        self._otp = otp
        self._hasher = hasher
        self._policy = policy
        self._notifier = notifier
        self.default_status = UserStatus(default_status)
        self.conceal_unknown_email = conceal_unknown_email

    # ------------------------------------------------------------------
    # Sign-up / sign-in / logout
    # ------------------------------------------------------------------

    @_guarded("sign-up")
    def sign_up(
        self,
        username: str,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> AuthResult[PublicUser]:
        """Create an account. Returns the new user without its password hash."""
        email = normalize_email(email)
        logger.info("Sign-up attempt for %s", email)

        if self._users.find_by_email(email) is not None:
            logger.warning("Sign-up rejected: email %s already registered", email)
            return AuthResult.failure(ErrorKind.CONFLICT, "User with this email already exists.")
        if self._users.find_by_username(username) is not None:
            logger.warning("Sign-up rejected: username %s already taken", username)
            return AuthResult.failure(ErrorKind.CONFLICT, "User with this username already exists.")

        reason = self._policy.check(password)
        if reason is not None:
            logger.warning("Sign-up rejected for %s: password policy", email)
            return AuthResult.failure(ErrorKind.INVALID_PASSWORD, reason)

        try:
            user = self._users.create(
                User(
                    username=username,
                    email=email,
                    hashed_password=self._hasher.hash(password),
                    first_name=first_name,
                    last_name=last_name,
                    status=self.default_status,
                )
            )
        except IntegrityError:
            # A concurrent sign-up won the race past the pre-checks above.
            logger.warning("Sign-up rejected: %s lost a uniqueness race", email)
            return AuthResult.failure(ErrorKind.CONFLICT, "User with this email or username already exists.")

        logger.info("User %s created (status=%s)", user.id, user.status.value)
        return AuthResult.success(to_public(user))

    @_guarded("sign-in")
    def sign_in(self, username: str, password: str, ip_address: str | None = None) -> AuthResult[str]:
        """Verify credentials, mint a token and register its session. Returns the token."""
        logger.info("Sign-in attempt for %s", username)
        user = self._users.find_by_username(username)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            self._hasher.burn(password)
            logger.warning("Sign-in failed for %s: unknown username", username)
            return _bad_credentials()
        if not self._hasher.verify(password, user.hashed_password):
            logger.warning("Sign-in failed for %s: wrong password", username)
            return _bad_credentials()
        if not user.is_active:
            logger.warning("Sign-in failed for %s: account inactive", username)
            return _bad_credentials()

        token = self._tokens.issue(user.id, user.email)
        claims = self._tokens.verify(token)
        self._sessions.create_session(user.id, token, ip_address=ip_address, expires_at=claims.expires_at)
        logger.info("User %s signed in", user.id)
        return AuthResult.success(token)

    @_guarded("logout")
    def logout(self, user_id: str, token: str) -> AuthResult[None]:
        """Revoke the caller's ACTIVE session for token. NOT_FOUND if there is none."""
        session = self._sessions.find_active_by_user_and_token(user_id, token)
        if session is None:
            logger.warning("Logout failed for user %s: no active session", user_id)
            return AuthResult.failure(ErrorKind.NOT_FOUND, "User access token not found.")
        self._sessions.revoke(session.id)
        logger.info("User %s logged out", user_id)
        return AuthResult.success()

    @_guarded("token validation")
    def validate_bearer_token(self, token: str) -> AuthResult[TokenClaims]:
        """Authenticate a bearer token: valid signature AND a live session AND an active user."""
        try:
            claims = self._tokens.verify(token)
        except InvalidTokenError as exc:
            logger.info("Bearer token rejected: %s", exc)
            return _invalid_token()
        session = self._sessions.find_active_by_token(token)
        if session is None or session.user_id != claims.subject_id:
            logger.info("Bearer token rejected: no active session for user %s", claims.subject_id)
            return _invalid_token()
        user = self._users.find_by_id(claims.subject_id)
        if user is None or not user.is_active:
            logger.info("Bearer token rejected: user %s missing or inactive", claims.subject_id)
            return _invalid_token()
        return AuthResult.success(claims)

    # ------------------------------------------------------------------
    # Password management
    # ------------------------------------------------------------------

    @_guarded("change-password")
    def change_password(self, user_id: str, current_password: str, new_password: str) -> AuthResult[None]:
        logger.info("Password change attempt for user %s", user_id)
        user = self._users.find_by_id(user_id)
        if user is None:
            logger.warning("Password change failed: user %s not found", user_id)
            return AuthResult.failure(ErrorKind.UNAUTHORIZED, "User not found.")
        if not self._hasher.verify(current_password, user.hashed_password):
            logger.warning("Password change failed for user %s: current password incorrect", user_id)
            return AuthResult.failure(ErrorKind.BAD_REQUEST, "Current password is incorrect.")
        reason = self._policy.check(new_password)
        if reason is not None:
            logger.warning("Password change failed for user %s: password policy", user_id)
            return AuthResult.failure(ErrorKind.INVALID_PASSWORD, reason)

        self._users.update_password(user_id, self._hasher.hash(new_password))
        logger.info("Password changed for user %s", user_id)
        return AuthResult.success()

    @_guarded("forgot-password")
    def forgot_password(self, email: str) -> AuthResult[None]:
        """Issue a reset code and hand it to the notifier. The code is never returned."""
        email = normalize_email(email)
        logger.info("Forgot-password request for %s", email)
        user = self._users.find_by_email(email)
        if user is None:
            logger.warning("Forgot-password for unknown email %s", email)
            if self.conceal_unknown_email:
                return AuthResult.success()
            return AuthResult.failure(ErrorKind.BAD_REQUEST, "User with this email does not exist.")

        code = self._otp.generate(user.id)
        self._notifier.send_otp(user.email, code)
        return AuthResult.success()

    @_guarded("reset-password")
    def reset_password(self, email: str, otp: str, new_password: str) -> AuthResult[None]:
        email = normalize_email(email)
        logger.info("Reset-password attempt for %s", email)
        user = self._users.find_by_email(email)
        if user is None:
            logger.warning("Reset-password failed: unknown email %s", email)
            return AuthResult.failure(ErrorKind.BAD_REQUEST, "User with this email does not exist.")

        # Policy runs before the code is spent so a rejected password does not burn it.
        reason = self._policy.check(new_password)
        if reason is not None:
            logger.warning("Reset-password failed for user %s: password policy", user.id)
            return AuthResult.failure(ErrorKind.INVALID_PASSWORD, reason)

        if not self._otp.consume(user.id, otp):
            logger.warning("Reset-password failed for user %s: invalid or expired code", user.id)
            return AuthResult.failure(ErrorKind.BAD_REQUEST, "Invalid OTP.")

        self._users.update_password(user.id, self._hasher.hash(new_password))
        self._otp.invalidate(user.id)
        logger.info("Password reset for user %s", user.id)
        return AuthResult.success()


def _bad_credentials() -> AuthResult:
    return AuthResult.failure(ErrorKind.UNAUTHORIZED, "Invalid username or password.")


def _invalid_token() -> AuthResult:
    return AuthResult.failure(ErrorKind.UNAUTHORIZED, "Invalid or expired token.")


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


def create_auth_service(settings: Settings, engine: Engine, notifier: Notifier | None = None) -> AuthService:
    """Wire the SQL stores and the stateless components into an AuthService.

    Called once at process start (API lifespan, CLI). The password policy is
    compiled here from the already validated settings.
    """
    token_issuer = TokenIssuer(settings.secret_key, expire_seconds=settings.token_expire_seconds)
    return AuthService(
        users=UserStore(engine),
        sessions=SessionRegistry(SessionStore(engine), ttl_seconds=settings.token_expire_seconds),
        tokens=token_issuer,
        otp=OtpManager(OtpStore(engine), settings.secret_key, ttl_seconds=settings.otp_ttl_seconds),
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        policy=compile_policy(settings.password_policy()),
        notifier=notifier or LoggingNotifier(),
        default_status=UserStatus(settings.default_user_status),
        conceal_unknown_email=settings.conceal_unknown_email,
    )
