"""Unit tests for auth/service.py -- the credential lifecycle flows.

Covers:
- sign_up: success, duplicate email/username, policy rejection, email
  normalization, configurable initial status, lost uniqueness race
- sign_in: success, unknown user, wrong password, inactive account (all the
  same UNAUTHORIZED outcome), one fresh session per sign-in
- validate_bearer_token: revoked, expired, forged and deactivated-user tokens
- logout: revokes only the caller's live session
- change_password / forgot_password / reset_password, including code expiry,
  single use and policy-before-consume ordering
- Unexpected storage errors surface as INTERNAL, never as exceptions
- create_auth_service wires a working service from Settings
"""

import pytest
from sqlalchemy import text

from auth.errors import ErrorKind
from auth.models import PublicUser, UserStatus
from auth.service import AuthService, create_auth_service, normalize_email
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import Settings

PASSWORD = "Strong#123"
NEW_PASSWORD = "Better#456"


def _sign_up(service: AuthService, username: str = "jdoe", email: str = "j@x.com") -> PublicUser:
    result = service.sign_up(username, email, PASSWORD)
    assert result.ok, result.error
    return result.value


def _sign_in(service: AuthService, username: str = "jdoe", password: str = PASSWORD) -> str:
    result = service.sign_in(username, password)
    assert result.ok, result.error
    return result.value


class _BlindUserStore:
    """UserStore whose lookups miss, so the service's pre-checks never fire."""

    def __init__(self, inner: UserStore) -> None:
        self._inner = inner

    def find_by_email(self, email):
        return None

    def find_by_username(self, username):
        return None

    def find_by_id(self, user_id):
        return self._inner.find_by_id(user_id)

    def create(self, user):
        return self._inner.create(user)

    def update_password(self, user_id, hashed_password):
        return self._inner.update_password(user_id, hashed_password)


class _BrokenUserStore:
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise RuntimeError("database is gone")

        return fail


def _deactivate(user_store: UserStore, user_id: str) -> None:
    with user_store.engine.connect() as conn:
        conn.execute(text("UPDATE users SET status = 'INACTIVE' WHERE id = :id"), {"id": user_id})
        conn.commit()


class TestSignUp:
    def test_success(self, service: AuthService) -> None:
        result = service.sign_up("jdoe", "j@x.com", PASSWORD, first_name="Jane", last_name="Doe")
        assert result.ok
        user = result.value
        assert user.id
        assert user.username == "jdoe"
        assert user.email == "j@x.com"
        assert user.status is UserStatus.ACTIVE
        assert user.first_name == "Jane" and user.last_name == "Doe"
        assert not hasattr(user, "hashed_password")

    def test_password_is_hashed(self, service: AuthService, user_store: UserStore) -> None:
        user = _sign_up(service)
        stored = user_store.find_by_id(user.id)
        assert stored.hashed_password != PASSWORD
        assert stored.hashed_password.startswith("$2b$")

    def test_duplicate_email(self, service: AuthService) -> None:
        _sign_up(service)
        result = service.sign_up("other", "j@x.com", PASSWORD)
        assert result.kind is ErrorKind.CONFLICT

    def test_duplicate_email_different_case(self, service: AuthService) -> None:
        _sign_up(service)
        result = service.sign_up("other", "  J@X.COM ", PASSWORD)
        assert result.kind is ErrorKind.CONFLICT

    def test_duplicate_username(self, service: AuthService) -> None:
        _sign_up(service)
        result = service.sign_up("jdoe", "other@x.com", PASSWORD)
        assert result.kind is ErrorKind.CONFLICT

    def test_username_is_case_sensitive(self, service: AuthService) -> None:
        _sign_up(service)
        assert service.sign_up("JDoe", "other@x.com", PASSWORD).ok

    def test_weak_password(self, service: AuthService, user_store: UserStore) -> None:
        result = service.sign_up("jdoe", "j@x.com", "weak")
        assert result.kind is ErrorKind.INVALID_PASSWORD
        assert result.error.message.startswith("Password")
        assert user_store.find_by_username("jdoe") is None

    def test_conflict_checked_before_policy(self, service: AuthService) -> None:
        _sign_up(service)
        assert service.sign_up("jdoe", "j@x.com", "weak").kind is ErrorKind.CONFLICT

    def test_email_normalized(self, service: AuthService) -> None:
        user = _sign_up(service, email="  Jane.Doe@Example.COM ")
        assert user.email == "jane.doe@example.com"

    def test_inactive_default_status(self, make_service) -> None:
        service = make_service(default_status=UserStatus.INACTIVE)
        assert _sign_up(service).status is UserStatus.INACTIVE

    def test_lost_uniqueness_race_is_conflict(self, make_service, user_store: UserStore) -> None:
        _sign_up(make_service())
        racing = make_service(users=_BlindUserStore(user_store))
        assert racing.sign_up("jdoe", "j@x.com", PASSWORD).kind is ErrorKind.CONFLICT


class TestSignIn:
    def test_success(self, service: AuthService) -> None:
        user = _sign_up(service)
        token = _sign_in(service)
        claims = service.validate_bearer_token(token)
        assert claims.ok
        assert claims.value.subject_id == user.id
        assert claims.value.email == "j@x.com"

    def test_unknown_user(self, service: AuthService) -> None:
        result = service.sign_in("ghost", PASSWORD)
        assert result.kind is ErrorKind.UNAUTHORIZED

    def test_unknown_user_still_runs_bcrypt(self, service: AuthService, hasher, monkeypatch) -> None:
        calls = []
        monkeypatch.setattr(hasher, "burn", lambda plain: calls.append(plain))
        service.sign_in("ghost", PASSWORD)
        assert calls == [PASSWORD]

    def test_wrong_password(self, service: AuthService) -> None:
        _sign_up(service)
        result = service.sign_in("jdoe", "Wrong#123")
        assert result.kind is ErrorKind.UNAUTHORIZED

    def test_failures_indistinguishable(self, service: AuthService) -> None:
        _sign_up(service)
        unknown = service.sign_in("ghost", PASSWORD)
        wrong = service.sign_in("jdoe", "Wrong#123")
        assert unknown.error == wrong.error

    def test_inactive_account_rejected(self, make_service) -> None:
        service = make_service(default_status=UserStatus.INACTIVE)
        _sign_up(service)
        result = service.sign_in("jdoe", PASSWORD)
        assert result.kind is ErrorKind.UNAUTHORIZED
        assert result.error.message == "Invalid username or password."

    def test_username_lookup_is_exact(self, service: AuthService) -> None:
        _sign_up(service)
        assert service.sign_in("JDOE", PASSWORD).kind is ErrorKind.UNAUTHORIZED

    def test_each_sign_in_gets_a_session(self, service: AuthService) -> None:
        _sign_up(service)
        first, second = _sign_in(service), _sign_in(service)
        assert first != second
        assert service.validate_bearer_token(first).ok
        assert service.validate_bearer_token(second).ok

    def test_session_records_ip_and_token_expiry(self, service: AuthService, session_store) -> None:
        _sign_up(service)
        token = service.sign_in("jdoe", PASSWORD, ip_address="203.0.113.7").value
        claims = TokenIssuer("test-secret-key-that-is-at-least-32-chars").verify(token)
        with session_store.engine.connect() as conn:
            row = conn.execute(text("SELECT id FROM sessions WHERE token = :t"), {"t": token}).fetchone()
        session = session_store.find_by_id(row.id)
        assert session.ip_address == "203.0.113.7"
        assert session.expires_at == claims.expires_at


class TestBearerValidation:
    def test_garbage_token(self, service: AuthService) -> None:
        assert service.validate_bearer_token("not-a-token").kind is ErrorKind.UNAUTHORIZED

    def test_signed_token_without_session(self, service: AuthService) -> None:
        user = _sign_up(service)
        token = TokenIssuer("test-secret-key-that-is-at-least-32-chars").issue(user.id, user.email)
        assert service.validate_bearer_token(token).kind is ErrorKind.UNAUTHORIZED

    def test_session_expired(self, service: AuthService, clock) -> None:
        _sign_up(service)
        token = _sign_in(service)
        clock.advance(3601)
        assert service.validate_bearer_token(token).kind is ErrorKind.UNAUTHORIZED

    def test_deactivated_user(self, service: AuthService, user_store: UserStore) -> None:
        user = _sign_up(service)
        token = _sign_in(service)
        _deactivate(user_store, user.id)
        assert service.validate_bearer_token(token).kind is ErrorKind.UNAUTHORIZED


class TestLogout:
    def test_logout_revokes_session(self, service: AuthService) -> None:
        user = _sign_up(service)
        token = _sign_in(service)
        assert service.logout(user.id, token).ok
        assert service.validate_bearer_token(token).kind is ErrorKind.UNAUTHORIZED

    def test_second_logout_not_found(self, service: AuthService) -> None:
        user = _sign_up(service)
        token = _sign_in(service)
        service.logout(user.id, token)
        result = service.logout(user.id, token)
        assert result.kind is ErrorKind.NOT_FOUND
        assert result.error.message == "User access token not found."

    def test_other_users_token(self, service: AuthService) -> None:
        _sign_up(service)
        other = _sign_up(service, username="other", email="o@x.com")
        token = _sign_in(service)
        assert service.logout(other.id, token).kind is ErrorKind.NOT_FOUND
        assert service.validate_bearer_token(token).ok

    def test_logout_keeps_other_sessions(self, service: AuthService) -> None:
        user = _sign_up(service)
        first, second = _sign_in(service), _sign_in(service)
        service.logout(user.id, first)
        assert service.validate_bearer_token(second).ok


class TestChangePassword:
    def test_success(self, service: AuthService) -> None:
        user = _sign_up(service)
        assert service.change_password(user.id, PASSWORD, NEW_PASSWORD).ok
        assert service.sign_in("jdoe", PASSWORD).kind is ErrorKind.UNAUTHORIZED
        assert service.sign_in("jdoe", NEW_PASSWORD).ok

    def test_wrong_current(self, service: AuthService) -> None:
        user = _sign_up(service)
        result = service.change_password(user.id, "Wrong#123", NEW_PASSWORD)
        assert result.kind is ErrorKind.BAD_REQUEST
        assert service.sign_in("jdoe", PASSWORD).ok

    def test_weak_new(self, service: AuthService) -> None:
        user = _sign_up(service)
        result = service.change_password(user.id, PASSWORD, "weak")
        assert result.kind is ErrorKind.INVALID_PASSWORD
        assert service.sign_in("jdoe", PASSWORD).ok

    def test_unknown_user(self, service: AuthService) -> None:
        result = service.change_password("no-such-id", PASSWORD, NEW_PASSWORD)
        assert result.kind is ErrorKind.UNAUTHORIZED


class TestForgotPassword:
    def test_sends_code(self, service: AuthService, notifier) -> None:
        _sign_up(service)
        assert service.forgot_password("j@x.com").ok
        assert len(notifier.sent) == 1
        email, code = notifier.sent[0]
        assert email == "j@x.com"
        assert len(code) == 6 and code.isdigit()

    def test_code_not_returned(self, service: AuthService) -> None:
        _sign_up(service)
        assert service.forgot_password("j@x.com").value is None

    def test_email_normalized(self, service: AuthService, notifier) -> None:
        _sign_up(service)
        assert service.forgot_password(" J@X.com").ok
        assert notifier.sent[0][0] == "j@x.com"

    def test_unknown_email(self, service: AuthService, notifier) -> None:
        result = service.forgot_password("ghost@x.com")
        assert result.kind is ErrorKind.BAD_REQUEST
        assert notifier.sent == []

    def test_unknown_email_concealed(self, make_service, notifier) -> None:
        service = make_service(conceal_unknown_email=True)
        assert service.forgot_password("ghost@x.com").ok
        assert notifier.sent == []


class TestResetPassword:
    def test_success(self, service: AuthService, notifier) -> None:
        _sign_up(service)
        service.forgot_password("j@x.com")
        code = notifier.last_code("j@x.com")
        assert service.reset_password("j@x.com", code, NEW_PASSWORD).ok
        assert service.sign_in("jdoe", NEW_PASSWORD).ok
        assert service.sign_in("jdoe", PASSWORD).kind is ErrorKind.UNAUTHORIZED

    def test_code_single_use(self, service: AuthService, notifier) -> None:
        _sign_up(service)
        service.forgot_password("j@x.com")
        code = notifier.last_code("j@x.com")
        service.reset_password("j@x.com", code, NEW_PASSWORD)
        result = service.reset_password("j@x.com", code, "Third#789")
        assert result.kind is ErrorKind.BAD_REQUEST
        assert result.error.message == "Invalid OTP."

    def test_wrong_code(self, service: AuthService, notifier) -> None:
        _sign_up(service)
        service.forgot_password("j@x.com")
        code = notifier.last_code("j@x.com")
        wrong = f"{(int(code) + 1) % 1_000_000:06d}"
        assert service.reset_password("j@x.com", wrong, NEW_PASSWORD).kind is ErrorKind.BAD_REQUEST

    def test_expired_code(self, service: AuthService, notifier, clock) -> None:
        _sign_up(service)
        service.forgot_password("j@x.com")
        code = notifier.last_code("j@x.com")
        clock.advance(600)
        assert service.reset_password("j@x.com", code, NEW_PASSWORD).kind is ErrorKind.BAD_REQUEST
        assert service.sign_in("jdoe", PASSWORD).ok

    def test_weak_password_does_not_spend_code(self, service: AuthService, notifier) -> None:
        _sign_up(service)
        service.forgot_password("j@x.com")
        code = notifier.last_code("j@x.com")
        assert service.reset_password("j@x.com", code, "weak").kind is ErrorKind.INVALID_PASSWORD
        assert service.reset_password("j@x.com", code, NEW_PASSWORD).ok

    def test_code_bound_to_user(self, service: AuthService, notifier) -> None:
        _sign_up(service)
        _sign_up(service, username="other", email="o@x.com")
        service.forgot_password("j@x.com")
        code = notifier.last_code("j@x.com")
        assert service.reset_password("o@x.com", code, NEW_PASSWORD).kind is ErrorKind.BAD_REQUEST

    def test_only_latest_code_works(self, service: AuthService, notifier, monkeypatch) -> None:
        _sign_up(service)
        codes = iter([111111, 222222])
        monkeypatch.setattr("auth.otp.secrets.randbelow", lambda bound: next(codes))
        service.forgot_password("j@x.com")
        service.forgot_password("j@x.com")
        assert service.reset_password("j@x.com", "111111", NEW_PASSWORD).kind is ErrorKind.BAD_REQUEST
        assert service.reset_password("j@x.com", "222222", NEW_PASSWORD).ok

    def test_unknown_email(self, service: AuthService) -> None:
        result = service.reset_password("ghost@x.com", "123456", NEW_PASSWORD)
        assert result.kind is ErrorKind.BAD_REQUEST


class TestInternalErrors:
    def test_storage_failure_becomes_internal(self, make_service) -> None:
        service = make_service(users=_BrokenUserStore())
        for result in (
            service.sign_up("jdoe", "j@x.com", PASSWORD),
            service.sign_in("jdoe", PASSWORD),
            service.change_password("id", PASSWORD, NEW_PASSWORD),
            service.forgot_password("j@x.com"),
            service.reset_password("j@x.com", "123456", NEW_PASSWORD),
        ):
            assert result.kind is ErrorKind.INTERNAL

    def test_failure_is_logged(self, make_service, caplog) -> None:
        service = make_service(users=_BrokenUserStore())
        service.sign_in("jdoe", PASSWORD)
        assert "Unexpected failure during sign-in" in caplog.text


def test_normalize_email() -> None:
    assert normalize_email("  Jane@Example.COM\t") == "jane@example.com"


def test_create_auth_service_end_to_end(engine, notifier) -> None:
    settings = Settings(secret_key="wiring-test-secret-key-of-32-chars-min", bcrypt_rounds=4)
    service = create_auth_service(settings, engine, notifier=notifier)
    user = service.sign_up("wired", "wired@x.com", PASSWORD).value
    token = service.sign_in("wired", PASSWORD).value
    assert service.validate_bearer_token(token).value.subject_id == user.id
    service.forgot_password("wired@x.com")
    assert notifier.sent[0][0] == "wired@x.com"


@pytest.mark.parametrize("status", ["ACTIVE", "INACTIVE"])
def test_create_auth_service_default_status(engine, status: str) -> None:
    settings = Settings(
        secret_key="wiring-test-secret-key-of-32-chars-min",
        bcrypt_rounds=4,
        default_user_status=status,
    )
    service = create_auth_service(settings, engine)
    assert service.sign_up("wired", "wired@x.com", PASSWORD).value.status is UserStatus(status)
