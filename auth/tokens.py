"""
auth/tokens.py -- Signed access tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry sub (user id), email, iat, exp and
       a random jti. The jti makes every issuance unique, so two sign-ins in
       the same second still map to two distinct session rows.

  Verification: signature, algorithm and expiry are all checked by
       jwt.decode; any failure (including missing claims and malformed input)
       is raised uniformly as InvalidTokenError. Callers never see JWTError.

  Stateless: TokenIssuer holds only the secret and the default TTL. Whether a
       validly signed token is still usable is the session registry's call.

Layer rule: no imports from api/ or core/. The secret is passed in by the
composition root rather than read from settings at import time.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import InvalidTokenError
from auth.models import TokenClaims

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ("sub", "email", "iat", "exp", "jti")


class TokenIssuer:
    """Creates and verifies HS256 access tokens.

    Usage:
        issuer = TokenIssuer(secret_key, expire_seconds=86400)
        token = issuer.issue("user-uuid", "j@x.com")
        claims = issuer.verify(token)    # raises InvalidTokenError on any failure
    """

    def __init__(self, secret_key: str, expire_seconds: int = 60 * 60 * 24) -> None:
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds

    def issue(self, subject_id: str, email: str, ttl: int | None = None) -> str:
        """Encode a signed JWT for the subject.

        Args:
            subject_id: User id stored as the sub claim.
            email:      User email, carried for convenience of the caller.
            ttl:        Lifetime in seconds. None uses the configured default.
        """
        duration = self.expire_seconds if ttl is None else ttl
        issued_at = datetime.now(timezone.utc)
        payload = {
            "sub": subject_id,
            "email": email,
            "iat": issued_at,
            "exp": issued_at + timedelta(seconds=duration),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> TokenClaims:
        """Decode and verify a JWT. Raises InvalidTokenError on any failure."""
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except (JWTError, AttributeError, TypeError, ValueError) as exc:
            raise InvalidTokenError(str(exc)) from exc
        missing = [claim for claim in _REQUIRED_CLAIMS if claim not in payload]
        if missing:
            raise InvalidTokenError(f"Token is missing claims: {', '.join(missing)}")
        try:
            return TokenClaims(
                subject_id=str(payload["sub"]),
                email=str(payload["email"]),
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
                token_id=str(payload["jti"]),
            )
        except (TypeError, ValueError, OverflowError) as exc:
            raise InvalidTokenError("Token claims are malformed") from exc
