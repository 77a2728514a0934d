"""
auth/errors.py -- Error taxonomy and result values for credential flows.

Expected outcomes (duplicate email, wrong password, expired code...) are
returned as AuthResult values carrying an ErrorKind rather than raised.
Exceptions are reserved for configuration errors and for InvalidTokenError,
which the stateless token issuer raises and the service converts into an
UNAUTHORIZED result.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    INVALID_PASSWORD = "invalid_password"
    BAD_REQUEST = "bad_request"
    INTERNAL = "internal"


class InvalidTokenError(Exception):
    """Token failed verification: bad signature, expired, wrong algorithm, or malformed."""


@dataclass(frozen=True)
class AuthError:
    kind: ErrorKind
    message: str


@dataclass(frozen=True)
class AuthResult(Generic[T]):
    """Outcome of one flow: either value (error is None) or error."""

    value: T | None = None
    error: AuthError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error else None

    @classmethod
    def success(cls, value: T | None = None) -> AuthResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> AuthResult[T]:
        return cls(error=AuthError(kind=kind, message=message))
