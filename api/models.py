"""
API request and response models for keyward REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py, which own the domain shape.
Route handlers map between the two.

Password fields carry only a generous upper bound here; the configurable
complexity policy is enforced by the service, not by the transport.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from auth.models import PublicUser, TokenClaims

# Deliberately loose: deliverability is proven by the reset code, not a regex.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# Identifiers are trimmed; secrets (passwords, reset codes) are passed through
# byte for byte so the policy judges exactly what the user typed.
Username = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
Email = Annotated[str, StringConstraints(strip_whitespace=True, max_length=255, pattern=EMAIL_PATTERN)]
PersonName = Annotated[str, StringConstraints(strip_whitespace=True, max_length=255)]
Secret = Annotated[str, StringConstraints(min_length=1, max_length=255)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignUpRequest(BaseModel):
    username: Username
    email: Email
    password: Secret
    first_name: Optional[PersonName] = None
    last_name: Optional[PersonName] = None


class SignInRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    password: Secret


class ChangePasswordRequest(BaseModel):
    current_password: Secret
    new_password: Secret


class ForgotPasswordRequest(BaseModel):
    email: Email


class ResetPasswordRequest(BaseModel):
    email: Email
    otp: str = Field(min_length=1, max_length=16)
    new_password: Secret


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of an account. There is no password field to leak."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    email: str
    status: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: str = ""

    @classmethod
    def from_public(cls, user: PublicUser) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            status=user.status.value,
            first_name=user.first_name,
            last_name=user.last_name,
            created_at=user.created_at or "",
        )


class SignInResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class TokenCheckResponse(BaseModel):
    """Verified contents of a live access token."""

    subject_id: str
    email: str
    issued_at: datetime
    expires_at: datetime

    @classmethod
    def from_claims(cls, claims: TokenClaims) -> "TokenCheckResponse":
        return cls(
            subject_id=claims.subject_id,
            email=claims.email,
            issued_at=claims.issued_at,
            expires_at=claims.expires_at,
        )


class MessageResponse(BaseModel):
    message: str


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope returned by every failing endpoint."""

    error: ErrorDetail
