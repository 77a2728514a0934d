"""
api/routes/v1/auth.py -- Credential lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/sign-up              -- create account; 201 with public user
  POST /api/v1/auth/sign-in              -- password login; returns bearer token
  POST /api/v1/auth/logout               -- revoke the caller's session (bearer)
  GET  /api/v1/auth/check                -- claims of a live bearer token
  POST /api/v1/user/change-password      -- change password (bearer)
  POST /api/v1/user/forgot-password      -- send a reset code by email
  POST /api/v1/user/reset-password       -- set a new password with a reset code

Error policy:
  Sign-up, sign-in and forgot-password surface the service's error kind
  (409/404/401/400). Logout, change-password and reset-password answer every
  failure with a generic 500 internal_error; the real kind is only logged.

Security:
  [H2] sign-in and forgot-password are rate-limited per client IP.
  [M5] Cache-Control: no-store on responses that carry a token.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    MessageResponse,
    ResetPasswordRequest,
    SignInRequest,
    SignInResponse,
    SignUpRequest,
    TokenCheckResponse,
    UserResponse,
)
from auth.dependencies import get_bearer_token, get_current_claims
from auth.errors import AuthResult, ErrorKind
from auth.models import TokenClaims
from auth.service import AuthService
from core.config import get_settings

logger = logging.getLogger("keyward.api.auth")

# Auth policy:
# - POST /auth/sign-up, /auth/sign-in:                  public
# - POST /user/forgot-password, /user/reset-password:   public (reset code is the credential)
# - POST /auth/logout, /user/change-password:           bearer token with live session
# - GET  /auth/check:                                  bearer token with live session
router = APIRouter()

_STATUS_BY_KIND = {
    ErrorKind.CONFLICT: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.INVALID_PASSWORD: 400,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.INTERNAL: 500,
}


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _raise_for(result: AuthResult) -> None:
    """Translate a failed result into an HTTPException carrying its kind."""
    if result.ok:
        return
    raise HTTPException(
        status_code=_STATUS_BY_KIND[result.error.kind],
        detail={"code": result.error.kind.value, "message": result.error.message},
    )


def _raise_masked(result: AuthResult, action: str) -> None:
    """Translate any failure into a generic 500, keeping the real kind in the log."""
    if result.ok:
        return
    logger.warning("%s failed: %s (%s)", action, result.error.kind.value, result.error.message)
    raise HTTPException(
        status_code=500,
        detail={"code": "internal_error", "message": f"Failed to {action}."},
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/sign-up", response_model=UserResponse, status_code=201)
def sign_up(request: Request, body: SignUpRequest) -> UserResponse:
    """Create an account. The response never contains the password hash."""
    result = _service(request).sign_up(
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    _raise_for(result)
    return UserResponse.from_public(result.value)


@router.post("/auth/sign-in", response_model=SignInResponse)
@limiter.limit(lambda: get_settings().sign_in_rate_limit)  # [H2]
def sign_in(request: Request, body: SignInRequest) -> JSONResponse:
    """Authenticate with username and password; return a bearer token.

    Unknown usernames and wrong passwords both answer 401 bad credentials.
    """
    client_ip = request.client.host if request.client else None
    result = _service(request).sign_in(body.username, body.password, ip_address=client_ip)
    _raise_for(result)
    resp = JSONResponse(
        status_code=200,
        content=SignInResponse(
            access_token=result.value,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=get_settings().token_expire_seconds,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/user/forgot-password", response_model=MessageResponse)
@limiter.limit(lambda: get_settings().forgot_password_rate_limit)  # [H2]
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Send a six-digit reset code to the account's email address."""
    _raise_for(_service(request).forgot_password(body.email))
    return MessageResponse(message="OTP sent to the provided email.")


@router.post("/user/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    result = _service(request).reset_password(body.email, body.otp, body.new_password)
    _raise_masked(result, "reset password")
    return MessageResponse(message="Password successfully reset.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    claims: TokenClaims = Depends(get_current_claims),
    token: str = Depends(get_bearer_token),
) -> MessageResponse:
    """Revoke the session behind the presented bearer token."""
    _raise_masked(_service(request).logout(claims.subject_id, token), "log out user")
    return MessageResponse(message="Successfully logged out.")


@router.post("/user/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    claims: TokenClaims = Depends(get_current_claims),
) -> MessageResponse:
    result = _service(request).change_password(claims.subject_id, body.current_password, body.new_password)
    _raise_masked(result, "change password")
    return MessageResponse(message="Password successfully changed.")


@router.get("/auth/check", response_model=TokenCheckResponse)
def check(claims: TokenClaims = Depends(get_current_claims)) -> TokenCheckResponse:
    """Return the verified claims of the presented token.

    Answers 401 once the session is revoked or expired, even though the token
    itself still verifies.
    """
    return TokenCheckResponse.from_claims(claims)
