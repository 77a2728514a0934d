"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer authentication.

get_bearer_token() extracts the raw token from "Authorization: Bearer <token>".
get_current_claims() runs AuthService.validate_bearer_token(), which checks the
signature and expiry AND the session registry, so a logged-out token is
rejected even though it is still cryptographically valid.

Layer rule: may import from fastapi (Request/HTTPException) because this
module is part of the FastAPI dependency injection system. No imports from
api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import TokenClaims
from auth.service import AuthService


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_bearer_token(request: Request) -> str:
    """Return the bearer token of the request. Raises HTTP 401 if absent."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized("No access token provided.")
    return token.strip()


def get_current_claims(request: Request) -> TokenClaims:
    """Require a valid bearer token with a live session.

    Use as a FastAPI dependency:
        @router.post("/protected")
        def route(claims: TokenClaims = Depends(get_current_claims)): ...
    """
    service: AuthService = request.app.state.auth_service
    result = service.validate_bearer_token(get_bearer_token(request))
    if not result.ok:
        raise _unauthorized("Authentication required.")
    return result.value
