"""
api/main.py -- FastAPI application entry point for keyward.

Exposes the credential lifecycle service over HTTP. All business rules live in
auth/; this module only wires and translates.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware    -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware -- enforces per-route rate limits from api.limiter

Lifespan is the composition root: it builds the engine, the stores and the
AuthService once at startup and disposes the engine at shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse
from api.routes.v1.auth import router as auth_router
from auth.service import create_auth_service
from auth.store import create_auth_engine
from core.config import get_settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("keyward.api")

# ---------------------------------------------------------------------------
# Lifespan -- composition root
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build every collaborator once and tear the engine down on shutdown.

    Settings are validated first (missing SECRET_KEY or an inconsistent
    password policy abort startup here), then the schema is created.
    """
    settings = get_settings()
    logger.info("keyward API starting up")
    app.state.engine = create_auth_engine(settings.database_url)
    app.state.auth_service = create_auth_service(settings, app.state.engine)
    logger.info(
        "Auth initialized (token_ttl=%ds, otp_ttl=%ds, default_status=%s)",
        settings.token_expire_seconds,
        settings.otp_ttl_seconds,
        settings.default_user_status,
    )

    yield

    app.state.engine.dispose()
    logger.info("keyward API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="keyward API",
    description="Sign-up, sign-in, session revocation and OTP password reset.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves the API in the same {"error": {code, message, detail}}
# envelope, so clients parse one error schema.
# ---------------------------------------------------------------------------


def _error_response(
    status_code: int,
    code: str,
    message: str,
    detail: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    envelope = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=envelope.model_dump(), headers=headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 for sign-in / forgot-password floods, with a Retry-After hint."""
    logger.warning("Rate limit hit on %s from %s", request.url.path, get_remote_address(request))
    retry_after = int(getattr(exc, "retry_after", 60))
    return _error_response(
        429,
        "rate_limited",
        "Too many requests.",
        detail=str(exc.detail),
        headers={"Retry-After": str(retry_after)},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Field locations only. Submitted values (passwords) are never echoed.
    fields = ", ".join(".".join(str(part) for part in err["loc"]) for err in exc.errors())
    return _error_response(422, "validation_error", "Request validation failed.", detail=fields)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Routes raise HTTPException with a {code, message} dict; pass it through as the error."""
    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=headers)
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort. The exception goes to the log, never to the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")
