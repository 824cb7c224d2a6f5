"""
api/main.py -- FastAPI application entry point for AccountGate.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds every auth component exactly once from Settings and parks
them on app.state. Nothing downstream reads configuration again: the
signing key lives inside the TokenIssuer, the email policy inside the
AuthService.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError
from auth.service import AuthService
from auth.store import AccountStore, RefreshTokenStore
from auth.tokens import TokenIssuer
from core.config import get_settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("accountgate.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the auth components on startup and release the stores on shutdown.

    Startup order follows the dependency graph: stores and issuer first, then
    the service that composes them.
    """
    logger.info("AccountGate API starting up")
    app.state.account_store = AccountStore(settings.database_url)
    app.state.refresh_store = RefreshTokenStore(settings.database_url)
    app.state.token_issuer = TokenIssuer(
        secret_key=settings.secret_key,
        ttl_seconds=settings.token_expire_seconds,
    )
    app.state.auth_service = AuthService(
        app.state.account_store,
        app.state.token_issuer,
        app.state.refresh_store,
        email_case_sensitive=settings.email_case_sensitive,
    )
    logger.info(
        "Auth initialized (token_ttl=%ss, email_case_sensitive=%s)",
        settings.token_expire_seconds,
        settings.email_case_sensitive,
    )

    yield

    app.state.account_store.close()
    app.state.refresh_store.close()
    logger.info("AccountGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AccountGate API",
    description="Account login, registration and session token lifecycle.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
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
    # Path only: the GET login transport carries credentials in the query string.
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
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the auth failure taxonomy onto its status family (400 / 401 / 503)."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s", exc.code, request.method, request.url.path)
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 for login floods. The limit string stays in the log, not the body."""
    logger.warning("Rate limit hit on %s %s: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(code="rate_limited", message="Too many login attempts. Try again later.")
        ).model_dump(),
        headers={"Retry-After": "60"},
    )


def _invalid_fields(exc: RequestValidationError) -> str:
    # loc is ("body" | "query", field, ...); only the field path is useful to callers.
    return ", ".join(".".join(str(part) for part in err["loc"][1:]) or str(err["loc"][0]) for err in exc.errors())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 for type errors and out-of-set values (e.g. an unknown role).

    Missing fields never land here: request models leave them Optional so
    AuthService reports them as a 400 validation_error instead. Submitted
    values are not echoed back, since they may contain a password.
    """
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request fields have the wrong type or value.",
                detail=_invalid_fields(exc),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Wrap gate rejections (401/403) in the error envelope.

    The gate raises with a structured {code, message} detail, which becomes
    the error field as is. WWW-Authenticate and other headers are kept.
    """
    if isinstance(exc.detail, dict):
        error = exc.detail
    else:
        error = ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail)).model_dump()
    return JSONResponse(status_code=exc.status_code, content={"error": error}, headers=exc.headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 for anything the auth taxonomy does not cover. Details go to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
        ).model_dump(),
    )
