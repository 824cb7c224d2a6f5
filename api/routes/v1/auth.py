"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login           -- email/password in the JSON body; token pair
  GET  /api/v1/auth/login           -- same operation, credentials in the query string
  POST /api/v1/auth/register        -- create an account (does not log in)
  POST /api/v1/auth/refresh         -- exchange a refresh token for a new pair
  GET  /api/v1/auth/token-status    -- liveness check for the caller's access token
  GET  /api/v1/auth/me              -- identity carried by the caller's access token
  GET  /api/v1/auth/accounts        -- look up an account by email

Error handling:
  Handlers do not build error responses. AuthService raises AuthError
  subclasses and api/main.py maps them to the ErrorResponse envelope.

Security:
  [H2] Both login transports are rate-limited per IP (Settings.login_rate_limit).
  [M5] Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AccountResponse,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    TokenPairResponse,
    TokenStatusResponse,
)
from auth.dependencies import require_roles
from auth.models import AccountDraft, Claims, Role, TokenPair
from auth.service import AuthService
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/login, GET /api/v1/auth/login:  public, rate limited
# - POST /api/v1/auth/register:                      public
# - POST /api/v1/auth/refresh:                       public -- the refresh value is the credential
# - GET  /api/v1/auth/token-status, /me, /accounts:  User or Admin (require_roles)
router = APIRouter()

_any_role = require_roles(Role.USER, Role.ADMIN)


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


def _token_response(pair: TokenPair) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=TokenPairResponse.from_pair(pair).model_dump(mode="json", by_alias=True),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_login_rate_limit)  # [H2] must be ABOVE @router so SlowAPIMiddleware resolves the route limit
@router.post("/auth/login", response_model=TokenPairResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return an access/refresh pair.

    Unknown email and wrong password return the same invalid_credentials
    error so the response does not leak which emails are registered.
    """
    service: AuthService = request.app.state.auth_service
    return _token_response(service.login(body.email, body.password))


@limiter.limit(_login_rate_limit)  # [H2]
@router.get("/auth/login", response_model=TokenPairResponse)
def login_with_query(
    request: Request,
    email: Optional[str] = None,
    password: Optional[str] = None,
    credential: Optional[str] = None,
) -> JSONResponse:
    """Query-string transport for login. Same validation and side effects as POST."""
    service: AuthService = request.app.state.auth_service
    return _token_response(service.login(email, password if password is not None else credential))


@router.post("/auth/register", response_model=MessageResponse)
def register(request: Request, body: RegisterRequest) -> MessageResponse:
    """Create an account. The caller must log in afterwards to get tokens."""
    service: AuthService = request.app.state.auth_service
    service.register(
        AccountDraft(
            email=body.email,
            password=body.password,
            name=body.name,
            surname=body.surname,
            role=body.role,
        )
    )
    return MessageResponse(message="Account is created")


@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Rotate a refresh token. The presented value stops working immediately."""
    service: AuthService = request.app.state.auth_service
    return _token_response(service.refresh(body.refresh_token))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/token-status", response_model=TokenStatusResponse)
def token_status(request: Request, claims: Claims = Depends(_any_role)) -> TokenStatusResponse:
    """Only reachable once the gate has accepted the bearer token."""
    service: AuthService = request.app.state.auth_service
    return TokenStatusResponse(status=service.token_status(claims))


@router.get("/auth/me", response_model=MeResponse)
def me(claims: Claims = Depends(_any_role)) -> MeResponse:
    """Return the identity carried by the caller's access token."""
    return MeResponse.from_claims(claims)


@router.get("/auth/accounts", response_model=AccountResponse)
def get_account(
    request: Request,
    email: Optional[str] = None,
    claims: Claims = Depends(_any_role),
) -> AccountResponse:
    """Look up an account by email. The password digest is never returned."""
    service: AuthService = request.app.state.auth_service
    return AccountResponse.from_account(service.find_account(email))
