"""
auth/dependencies.py -- FastAPI Depends() helpers for the authorization gate.

Protected routes accept exactly one credential: an access token in the
Authorization: Bearer <token> header. Verification is stateless -- the token
is checked by the TokenIssuer on app.state, with no store lookup.

get_current_claims() raises HTTP 401 when the header is absent or malformed
  or the token fails verification (invalid, expired, malformed).
require_roles(*roles) wraps it and raises HTTP 403 when the role claim is
  outside the route's allowed set.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.errors import TokenError
from auth.models import Claims, Role
from auth.tokens import TokenIssuer

_BEARER_PREFIX = "Bearer "
_CHALLENGE = {"WWW-Authenticate": "Bearer"}


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": code, "message": message},
        headers=_CHALLENGE,
    )


def get_bearer_token(request: Request) -> str | None:
    """Return the token from a well-formed Authorization: Bearer header, else None."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith(_BEARER_PREFIX):
        return None
    token = auth_header[len(_BEARER_PREFIX) :].strip()
    return token or None


def get_current_claims(request: Request) -> Claims:
    """Require a valid access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: Claims = Depends(get_current_claims)): ...
    """
    token = get_bearer_token(request)
    if token is None:
        raise _unauthorized("unauthorized", "Authentication required.")

    issuer: TokenIssuer = request.app.state.token_issuer
    try:
        claims = issuer.validate(token)
    except TokenError as exc:
        raise _unauthorized(exc.code, exc.message) from exc
    request.state.claims = claims
    return claims


def require_roles(*roles: Role) -> Callable[[Request], Claims]:
    """Build a dependency that admits only the given roles.

    Raises HTTP 401 if unauthenticated, HTTP 403 if the role is not allowed:
        @router.get("/admin-only")
        async def route(claims: Claims = Depends(require_roles(Role.ADMIN))): ...
    """
    if not roles:
        raise ValueError("require_roles() needs at least one role.")
    allowed = frozenset(roles)

    def dependency(request: Request) -> Claims:
        claims = get_current_claims(request)
        if claims.role not in allowed:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Your role is not allowed to access this resource."},
            )
        return claims

    return dependency
