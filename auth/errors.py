"""
auth/errors.py -- Failure taxonomy for the authentication core.

Every failure the core can report is an AuthError subclass carrying a stable
machine-readable code, an HTTP status family and a human-readable default
message. api/main.py turns any AuthError into the standard ErrorResponse
envelope with a single exception handler, so routes never build error
responses by hand.

Status families:
  400 -- caller-correctable input problems (missing fields, bad credentials,
         duplicate email, unknown refresh token, unknown account on lookup)
  401 -- access-token verification failures (surfaced by the gate)
  503 -- the store is unavailable; fatal to the request, never retried

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all failures raised by the auth core."""

    code: str = "auth_error"
    status_code: int = 400
    message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or type(self).message
        super().__init__(self.message)


class ValidationError(AuthError):
    code = "validation_error"
    message = "A required field is missing."


class InvalidCredentials(AuthError):
    """Unknown email and wrong password are deliberately indistinguishable."""

    code = "invalid_credentials"
    message = "Invalid email or password."


class DuplicateEmail(AuthError):
    code = "duplicate_email"
    message = "The email address is already used by another account."


class UnknownRefreshToken(AuthError):
    code = "unknown_refresh_token"
    message = "The refresh token is not recognised."


class AccountNotFound(AuthError):
    code = "account_not_found"
    message = "There is no account with that email address."


class TokenError(AuthError):
    """Base class for access-token verification failures."""

    code = "token_error"
    status_code = 401
    message = "Access token rejected."


class TokenInvalid(TokenError):
    code = "token_invalid"
    message = "Access token signature is invalid."


class TokenExpired(TokenError):
    code = "token_expired"
    message = "Access token has expired."


class TokenMalformed(TokenError):
    code = "token_malformed"
    message = "Access token could not be parsed."


class PersistenceError(AuthError):
    code = "persistence_error"
    status_code = 503
    message = "The account store is unavailable."
