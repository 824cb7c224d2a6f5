"""
API request and response models for AccountGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request fields that the service must report as missing (email, password,
refresh token) are Optional here on purpose: an absent field reaches
AuthService and comes back as a 400 validation_error rather than being
rejected by FastAPI as a 422.

Passwords are passed through untouched. Only identity fields are stripped,
so the POST body and the GET query string hand AuthService the same
credential. The 72-byte bcrypt limit is enforced in AuthService, where both
login transports and registration meet.

Response bodies use camelCase keys (accessToken, refreshToken, ...), the
contract existing clients already consume.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

from auth.models import Account, Claims, Role, TokenPair

_Email = Annotated[str, StringConstraints(strip_whitespace=True, max_length=255)]
_PersonName = Annotated[str, StringConstraints(strip_whitespace=True, max_length=100)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. `credential` is accepted for `password`."""

    email: Optional[_Email] = None
    password: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("password", "credential"),
    )


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    role is validated against the closed Role set here; an unknown role is a
    422 before any service code runs. Omitted role means Role.USER.
    """

    email: Optional[_Email] = None
    password: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("password", "credential"),
    )
    name: Optional[_PersonName] = None
    surname: Optional[_PersonName] = None
    role: Optional[Role] = None


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh."""

    model_config = ConfigDict(str_strip_whitespace=True)

    refresh_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("refreshToken", "refresh_token"),
    )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class TokenPairResponse(_CamelModel):
    """Response body for login and refresh."""

    access_token: str
    refresh_token: str
    expiry: datetime

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenPairResponse":
        return cls(access_token=pair.access_token, refresh_token=pair.refresh_token, expiry=pair.expiry)


class MessageResponse(_CamelModel):
    message: str


class TokenStatusResponse(_CamelModel):
    status: str


class MeResponse(_CamelModel):
    """Identity carried by the caller's access token."""

    account_id: int
    email: str
    role: Role
    expires_at: datetime

    @classmethod
    def from_claims(cls, claims: Claims) -> "MeResponse":
        return cls(
            account_id=claims.account_id,
            email=claims.email,
            role=claims.role,
            expires_at=claims.expires_at,
        )


class AccountResponse(_CamelModel):
    """Public view of an account. Never includes the password digest."""

    id: int
    email: str
    name: Optional[str]
    surname: Optional[str]
    role: Role
    created_at: str

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            email=account.email,
            name=account.name,
            surname=account.surname,
            role=account.role,
            created_at=account.created_at or "",
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail
