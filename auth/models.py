"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores, the token issuer and the service do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Closed set of account roles.

    Values are the exact strings carried in the token `role` claim and stored
    in the accounts table. Anything outside this set is rejected at the
    boundary (request body, token decode) rather than compared as raw text.
    """

    USER = "User"
    ADMIN = "Admin"


@dataclass
class Account:
    """An account holder identified by email (the natural key).

    hashed_password is a bcrypt digest; the plaintext is never stored.
    id and created_at are assigned by AccountStore.create().
    """

    email: str
    hashed_password: str
    name: str | None = None
    surname: str | None = None
    role: Role | None = None  # None = use the default (Role.USER) at creation
    id: int | None = None
    created_at: str | None = None


@dataclass
class AccountDraft:
    """Registration input before validation and password hashing."""

    email: str | None
    password: str | None
    name: str | None = None
    surname: str | None = None
    role: Role | None = None


@dataclass
class RefreshTokenRecord:
    """The single refresh session held for one email.

    token_hash is SHA-256(raw refresh value). The raw value is handed to the
    client once and never persisted. id stays the same across every rotation
    -- the record is updated in place, never recreated.
    """

    email: str
    token_hash: str
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class TokenPair:
    """Access/refresh pair returned by TokenIssuer.issue(). Not persisted."""

    access_token: str
    refresh_token: str
    expiry: datetime


@dataclass(frozen=True)
class Claims:
    """Decoded identity carried by a validated access token."""

    account_id: int
    email: str
    role: Role
    issued_at: datetime
    expires_at: datetime
