"""
auth/tokens.py -- Access-token issuing/validation, password and refresh-value hashing.

Security design decisions:
  JWT: python-jose with HS256. TokenIssuer is constructed once per process
       with the signing key, so every token issued during the process
       lifetime validates against the same key. Claims are exactly
       sub (account id), email, role, iat and exp -- nothing else.

  Validation order matters. The structure is parsed first (TokenMalformed),
       then the signature is verified with expiry checking switched off
       (TokenInvalid), and only then is exp compared with the issuer's clock
       (TokenExpired). An expired but genuine token is therefore always
       reported as expired, never as invalid. Expiry is inclusive: a token is
       dead at the exact second of its exp claim.

  Access tokens are not revocable: validate() performs no store lookup.
       Only refresh continuation is gated by RefreshTokenStore.

  Refresh values: secrets.token_urlsafe(48) -- 384 bits of entropy, opaque,
       no embedded claims. Only SHA-256(value) is persisted, so a leaked
       database cannot be replayed against /auth/refresh.

  Passwords: bcrypt directly (no passlib wrapper). _DUMMY_HASH lets
       AccountStore equalize timing for unknown emails [C1].

Layer rule: no imports from api/ or core/. The signing key and TTL are
passed in by whoever builds the issuer (api/main.py lifespan).
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from jose import JWTError, jwt

from auth.errors import TokenExpired, TokenInvalid, TokenMalformed
from auth.models import Account, Claims, Role, TokenPair

logger = logging.getLogger("accountgate.auth")

_ALGORITHM = "HS256"

# bcrypt reads at most 72 bytes of input; longer passwords are refused, not truncated.
PASSWORD_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Callers must check password_fits() first. Depending on the bcrypt release
    a longer password is either truncated or rejected with ValueError.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def password_fits(plain: str) -> bool:
    """Return True if plain is within bcrypt's 72-byte input limit (UTF-8 bytes, not characters)."""
    return len(plain.encode("utf-8")) <= PASSWORD_MAX_BYTES


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt digest.
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than later ones [C1].
_DUMMY_HASH: str = hash_password("accountgate_timing_dummy")


# ---------------------------------------------------------------------------
# Refresh values
# ---------------------------------------------------------------------------


def generate_refresh_token() -> str:
    """Return a new opaque refresh value (URL-safe, 64 chars)."""
    return secrets.token_urlsafe(48)


def hash_refresh_token(token: str) -> str:
    """Return the SHA-256 hex digest stored in place of a refresh value."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Issuer
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    """Mint and verify signed, time-bounded access tokens.

    Usage:
        issuer = TokenIssuer(secret_key=settings.secret_key, ttl_seconds=3600)
        pair = issuer.issue(account)
        claims = issuer.validate(pair.access_token)

    The clock argument exists so tests can freeze or advance time without
    sleeping; production code never passes it.
    """

    def __init__(
        self,
        secret_key: str,
        ttl_seconds: int,
        *,
        algorithm: str = _ALGORITHM,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("TokenIssuer requires a non-empty signing key.")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive.")
        self._secret_key = secret_key
        self._ttl = timedelta(seconds=ttl_seconds)
        self._algorithm = algorithm
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    def issue(self, account: Account) -> TokenPair:
        """Return a fresh access token for account plus a new refresh value."""
        if account.id is None:
            raise ValueError("Cannot issue a token for an account without an id.")
        role = Role(account.role or Role.USER)
        issued_at = int(self._clock().timestamp())
        expires_at = issued_at + self.ttl_seconds
        payload: dict[str, Any] = {
            "sub": str(account.id),
            "email": account.email,
            "role": role.value,
            "iat": issued_at,
            "exp": expires_at,
        }
        access_token = jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
        return TokenPair(
            access_token=access_token,
            refresh_token=generate_refresh_token(),
            expiry=datetime.fromtimestamp(expires_at, tz=timezone.utc),
        )

    def validate(self, token: str) -> Claims:
        """Verify token and return its claims.

        Raises:
            TokenMalformed: the token cannot be parsed or lacks required claims.
            TokenInvalid:   the signature does not verify, or the role is unknown.
            TokenExpired:   the issuer's clock is at or past the exp claim.
        """
        try:
            jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise TokenMalformed() from exc

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise TokenInvalid() from exc

        claims = self._to_claims(payload)
        if self._clock() >= claims.expires_at:
            raise TokenExpired()
        return claims

    def extract_account_id(self, token: str) -> int:
        return self.validate(token).account_id

    def extract_email(self, token: str) -> str:
        return self.validate(token).email

    @staticmethod
    def _to_claims(payload: dict[str, Any]) -> Claims:
        try:
            account_id = int(payload["sub"])
            email = payload["email"]
            role_value = payload["role"]
            issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenMalformed("Access token is missing required claims.") from exc
        if not isinstance(email, str) or not email:
            raise TokenMalformed("Access token is missing required claims.")
        try:
            role = Role(role_value)
        except ValueError as exc:
            raise TokenInvalid("Access token carries an unknown role.") from exc
        return Claims(
            account_id=account_id,
            email=email,
            role=role,
            issued_at=issued_at,
            expires_at=expires_at,
        )
