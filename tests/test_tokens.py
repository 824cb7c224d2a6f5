"""Unit tests for auth/tokens.py -- TokenIssuer and credential hashing.

Covers:
- issue() -> validate() round trip returns the account's identity
- claims are exactly sub/email/role/iat/exp
- expiry is inclusive and always reported as TokenExpired, never TokenInvalid
- foreign keys, tampered signatures and alg=none are TokenInvalid
- unparseable tokens and missing claims are TokenMalformed
- refresh values are random and only their digest is deterministic
"""

from __future__ import annotations

import pytest
from jose import jwt

from auth.errors import TokenExpired, TokenInvalid, TokenMalformed
from auth.models import Account, Role
from auth.tokens import (
    PASSWORD_MAX_BYTES,
    TokenIssuer,
    generate_refresh_token,
    hash_password,
    hash_refresh_token,
    password_fits,
    verify_password,
)


@pytest.fixture
def account() -> Account:
    return Account(id=42, email="a@x.com", hashed_password="unused", role=Role.ADMIN)


class TestRoundTrip:
    def test_validate_returns_issued_identity(self, issuer: TokenIssuer, account: Account) -> None:
        pair = issuer.issue(account)
        claims = issuer.validate(pair.access_token)
        assert (claims.account_id, claims.email, claims.role) == (42, "a@x.com", Role.ADMIN)

    def test_expiry_is_issued_at_plus_ttl(self, issuer: TokenIssuer, account: Account, clock) -> None:
        pair = issuer.issue(account)
        claims = issuer.validate(pair.access_token)
        assert int((claims.expires_at - claims.issued_at).total_seconds()) == issuer.ttl_seconds
        assert claims.issued_at == clock.now.replace(microsecond=0)
        assert pair.expiry == claims.expires_at

    def test_payload_carries_exactly_the_identity_claims(self, issuer: TokenIssuer, account: Account) -> None:
        pair = issuer.issue(account)
        payload = jwt.get_unverified_claims(pair.access_token)
        assert set(payload) == {"sub", "email", "role", "iat", "exp"}
        assert payload["sub"] == "42"
        assert payload["role"] == "Admin"

    def test_role_defaults_to_user(self, issuer: TokenIssuer) -> None:
        pair = issuer.issue(Account(id=1, email="u@x.com", hashed_password="unused"))
        assert issuer.validate(pair.access_token).role == Role.USER

    def test_extract_helpers(self, issuer: TokenIssuer, account: Account) -> None:
        token = issuer.issue(account).access_token
        assert issuer.extract_account_id(token) == 42
        assert issuer.extract_email(token) == "a@x.com"

    def test_account_without_id_is_rejected(self, issuer: TokenIssuer) -> None:
        with pytest.raises(ValueError):
            issuer.issue(Account(email="a@x.com", hashed_password="unused"))

    def test_every_issue_gets_a_new_refresh_value(self, issuer: TokenIssuer, account: Account) -> None:
        values = {issuer.issue(account).refresh_token for _ in range(20)}
        assert len(values) == 20


class TestExpiry:
    def test_valid_one_second_before_expiry(self, issuer: TokenIssuer, account: Account, clock) -> None:
        token = issuer.issue(account).access_token
        clock.advance(issuer.ttl_seconds - 1)
        assert issuer.validate(token).account_id == 42

    def test_expired_at_exact_expiry(self, issuer: TokenIssuer, account: Account, clock) -> None:
        token = issuer.issue(account).access_token
        clock.advance(issuer.ttl_seconds)
        with pytest.raises(TokenExpired):
            issuer.validate(token)

    def test_expired_long_after_expiry_is_never_invalid(
        self, issuer: TokenIssuer, account: Account, clock
    ) -> None:
        token = issuer.issue(account).access_token
        clock.advance(issuer.ttl_seconds * 100)
        with pytest.raises(TokenExpired):
            issuer.validate(token)
        with pytest.raises(TokenExpired):
            issuer.extract_email(token)


class TestRejection:
    def test_token_from_other_key_is_invalid(self, issuer: TokenIssuer, account: Account) -> None:
        other = TokenIssuer(secret_key="x" * 40, ttl_seconds=issuer.ttl_seconds)
        token = other.issue(account).access_token
        with pytest.raises(TokenInvalid):
            issuer.validate(token)

    def test_expired_token_from_other_key_is_invalid(self, issuer: TokenIssuer, account: Account, clock) -> None:
        other = TokenIssuer(secret_key="x" * 40, ttl_seconds=issuer.ttl_seconds, clock=clock)
        token = other.issue(account).access_token
        clock.advance(issuer.ttl_seconds * 2)
        with pytest.raises(TokenInvalid):
            issuer.validate(token)

    def test_tampered_payload_is_invalid(self, issuer: TokenIssuer, account: Account) -> None:
        token = issuer.issue(account).access_token
        header, _payload, signature = token.split(".")
        forged_payload = jwt.encode(
            {"sub": "1", "email": "evil@x.com", "role": "Admin", "iat": 0, "exp": 2**31},
            "whatever-key",
            algorithm="HS256",
        ).split(".")[1]
        with pytest.raises(TokenInvalid):
            issuer.validate(f"{header}.{forged_payload}.{signature}")

    def test_unsigned_token_is_invalid(self, issuer: TokenIssuer, account: Account) -> None:
        token = issuer.issue(account).access_token
        header, payload, _signature = token.split(".")
        with pytest.raises(TokenInvalid):
            issuer.validate(f"{header}.{payload}.")

    @pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b.c", "...."])
    def test_garbage_is_malformed(self, issuer: TokenIssuer, garbage: str) -> None:
        with pytest.raises(TokenMalformed):
            issuer.validate(garbage)

    def test_missing_claims_are_malformed(self, issuer: TokenIssuer, secret_key: str) -> None:
        token = jwt.encode({"sub": "1", "iat": 0, "exp": 2**31}, secret_key, algorithm="HS256")
        with pytest.raises(TokenMalformed):
            issuer.validate(token)

    def test_unknown_role_is_invalid(self, issuer: TokenIssuer, clock, secret_key: str) -> None:
        now = int(clock.now.timestamp())
        token = jwt.encode(
            {"sub": "1", "email": "a@x.com", "role": "Root", "iat": now, "exp": now + 60},
            secret_key,
            algorithm="HS256",
        )
        with pytest.raises(TokenInvalid):
            issuer.validate(token)

    def test_constructor_rejects_empty_key(self) -> None:
        with pytest.raises(ValueError):
            TokenIssuer(secret_key="", ttl_seconds=60)


class TestHashing:
    def test_password_round_trip(self) -> None:
        hashed = hash_password("s3cret")
        assert hashed != "s3cret"
        assert verify_password("s3cret", hashed)
        assert not verify_password("S3cret", hashed)

    def test_verify_against_non_bcrypt_value_is_false(self) -> None:
        assert not verify_password("p", "plaintext-in-db")

    def test_refresh_digest_is_deterministic_and_opaque(self) -> None:
        value = generate_refresh_token()
        assert hash_refresh_token(value) == hash_refresh_token(value)
        assert hash_refresh_token(value) != value
        assert len(hash_refresh_token(value)) == 64

    @pytest.mark.parametrize(
        ("plain", "fits"),
        [("a" * PASSWORD_MAX_BYTES, True), ("a" * (PASSWORD_MAX_BYTES + 1), False), ("é" * 36, True), ("é" * 37, False)],
    )
    def test_password_limit_counts_bytes(self, plain: str, fits: bool) -> None:
        assert password_fits(plain) is fits
