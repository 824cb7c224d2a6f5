"""
auth/service.py -- Login / register / refresh orchestration.

AuthService composes the three collaborators it is given at construction:

    AccountStore        -- who is this, and does the password match?
    TokenIssuer         -- mint the access token and a new refresh value
    RefreshTokenStore   -- remember the one live refresh value per email

It holds no state of its own between calls. Ordering rule for every flow that
hands out tokens: issue first, write the refresh record last. If issuing
fails nothing has been written; if the write fails the caller gets
PersistenceError and the tokens are never returned.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from auth.errors import (
    AccountNotFound,
    DuplicateEmail,
    InvalidCredentials,
    UnknownRefreshToken,
    ValidationError,
)
from auth.models import Account, AccountDraft, Claims, Role, TokenPair
from auth.store import AccountStore, RefreshTokenStore
from auth.tokens import PASSWORD_MAX_BYTES, TokenIssuer, hash_password, password_fits

logger = logging.getLogger("accountgate.auth")

TOKEN_STATUS_VALID = "valid"


def _present(value: str | None) -> bool:
    return value is not None and value.strip() != ""


def _check_password_length(password: str) -> None:
    if not password_fits(password):
        raise ValidationError(f"Password is longer than {PASSWORD_MAX_BYTES} bytes.")


class AuthService:
    """Stateless orchestration over the credential and refresh stores."""

    def __init__(
        self,
        accounts: AccountStore,
        issuer: TokenIssuer,
        refresh_tokens: RefreshTokenStore,
        *,
        email_case_sensitive: bool = False,
    ) -> None:
        self.accounts = accounts
        self.issuer = issuer
        self.refresh_tokens = refresh_tokens
        self.email_case_sensitive = email_case_sensitive

    def normalize_email(self, email: str) -> str:
        """Apply the deployment's email policy. Both stores only ever see the result."""
        email = email.strip()
        return email if self.email_case_sensitive else email.lower()

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str | None, password: str | None) -> TokenPair:
        """Verify credentials and return a new token pair.

        Unknown email and wrong password both raise InvalidCredentials so the
        caller cannot probe which emails are registered.
        """
        if not _present(email) or not _present(password):
            raise ValidationError("Email or password is empty. Please fill in both and try again.")
        _check_password_length(password)

        email = self.normalize_email(email)
        account = self.accounts.get_by_email_and_password(email, password)
        if account is None:
            logger.info("Login rejected for %s", email)
            raise InvalidCredentials()

        pair = self.issuer.issue(account)
        self.refresh_tokens.upsert(account.email, pair.refresh_token)
        logger.info("Login succeeded for %s (account_id=%s)", account.email, account.id)
        return pair

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, draft: AccountDraft) -> Account:
        """Create an account. Does not log the new account in."""
        if not _present(draft.email):
            raise ValidationError("Email is empty. Please fill it in and try again.")

        email = self.normalize_email(draft.email)
        if self.accounts.get_by_email(email) is not None:
            raise DuplicateEmail()
        if not _present(draft.password):
            raise ValidationError("Password is empty. Please fill it in and try again.")
        _check_password_length(draft.password)

        account = self.accounts.create(
            Account(
                email=email,
                hashed_password=hash_password(draft.password),
                name=draft.name,
                surname=draft.surname,
                role=draft.role or Role.USER,
            )
        )
        logger.info("Account created for %s (account_id=%s, role=%s)", account.email, account.id, account.role.value)
        return account

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str | None) -> TokenPair:
        """Exchange a live refresh value for a brand-new pair.

        The presented value is consumed: rotate() only succeeds while the
        record still holds it, so of two concurrent refreshes with the same
        value exactly one wins and the other gets UnknownRefreshToken.
        """
        if not _present(refresh_token):
            raise ValidationError("Refresh token is empty. Please fill it in and try again.")

        record = self.refresh_tokens.find_by_value(refresh_token)
        if record is None:
            raise UnknownRefreshToken()

        account = self.accounts.get_by_email(record.email)
        if account is None:
            logger.warning("Refresh record %s points at missing account %s", record.id, record.email)
            raise UnknownRefreshToken()

        pair = self.issuer.issue(account)
        if not self.refresh_tokens.rotate(refresh_token, pair.refresh_token):
            logger.info("Refresh for %s lost a concurrent rotation", record.email)
            raise UnknownRefreshToken()
        logger.info("Refresh token rotated for %s (record_id=%s)", record.email, record.id)
        return pair

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find_account(self, email: str | None) -> Account:
        """Return the account registered under email. Raises AccountNotFound otherwise."""
        if not _present(email):
            raise ValidationError("Email is empty. Please fill it in and try again.")
        account = self.accounts.get_by_email(self.normalize_email(email))
        if account is None:
            raise AccountNotFound()
        return account

    # ------------------------------------------------------------------
    # Token status
    # ------------------------------------------------------------------

    def token_status(self, claims: Claims) -> str:
        """Liveness confirmation. The gate has already validated the token."""
        return TOKEN_STATUS_VALID
