"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and refresh sessions.

Pattern: Repository + Data Mapper.
AccountStore and RefreshTokenStore are the repositories; _row_to_account and
_row_to_refresh_record are the mappers. Service and route code never touches
SQL directly.

Invariants enforced by the schema, not by read-then-write code:
  accounts.email UNIQUE         -- one account per email. A concurrent
                                   duplicate registration loses on the
                                   constraint and surfaces as DuplicateEmail.
  refresh_tokens.email UNIQUE   -- at most one refresh record per email.
                                   upsert() is a single conditional write
                                   keyed on this constraint.
  refresh_tokens.token_hash     -- refresh values are disjoint across records.
    UNIQUE

Errors:
  Any SQLAlchemyError that is not a handled constraint violation propagates
  as PersistenceError. Nothing is retried here.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Refresh values are stored as SHA-256 digests only.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import DuplicateEmail, PersistenceError
from auth.models import Account, RefreshTokenRecord, Role
from auth.tokens import _DUMMY_HASH, hash_refresh_token, verify_password

logger = logging.getLogger("accountgate.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("name", String(100)),
    Column("surname", String(100)),
    Column("role", String(20), nullable=False, server_default=Role.USER.value),
    Column("created_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # SHA-256 hex
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Dialects with a native INSERT ... ON CONFLICT DO UPDATE.
_UPSERT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _make_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Translate driver-level failures into PersistenceError."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Store operation %s failed: %s", operation, type(exc).__name__)
        raise PersistenceError() from exc


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities (the credential store).

    Usage:
        store = AccountStore("sqlite:///:memory:")
        store.create(Account(email="a@x.com", hashed_password=hash_password("p")))
        account = store.get_by_email_and_password("a@x.com", "p")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = _make_engine(db_url)
        with _store_errors("create_schema"):
            _metadata.create_all(self.engine, tables=[_accounts])

    def create(self, account: Account) -> Account:
        """Insert a new account and return it with id, role and created_at filled in.

        Raises DuplicateEmail if the email is already registered. The check is
        the UNIQUE constraint itself, so two concurrent registrations for the
        same email cannot both succeed.
        """
        role = Role(account.role or Role.USER)
        created_at = _now_iso()
        with _store_errors("create_account"):
            try:
                with self.engine.connect() as conn:
                    result = conn.execute(
                        _accounts.insert().values(
                            email=account.email,
                            hashed_password=account.hashed_password,
                            name=account.name,
                            surname=account.surname,
                            role=role.value,
                            created_at=created_at,
                        )
                    )
                    conn.commit()
            except IntegrityError as exc:
                raise DuplicateEmail() from exc
        return Account(
            id=result.inserted_primary_key[0],
            email=account.email,
            hashed_password=account.hashed_password,
            name=account.name,
            surname=account.surname,
            role=role,
            created_at=created_at,
        )

    def get_by_email(self, email: str) -> Account | None:
        """Look up an account by exact email. Returns None if not found."""
        with _store_errors("get_account"):
            with self.engine.connect() as conn:
                row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_email_and_password(self, email: str, password: str) -> Account | None:
        """Return the account only if email exists and password matches.

        Always runs bcrypt whether or not the email exists, so response time
        does not reveal which emails are registered [C1].
        """
        account = self.get_by_email(email)
        if account is None:
            verify_password(password, _DUMMY_HASH)
            return None
        if not verify_password(password, account.hashed_password):
            return None
        return account

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Refresh sessions
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Repository for the single refresh session held per email.

    upsert() is the only write path that may create a record. rotate() swaps
    the current value for a new one and only succeeds if the caller still
    holds the current value (compare-and-swap), which makes each refresh
    value single-use even under concurrent refreshes.
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = _make_engine(db_url)
        with _store_errors("create_schema"):
            _metadata.create_all(self.engine, tables=[_refresh_tokens])

    def find_by_email(self, email: str) -> RefreshTokenRecord | None:
        with _store_errors("find_refresh_by_email"):
            with self.engine.connect() as conn:
                row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.email == email)).fetchone()
        return _row_to_refresh_record(row) if row is not None else None

    def find_by_value(self, refresh_token: str) -> RefreshTokenRecord | None:
        """Look up the record currently holding refresh_token (by digest)."""
        token_hash = hash_refresh_token(refresh_token)
        with _store_errors("find_refresh_by_value"):
            with self.engine.connect() as conn:
                row = conn.execute(
                    _refresh_tokens.select().where(_refresh_tokens.c.token_hash == token_hash)
                ).fetchone()
        return _row_to_refresh_record(row) if row is not None else None

    def upsert(self, email: str, refresh_token: str) -> RefreshTokenRecord:
        """Create the record for email, or replace its value in place.

        One statement keyed on the email UNIQUE constraint: two simultaneous
        logins for the same email end with exactly one record holding the
        value of whichever write landed last. The record id never changes.
        """
        token_hash = hash_refresh_token(refresh_token)
        now = _now_iso()
        with _store_errors("upsert_refresh"):
            with self.engine.connect() as conn:
                insert = _UPSERT_INSERTS.get(conn.dialect.name)
                if insert is not None:
                    stmt = insert(_refresh_tokens).values(
                        email=email,
                        token_hash=token_hash,
                        created_at=now,
                        updated_at=now,
                    )
                    stmt = stmt.on_conflict_do_update(
                        index_elements=[_refresh_tokens.c.email],
                        set_={
                            "token_hash": stmt.excluded.token_hash,
                            "updated_at": stmt.excluded.updated_at,
                        },
                    )
                    conn.execute(stmt)
                else:
                    self._insert_or_update(conn, email, token_hash, now)
                conn.commit()
                row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.email == email)).fetchone()
        return _row_to_refresh_record(row)

    def rotate(self, current_token: str, new_token: str) -> bool:
        """Replace current_token with new_token. Returns False if current_token is no longer held."""
        with _store_errors("rotate_refresh"):
            with self.engine.connect() as conn:
                result = conn.execute(
                    _refresh_tokens.update()
                    .where(_refresh_tokens.c.token_hash == hash_refresh_token(current_token))
                    .values(token_hash=hash_refresh_token(new_token), updated_at=_now_iso())
                )
                swapped = result.rowcount == 1
                conn.commit()
        return swapped

    @staticmethod
    def _insert_or_update(conn: Connection, email: str, token_hash: str, now: str) -> None:
        """Unique-constraint-then-update fallback for dialects without ON CONFLICT.

        Records are never deleted, so once the insert loses on the email
        constraint the update is guaranteed to find the row.
        """
        try:
            with conn.begin_nested():
                conn.execute(
                    _refresh_tokens.insert().values(
                        email=email,
                        token_hash=token_hash,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError:
            conn.execute(
                _refresh_tokens.update()
                .where(_refresh_tokens.c.email == email)
                .values(token_hash=token_hash, updated_at=now)
            )

    def count(self) -> int:
        """Return the number of refresh records (all emails)."""
        with _store_errors("count_refresh"):
            with self.engine.connect() as conn:
                total = conn.execute(select(func.count()).select_from(_refresh_tokens)).scalar()
        return total or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        name=row.name,
        surname=row.surname,
        role=Role(row.role),
        created_at=row.created_at,
    )


def _row_to_refresh_record(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        email=row.email,
        token_hash=row.token_hash,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
