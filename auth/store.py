"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper.
AccountStore is the repository; _row_to_account is the mapper. The resolver,
the OTP issuer and the service never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Uniqueness:
  UNIQUE(email) is the backstop against duplicate-account races. Two concurrent
  registrations for the same address both pass the "does it exist?" check, but
  only one INSERT commits; the other raises sqlalchemy.exc.IntegrityError,
  which callers translate into AlreadyExists / Conflict.

  UNIQUE(federated_id) gives sparse uniqueness for free: SQLite (and
  PostgreSQL) treat NULLs as distinct in UNIQUE constraints, so any number of
  password-only accounts may have no federated id while two accounts can never
  share the same Google subject.

Updates:
  Only create_account() writes a whole row. Every later write is an UPDATE of
  the columns that operation owns, keyed by id, so a caller holding an old
  Account copy cannot roll back a Google link or a verification made since.

Timestamps are stored as ISO 8601 UTC strings.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Column, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from auth.models import Account, normalize_email, utcnow

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("display_name", String(50)),
    Column("date_of_birth", String(10)),  # ISO date
    Column("password_hash", Text),  # NULL for Google-only accounts
    Column("federated_id", String(255), unique=True),  # Google "sub"; NULLs are distinct
    Column("email_verified", Boolean, nullable=False, default=False),
    Column("pending_code", String(64)),  # HMAC-SHA256 hex of the outstanding OTP
    Column("pending_code_expiry", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _parse_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def _insert_columns(account: Account) -> dict:
    return {
        "email": account.email,
        "display_name": account.display_name,
        "date_of_birth": _iso(account.date_of_birth),
        "password_hash": account.password_hash,
        "federated_id": account.federated_id,
        "email_verified": account.email_verified,
        "pending_code": account.pending_code,
        "pending_code_expiry": _iso(account.pending_code_expiry),
    }


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account records.

    Usage:
        store = AccountStore("sqlite:///:memory:")
        account = store.create_account(Account(email="a@b.com", password_hash=hash_password("secret1")))
        same = store.get_by_email("A@B.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, account_id: str) -> Account | None:
        """Look up an account by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_email(self, email: str) -> Account | None:
        """Look up an account by email. The argument is normalized before the query."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == normalize_email(email))).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_federated_id(self, federated_id: str) -> Account | None:
        """Look up an account linked to the given Google subject id."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.federated_id == federated_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> Account:
        """Insert a new account and return it with timestamps filled in.

        Raises sqlalchemy.exc.IntegrityError if the email (or a non-null
        federated_id) is already taken. Callers treat that as a signal that a
        concurrent request created the record first.
        """
        now = utcnow()
        with self.engine.begin() as conn:
            conn.execute(
                _accounts.insert().values(
                    id=account.id,
                    created_at=_iso(now),
                    updated_at=_iso(now),
                    **_insert_columns(account),
                )
            )
        account.created_at = now
        account.updated_at = now
        return account

    def set_pending_code(self, account_id: str, digest: str, expiry: datetime) -> bool:
        """Overwrite the outstanding challenge on one account.

        Touches only the two pending-code columns, so a concurrent Google link
        or verification on the same row survives. Last write wins between two
        issuers. Returns False if the account is gone.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(pending_code=digest, pending_code_expiry=_iso(expiry), updated_at=_iso(utcnow()))
            )
        return result.rowcount > 0

    def consume_pending_code(self, account_id: str, digest: str, mark_verified: bool = False) -> bool:
        """Clear the challenge only if it is still the one identified by digest.

        With mark_verified the same UPDATE also sets email_verified. Returns
        False when a resend replaced the code, or another request consumed it,
        after the caller read the account.
        """
        values: dict = {"pending_code": None, "pending_code_expiry": None, "updated_at": _iso(utcnow())}
        if mark_verified:
            values["email_verified"] = True
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.pending_code == digest))
                .values(**values)
            )
        return result.rowcount > 0

    def mark_email_verified(self, account_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(email_verified=True, updated_at=_iso(utcnow()))
            )
        return result.rowcount > 0

    def link_federated_id(self, account_id: str, federated_id: str) -> bool:
        """Compare-and-set the Google subject onto an account and mark its email verified.

        The WHERE clause only matches while federated_id is still NULL, so two
        concurrent links cannot overwrite each other. Returns True if this call
        performed the link, False if the account was already linked (or gone).
        Raises IntegrityError if another account already owns federated_id.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.federated_id.is_(None)))
                .values(federated_id=federated_id, email_verified=True, updated_at=_iso(utcnow()))
            )
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        display_name=row.display_name,
        date_of_birth=_parse_date(row.date_of_birth),
        password_hash=row.password_hash,
        federated_id=row.federated_id,
        email_verified=bool(row.email_verified),
        pending_code=row.pending_code,
        pending_code_expiry=_parse_datetime(row.pending_code_expiry),
        created_at=_parse_datetime(row.created_at),
        updated_at=_parse_datetime(row.updated_at),
    )
