"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Services never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  password_hash is excluded from the default projection. Only the
  with_password=True lookups (get_by_email, get_by_id) select it, so a
  handler that loads the current user can never leak the hash by accident.

Atomicity:
  UNIQUE(email) is the final arbiter for concurrent registrations -- the
  loser gets sqlalchemy.exc.IntegrityError, which callers translate into a
  ConflictError. consume_reset_token() is a single conditional UPDATE, so a
  reset token can be redeemed at most once even when two requests race.

  Any other driver failure (locked database, lost connection) surfaces as
  auth.errors.DependencyError so the API can answer 500 without leaking
  driver details.

DB url: Settings.database_url (default progresstrack_auth.db in the project root).

Layer rule: no imports from api/, core/ or notify/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.pool import StaticPool

from auth.errors import DependencyError
from auth.models import NotificationPreferences, User

logger = logging.getLogger("progresstrack.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex, opaque to clients
    Column("name", String(50), nullable=False),
    Column("email", String(255), nullable=False, unique=True),  # normalized (lowercase, trimmed)
    Column("password_hash", Text, nullable=False),
    Column("reset_token_hash", String(64), index=True),  # SHA-256 hex of the pending reset token
    Column("reset_token_expiry", String(32)),  # ISO 8601 UTC, paired with reset_token_hash
    Column("email_notifications", Integer, nullable=False, server_default="1"),
    Column("login_alerts", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

# Default projection -- everything except the password hash.
_PUBLIC_COLUMNS = [c for c in _users.c if c.name != "password_hash"]

# Fields update_user() accepts. Anything else is a programming error.
_UPDATABLE_FIELDS = {"name", "email", "email_notifications", "login_alerts"}


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


def format_timestamp(moment: datetime) -> str:
    """Render an aware datetime as a sortable ISO 8601 UTC string.

    timespec is pinned to microseconds: isoformat() drops the fraction when
    it is zero, and the shorter string would then compare wrongly against
    stored expiries.
    """
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return format_timestamp(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user_id = store.create_user(User(name="Ann", email="ann@x.com", password_hash=hashed))
        user = store.get_by_id(user_id)
        store.close()
    """

    def __init__(self, db_url: str, timeout_seconds: float = 5.0) -> None:
        connect_args: dict = {}
        engine_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            # Busy timeout: a writer waits this long for a lock before failing.
            connect_args["timeout"] = timeout_seconds
            if ":memory:" in db_url or "mode=memory" in db_url:
                # One connection shared by every thread, so all of them see
                # the same in-memory database.
                engine_args["poolclass"] = StaticPool
        else:
            engine_args["pool_timeout"] = timeout_seconds
            engine_args["pool_pre_ping"] = True
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        """Yield a connection, translating driver failures into DependencyError.

        IntegrityError is re-raised untouched: it is a domain signal (duplicate
        email) that the caller turns into ConflictError.
        """
        try:
            with self.engine.connect() as conn:
                yield conn
        except IntegrityError:
            raise
        except DBAPIError as exc:
            logger.warning("User store unavailable: %s", exc.__class__.__name__)
            raise DependencyError() from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers must catch it as the signal that a concurrent request won
        the race for this email.
        """
        user_id = uuid.uuid4().hex
        with self._connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    name=user.name,
                    email=user.email,
                    password_hash=user.password_hash,
                    email_notifications=1 if user.preferences.email_notifications else 0,
                    login_alerts=1 if user.preferences.login_alerts else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return user_id

    def get_by_id(self, user_id: str, with_password: bool = False) -> User | None:
        """Look up a user by primary key. The password hash is omitted unless asked for."""
        columns = list(_users.c) if with_password else _PUBLIC_COLUMNS
        with self._connect() as conn:
            row = conn.execute(select(*columns).where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str, with_password: bool = False) -> User | None:
        """Look up a user by normalized email. Returns None if not found.

        with_password=True is for credential checks only.
        """
        columns = list(_users.c) if with_password else _PUBLIC_COLUMNS
        with self._connect() as conn:
            row = conn.execute(select(*columns).where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_reset_token(self, token_hash: str, now_iso: str) -> User | None:
        """Find the user holding this reset token hash, if it has not expired."""
        with self._connect() as conn:
            row = conn.execute(
                select(*_PUBLIC_COLUMNS).where(
                    (_users.c.reset_token_hash == token_hash) & (_users.c.reset_token_expiry > now_iso)
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable profile fields on an existing user.

        Accepted fields: name, email, email_notifications, login_alerts.
        Booleans are converted to int for SQLite. Raises IntegrityError when
        the new email belongs to another account.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        for flag in ("email_notifications", "login_alerts"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        if not fields:
            return False
        with self._connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def set_password(self, user_id: str, password_hash: str) -> bool:
        """Replace the stored password hash. Returns False if user_id was not found."""
        with self._connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(password_hash=password_hash))
            conn.commit()
        return result.rowcount > 0

    def set_reset_token(self, user_id: str, token_hash: str, expiry_iso: str) -> bool:
        """Record a pending reset. Overwrites any earlier token for this user."""
        with self._connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(reset_token_hash=token_hash, reset_token_expiry=expiry_iso)
            )
            conn.commit()
        return result.rowcount > 0

    def clear_reset_token(self, user_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(reset_token_hash=None, reset_token_expiry=None)
            )
            conn.commit()
        return result.rowcount > 0

    def consume_reset_token(self, user_id: str, token_hash: str, now_iso: str, password_hash: str) -> bool:
        """Write the new password and clear the reset token in one UPDATE.

        The WHERE clause re-checks the token hash and expiry, so if two
        requests race with the same token only one sees rowcount == 1.
        Returns True if this call redeemed the token.
        """
        with self._connect() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == user_id)
                    & (_users.c.reset_token_hash == token_hash)
                    & (_users.c.reset_token_expiry > now_iso)
                )
                .values(password_hash=password_hash, reset_token_hash=None, reset_token_expiry=None)
            )
            conn.commit()
        return result.rowcount == 1

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self._connect() as conn:
                conn.execute(select(1))
        except DependencyError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    # password_hash is absent from the default projection.
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=getattr(row, "password_hash", None),
        reset_token_hash=row.reset_token_hash,
        reset_token_expiry=row.reset_token_expiry,
        preferences=NotificationPreferences(
            email_notifications=bool(row.email_notifications),
            login_alerts=bool(row.login_alerts),
        ),
        created_at=row.created_at,
    )
