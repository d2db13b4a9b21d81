"""
auth/store.py -- SQLAlchemy Core persistence for the relational user record.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and service code never touches SQL directly.

The security core reads five things from a user row: id, role, the password
digest, the stored refresh token and the active flag (a soft-deleted row
counts as inactive). Everything else the helpdesk keeps about a user lives
outside this module.

Security:
  All queries use bound parameters. No f-strings in SQL.
  set_refresh_token() overwrites unconditionally: exactly one refresh token
  is active per user, so an older refresh token stops matching the moment a
  new pair is issued.

Layer rule: no imports from api/, core/ or cache/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from auth.models import User

_DEFAULT_DB_URL = "sqlite:///helpdesk_auth.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False, server_default=""),
    Column("role", String(30), nullable=False, server_default="USUARIO"),
    Column("hashed_password", Text),
    Column("refresh_token", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("deleted_at", String(32)),
    Column("created_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode per connection (PRAGMAs are not inherited from the pool)."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///helpdesk_auth.db")
        uid = store.create_user(User(email="a@b.com", role="ADMIN", hashed_password=hasher.hash("...")))
        user = store.get_by_email("a@b.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def create_user(self, user: User) -> str:
        """Insert a new user and return its id.

        Emails are stored lower-cased. Raises sqlalchemy.exc.IntegrityError if
        the email already exists.
        """
        user_id = user.id or uuid.uuid4().hex
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email.strip().lower(),
                    name=user.name,
                    role=getattr(user.role, "value", user.role),
                    hashed_password=user.hashed_password,
                    refresh_token=user.refresh_token,
                    is_active=1 if user.is_active else 0,
                    deleted_at=user.deleted_at,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return user_id

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_password_hash(self, user_id: str, hashed_password: str) -> bool:
        """Replace the stored digest in one statement (used by transparent rehash)."""
        return self._update(user_id, hashed_password=hashed_password)

    def set_refresh_token(self, user_id: str, refresh_token: str | None) -> bool:
        return self._update(user_id, refresh_token=refresh_token)

    def clear_refresh_token(self, user_id: str) -> bool:
        return self._update(user_id, refresh_token=None)

    def set_active(self, user_id: str, is_active: bool) -> bool:
        return self._update(user_id, is_active=1 if is_active else 0)

    def _update(self, user_id: str, **fields) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        role=row.role,
        hashed_password=row.hashed_password,
        refresh_token=row.refresh_token,
        is_active=bool(row.is_active),
        deleted_at=row.deleted_at,
        created_at=row.created_at,
    )
