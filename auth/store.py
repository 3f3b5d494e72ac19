"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Services and route
code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Emails are normalized (strip + lowercase) before every write and lookup,
  and the email column is UNIQUE, so "Ann@X.com" and "ann@x.com" cannot both
  exist. A duplicate insert raises sqlalchemy.exc.IntegrityError; callers turn
  that into Conflict.

  Password changes go through update_password(), a compare-and-swap on the
  previous hash inside one transaction. Two interleaved changes cannot leave
  a hash that matches neither input: the loser's UPDATE matches zero rows.

Timestamps are ISO 8601 UTC strings with microsecond precision. updated_at is
strictly increasing per record even when two writes land in the same tick.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from auth.models import Credential, FederatedCredential, LocalCredential, Provider, Role, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # normalized lowercase
    Column("name", String(100), nullable=False),
    Column("phone", String(32)),
    Column("role", String(16), nullable=False, server_default="user"),
    Column("provider", String(16), nullable=False, server_default="local"),
    Column("password_hash", Text),  # NULL for Google-only users
    Column("google_id", String(255)),  # NULL for local users
    Column("picture", Text),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
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


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _next_timestamp(previous: str | None) -> str:
    """Return now, or previous + 1us if the clock has not moved past previous."""
    now = datetime.now(timezone.utc)
    if previous:
        prev = datetime.fromisoformat(previous)
        if prev >= now:
            now = prev + timedelta(microseconds=1)
    return now.isoformat(timespec="microseconds")


def _is_memory_url(db_url: str) -> bool:
    return ":memory:" in db_url or "mode=memory" in db_url or db_url.rstrip("/") == "sqlite:"


def _credential_columns(credential: Credential) -> dict:
    if isinstance(credential, LocalCredential):
        return {"provider": Provider.LOCAL.value, "password_hash": credential.password_hash, "google_id": None}
    return {"provider": credential.provider.value, "password_hash": None, "google_id": credential.external_id}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///coursehub_auth.db")
        user = store.create_user(User(email="a@b.com", name="A", credential=LocalCredential(digest)))
        store.get_by_email("A@B.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        engine_args: dict = {}
        if db_url.startswith("sqlite"):
            engine_args["connect_args"] = {"check_same_thread": False}
            if _is_memory_url(db_url):
                # One connection for the engine's lifetime; the database dies with it.
                engine_args["poolclass"] = StaticPool
        self.engine: Engine = create_engine(db_url, **engine_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user and return the stored record.

        Assigns id, created_at and updated_at. Raises
        sqlalchemy.exc.IntegrityError if the email already exists.
        """
        user_id = uuid.uuid4().hex
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=normalize_email(user.email),
                    name=user.name,
                    phone=user.phone,
                    role=Role(user.role).value,
                    picture=user.picture,
                    created_at=now,
                    updated_at=now,
                    **_credential_columns(user.credential),
                )
            )
        created = self.get_by_id(user_id)
        if created is None:
            raise RuntimeError(f"User {user_id} not found after insert")
        return created

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def update_password(self, user_id: str, new_hash: str, expected_hash: str) -> bool:
        """Replace a local user's password hash if it still equals expected_hash.

        Returns True if the row was updated, False if the user is gone, is not
        a local account, or another change won the race.
        """
        with self.engine.begin() as conn:
            previous = conn.execute(select(_users.c.updated_at).where(_users.c.id == user_id)).scalar()
            if previous is None:
                return False
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == user_id)
                    & (_users.c.provider == Provider.LOCAL.value)
                    & (_users.c.password_hash == expected_hash)
                )
                .values(password_hash=new_hash, updated_at=_next_timestamp(previous))
            )
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    provider = Provider(row.provider)
    credential: Credential
    if provider is Provider.LOCAL:
        credential = LocalCredential(password_hash=row.password_hash)
    else:
        credential = FederatedCredential(provider=provider, external_id=row.google_id)
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        phone=row.phone,
        role=Role(row.role),
        picture=row.picture,
        credential=credential,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
