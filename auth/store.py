"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and service code never touches SQL directly.

Contract used by AuthService (nothing else on the login path):
  find_by_email, find_by_id, update_password_hash, update_last_login

Administrative operations (user-management routes and the CLI only):
  create_user, list_users, has_users

Security:
  All queries use bound parameters. No f-strings in SQL.
  Emails are normalized (strip + lower) on write and on lookup, so the UNIQUE
  index on email is effectively case-insensitive.

The store does no locking of its own. Each method runs in its own connection
and transaction; concurrency is the database's job.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("role", String(32), nullable=False),
    Column("branch_id", String(36)),
    Column("agent_number", String(64)),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
    Column("created_by", String(36)),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an Engine with the SQLite tweaks every Atlas store needs."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///atlas_auth.db")
        uid = store.create_user(User(email="a@b.com", name="A", role="ADMIN",
                                     password_hash=hash_password("...")))
        user = store.find_by_email("A@B.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Updates used by AuthService
    # ------------------------------------------------------------------

    def update_password_hash(self, user_id: str, password_hash: str) -> bool:
        """Replace the stored hash. Returns False if user_id does not exist."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_hash=password_hash, updated_at=_now_iso())
            )
        return result.rowcount > 0

    def update_last_login(self, user_id: str) -> str:
        """Stamp the current UTC time as last_login_at and return it."""
        stamp = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=stamp))
        return stamp

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers translate that into a 409.
        """
        user_id = user.id or str(uuid.uuid4())
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=normalize_email(user.email),
                    name=user.name,
                    password_hash=user.password_hash,
                    role=user.role,
                    branch_id=user.branch_id,
                    agent_number=user.agent_number,
                    is_active=user.is_active,
                    created_at=now,
                    updated_at=now,
                    created_by=user.created_by,
                )
            )
        return user_id

    def list_users(self) -> list[User]:
        """Return all users ordered by email."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def has_users(self) -> bool:
        """Return True if at least one user exists. Used by the bootstrap CLI."""
        with self.engine.connect() as conn:
            count = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (count or 0) > 0

    def close(self) -> None:
        """Dispose of the connection pool. Call on application shutdown."""
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Mapper
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    m = row._mapping
    return User(
        id=m["id"],
        email=m["email"],
        name=m["name"],
        password_hash=m["password_hash"],
        role=m["role"],
        branch_id=m["branch_id"],
        agent_number=m["agent_number"],
        is_active=bool(m["is_active"]),
        created_at=m["created_at"],
        updated_at=m["updated_at"],
        last_login_at=m["last_login_at"],
        created_by=m["created_by"],
    )
