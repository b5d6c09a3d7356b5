"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper (same as market/store.py).
UserStore is the repository; _row_to_user is the mapper.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  The stored password hash leaves this module only inside a User object;
  credentials.authenticate_user() redacts it before handing the user out.

Layer rule: no imports from api/ or market/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import DEFAULT_AVATAR_URL, Role, User
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password", Text, nullable=False),  # hex(scrypt) + "." + salt
    Column("email", String(255)),
    Column("role", String(20), nullable=False, server_default=Role.user.value),
    Column("bio", Text, nullable=False, server_default=""),
    Column("avatar_url", Text, nullable=False, server_default=DEFAULT_AVATAR_URL),
    Column("discord_username", String(255)),
    Column("created_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
    Column("is_banned", Integer, nullable=False, server_default="0"),
    Column("ban_reason", Text),
    Column("ban_expires_at", String(32)),
    # ids are never reused; sessions and logs refer to them after deletion
    sqlite_autoincrement=True,
)

# Columns update_user() accepts. Anything else is a programming error.
_UPDATABLE = frozenset(
    {
        "hashed_password",
        "email",
        "role",
        "bio",
        "avatar_url",
        "discord_username",
        "is_banned",
        "ban_reason",
        "ban_expires_at",
    }
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety (per connection)."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore()
        store.create_user(User(username="admin", role=Role.admin, hashed_password=hash_password("secret")))
        user = store.get_by_username("admin")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        return self.count_users() > 0

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar() or 0

    def count_users_created_between(self, start_iso: str, end_iso: str) -> int:
        """Count accounts created in [start_iso, end_iso). ISO strings sort chronologically."""
        with self.engine.connect() as conn:
            return (
                conn.execute(
                    select(func.count())
                    .select_from(_users)
                    .where((_users.c.created_at >= start_iso) & (_users.c.created_at < end_iso))
                ).scalar()
                or 0
            )

    def count_admins(self) -> int:
        with self.engine.connect() as conn:
            return (
                conn.execute(
                    select(func.count()).select_from(_users).where(_users.c.role == Role.admin.value)
                ).scalar()
                or 0
            )

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by id."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        The caller must supply an already hashed password.
        """
        if not user.hashed_password:
            raise ValueError("create_user() requires a hashed password")
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    password=user.hashed_password,
                    email=user.email,
                    role=Role(user.role).value,
                    bio=user.bio or "",
                    avatar_url=user.avatar_url or DEFAULT_AVATAR_URL,
                    discord_username=user.discord_username,
                    created_at=user.created_at or _now_iso(),
                    is_banned=0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: see _UPDATABLE. role may be a Role or its string;
        is_banned must be a bool. Returns True if a row was updated, False if
        user_id was not found.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        values = dict(fields)
        if "hashed_password" in values:
            values["password"] = values.pop("hashed_password")
        if "role" in values:
            values["role"] = Role(values["role"]).value
        if "is_banned" in values:
            values["is_banned"] = 1 if values["is_banned"] else 0
        if not values:
            return self.get_by_id(user_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def ban_user(self, user_id: int, reason: str, expires_at: str | None = None) -> bool:
        return self.update_user(user_id, is_banned=True, ban_reason=reason, ban_expires_at=expires_at)

    def unban_user(self, user_id: int) -> bool:
        return self.update_user(user_id, is_banned=False, ban_reason=None, ban_expires_at=None)

    def update_last_login(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=_now_iso()))
            conn.commit()

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted.

        Callers check the last-admin and self-delete rules first.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def ping(self) -> bool:
        """Cheap connectivity probe for the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        hashed_password=row.password,
        email=row.email,
        role=Role(row.role),
        bio=row.bio or "",
        avatar_url=row.avatar_url or DEFAULT_AVATAR_URL,
        discord_username=row.discord_username,
        created_at=row.created_at,
        last_login_at=row.last_login_at,
        is_banned=bool(row.is_banned),
        ban_reason=row.ban_reason,
        ban_expires_at=row.ban_expires_at,
    )
