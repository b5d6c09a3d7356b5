"""
auth/sessions.py -- Server-side sessions behind an injectable store.

The browser holds only an opaque random token (the session cookie). The
server keeps a SessionRecord under HMAC-SHA256(SECRET_KEY, token), so a
leaked sessions table cannot be replayed as cookies. The record carries the
principal's id and nothing else; auth.dependencies re-loads the full User on
every request, so role changes and bans apply on the next request.

Stores:
  MemorySessionStore -- process-local dict. Fine for a single worker; lost
                        on restart.
  SqlSessionStore    -- SQLAlchemy Core table. Required when several worker
                        processes must see the same sessions.

Both enforce expiry on read: an expired record is deleted and reported as
absent. purge_expired() sweeps the rest; api.main runs it periodically.

Layer rule: no imports from api/ or market/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, create_engine, event
from sqlalchemy.engine import Engine

from auth.models import SessionRecord, User
from core.config import Settings, get_settings

logger = logging.getLogger("devscripts.sessions")

Clock = Callable[[], float]


# ---------------------------------------------------------------------------
# Store interface
# ---------------------------------------------------------------------------


class SessionStore(ABC):
    """Key/value store for SessionRecords with expiry."""

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock

    @abstractmethod
    def get(self, key: str) -> SessionRecord | None:
        """Return the live record for key, or None if absent or expired."""

    @abstractmethod
    def set(self, key: str, record: SessionRecord) -> None:
        """Insert or replace the record for key."""

    @abstractmethod
    def destroy(self, key: str) -> None:
        """Remove key. Removing an unknown key is a no-op."""

    @abstractmethod
    def destroy_user(self, user_id: int) -> int:
        """Remove every record bound to user_id. Returns the number removed."""

    @abstractmethod
    def purge_expired(self) -> int:
        """Delete every expired record. Returns the number removed."""

    def close(self) -> None:
        pass


class MemorySessionStore(SessionStore):
    def __init__(self, clock: Clock = time.time) -> None:
        super().__init__(clock)
        self._records: dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> SessionRecord | None:
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            if record.is_expired(self._clock()):
                del self._records[key]
                return None
            return record

    def set(self, key: str, record: SessionRecord) -> None:
        with self._lock:
            self._records[key] = record

    def destroy(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def destroy_user(self, user_id: int) -> int:
        with self._lock:
            doomed = [k for k, r in self._records.items() if r.user_id == user_id]
            for k in doomed:
                del self._records[k]
        return len(doomed)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, r in self._records.items() if r.is_expired(now)]
            for k in expired:
                del self._records[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("key", String(64), primary_key=True),  # HMAC-SHA256 hex of the token
    Column("user_id", Integer, nullable=False, index=True),
    Column("created_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False, index=True),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


class SqlSessionStore(SessionStore):
    """Database-backed session store. Usage mirrors UserStore."""

    def __init__(self, db_url: str | None = None, clock: Clock = time.time) -> None:
        super().__init__(clock)
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def get(self, key: str) -> SessionRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.key == key)).fetchone()
        if row is None:
            return None
        record = SessionRecord(user_id=row.user_id, created_at=row.created_at, expires_at=row.expires_at)
        if record.is_expired(self._clock()):
            self.destroy(key)
            return None
        return record

    def set(self, key: str, record: SessionRecord) -> None:
        with self.engine.connect() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.key == key))
            conn.execute(
                _sessions.insert().values(
                    key=key,
                    user_id=record.user_id,
                    created_at=record.created_at,
                    expires_at=record.expires_at,
                )
            )
            conn.commit()

    def destroy(self, key: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.key == key))
            conn.commit()

    def destroy_user(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def purge_expired(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= self._clock()))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


def build_session_store(settings: Settings | None = None) -> SessionStore:
    """Return the store selected by SESSION_BACKEND."""
    settings = settings or get_settings()
    if settings.session_backend == "database":
        return SqlSessionStore(settings.database_url)
    return MemorySessionStore()


# ---------------------------------------------------------------------------
# Session manager
# ---------------------------------------------------------------------------


class SessionManager:
    """Binds verified principals to opaque session tokens.

    create()  -- serialize: User -> user id in a new record; returns the token.
    resolve() -- token -> user id, or None. Deserializing the id back to a
                 User is the caller's job (see auth.dependencies).
    destroy() -- idempotent logout.
    destroy_user() -- drop every session of one principal.
    """

    def __init__(
        self,
        store: SessionStore,
        secret_key: str,
        max_age_seconds: int,
        clock: Clock = time.time,
    ) -> None:
        self.store = store
        self.max_age_seconds = max_age_seconds
        self._secret = secret_key.encode("utf-8")
        self._clock = clock

    def _key(self, token: str) -> str:
        return hmac.new(self._secret, token.encode("utf-8"), hashlib.sha256).hexdigest()

    def create(self, user: User) -> str:
        if user.id is None:
            raise ValueError("cannot open a session for an unsaved user")
        token = secrets.token_urlsafe(32)
        now = self._clock()
        self.store.set(
            self._key(token),
            SessionRecord(user_id=user.id, created_at=now, expires_at=now + self.max_age_seconds),
        )
        return token

    def resolve(self, token: str | None) -> int | None:
        if not token:
            return None
        record = self.store.get(self._key(token))
        return record.user_id if record is not None else None

    def destroy(self, token: str | None) -> None:
        if token:
            self.store.destroy(self._key(token))

    def destroy_user(self, user_id: int) -> int:
        """Log a principal out everywhere (account deletion)."""
        return self.store.destroy_user(user_id)

    def purge_expired(self) -> int:
        removed = self.store.purge_expired()
        if removed:
            logger.info("Purged %d expired sessions", removed)
        return removed

    def close(self) -> None:
        self.store.close()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, settings: Settings | None = None) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": sent on top-level navigations, not on cross-site POST.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the server-side record's lifetime.
    """
    settings = settings or get_settings()
    response.set_cookie(
        settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.session_max_age_seconds,
        path="/",
    )


def clear_session_cookie(response, settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    response.delete_cookie(
        settings.session_cookie_name,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )
