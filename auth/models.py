"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost no logic). The one exception
is the Role capability predicate, which is the single place role ordering is
defined -- routes never compare role strings themselves.

Layer rule: no imports from api/ or market/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

DEFAULT_AVATAR_URL = "/images/default-avatar.png"


class Role(str, Enum):
    """Closed set of principal roles, ordered by privilege."""

    user = "user"
    moderator = "moderator"
    admin = "admin"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]


_ROLE_RANK: dict[Role, int] = {Role.user: 0, Role.moderator: 1, Role.admin: 2}


def has_capability(role: Role | str, required: Role | str) -> bool:
    """Return True if `role` grants at least the privileges of `required`.

    Unknown role strings raise ValueError -- a role outside the closed set is
    a data error, not a lower privilege.
    """
    return Role(role).rank >= Role(required).rank


@dataclass
class User:
    """A principal: one account on the marketplace.

    hashed_password holds the stored credential proof
    (hex(scrypt(password, salt)) + "." + salt). It is None on every User
    handed out by authenticate_user() so callers cannot leak it by accident.

    is_banned with a past ban_expires_at is treated as not banned; see
    is_currently_banned().
    """

    username: str
    role: Role = Role.user
    id: int | None = None
    hashed_password: str | None = None
    email: str | None = None
    bio: str = ""
    avatar_url: str = DEFAULT_AVATAR_URL
    discord_username: str | None = None
    created_at: str | None = None
    last_login_at: str | None = None
    is_banned: bool = False
    ban_reason: str | None = None
    ban_expires_at: str | None = None

    def is_currently_banned(self, now: datetime | None = None) -> bool:
        if not self.is_banned:
            return False
        if not self.ban_expires_at:
            return True
        now = now or datetime.now(timezone.utc)
        expires = datetime.fromisoformat(self.ban_expires_at)
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires > now


@dataclass(frozen=True)
class SessionRecord:
    """Server-side session state. Only the principal's id is kept here.

    created_at / expires_at are POSIX timestamps (seconds). Expiry is fixed at
    creation time; resolving a session does not extend it.
    """

    user_id: int
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at
