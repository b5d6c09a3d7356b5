"""
auth/credentials.py -- Credential operations over the UserStore.

These functions are the only place plaintext passwords meet the store:
routes call them instead of pairing get_by_username() with verify_password()
themselves.

  authenticate_user()  -- constant-work login check; None on any failure.
  register_user()      -- hash + insert; UsernameTakenError on duplicates.
  change_password()    -- re-hash + overwrite. The caller has already
                          re-verified the current password.

Wrong credentials are a None result, never an exception. Exceptions from
here mean the hash or the database failed.
"""

from __future__ import annotations

import dataclasses
import logging

from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from auth.store import UserStore

logger = logging.getLogger("devscripts.auth")


class UsernameTakenError(Exception):
    """Raised by register_user() when the username is already in use."""

    def __init__(self, username: str) -> None:
        super().__init__(f"Username already exists: {username}")
        self.username = username


def redact(user: User) -> User:
    return dataclasses.replace(user, hashed_password=None)


def authenticate_user(store: UserStore, username: str, password: str) -> User | None:
    """Verify a username/password pair.

    Always runs scrypt, whether or not the user exists, so response time
    does not reveal which usernames are registered. Unknown user, wrong
    password and active ban all return None.
    """
    user = store.get_by_username(username)
    if user is None or not user.hashed_password:
        verify_password(password, DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if user.is_currently_banned():
        logger.info("Login refused for banned user id=%s", user.id)
        return None
    return redact(user)


def register_user(
    store: UserStore,
    username: str,
    password: str,
    *,
    email: str | None = None,
    role: Role = Role.user,
) -> User:
    """Create a principal with a freshly hashed password and return it redacted."""
    if store.get_by_username(username) is not None:
        raise UsernameTakenError(username)
    user = User(username=username, role=role, email=email, hashed_password=hash_password(password))
    try:
        user_id = store.create_user(user)
    except IntegrityError as exc:
        # Lost a race with a concurrent registration of the same name.
        raise UsernameTakenError(username) from exc
    created = store.get_by_id(user_id)
    if created is None:
        raise RuntimeError(f"user {user_id} missing after insert")
    logger.info("Registered user id=%s role=%s", created.id, created.role.value)
    return redact(created)


def change_password(store: UserStore, user_id: int, new_password: str) -> User | None:
    """Overwrite the stored hash. Returns None if the user no longer exists."""
    if not store.update_user(user_id, hashed_password=hash_password(new_password)):
        return None
    updated = store.get_by_id(user_id)
    return redact(updated) if updated is not None else None
