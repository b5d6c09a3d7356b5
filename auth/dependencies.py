"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and roles.

Per-request flow:
  session cookie -> SessionManager.resolve() -> user id
  -> UserStore.get_by_id() -> fresh User -> role check -> handler

The principal is re-read from the store on every request, never cached in the
cookie or the session record, so a role downgrade or a ban takes effect on the
very next request.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_role(role) wraps get_current_user() and raises HTTP 403 if
has_capability() says no. require_admin / require_moderator are the two
instances routes use.

Layer rule: no imports from api/ or market/.
  This module may import from fastapi because it is part of the FastAPI
  dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.credentials import redact
from auth.models import Role, User, has_capability
from auth.sessions import SessionManager
from auth.store import UserStore
from core.config import get_settings


def session_token(request: Request) -> str | None:
    return request.cookies.get(get_settings().session_cookie_name)


def try_get_current_user(request: Request) -> User | None:
    """Resolve the request's session cookie to a live, unbanned principal.

    Returns None on any failure. Never raises -- callers that need a hard
    401 should use get_current_user().
    """
    manager: SessionManager = request.app.state.session_manager
    user_store: UserStore = request.app.state.user_store

    user_id = manager.resolve(session_token(request))
    if user_id is None:
        return None
    user = user_store.get_by_id(user_id)
    if user is None or user.is_currently_banned():
        return None
    return redact(user)


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Not authenticated."},
        )
    return user


def require_role(required: Role) -> Callable[[Request], User]:
    """Build a dependency that admits principals holding at least `required`."""

    def _dependency(request: Request) -> User:
        user = get_current_user(request)
        if not has_capability(user.role, required):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"{required.value.capitalize()} access required."},
            )
        return user

    _dependency.__name__ = f"require_{required.value}"
    return _dependency


require_admin = require_role(Role.admin)
require_moderator = require_role(Role.moderator)
