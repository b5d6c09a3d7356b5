"""
api/routes/auth.py -- Account and session REST endpoints.

Routes:
  POST /api/register             -- create account; opens a session
  POST /api/login                -- password login; opens a session
  POST /api/logout               -- destroy session, clear cookie; idempotent
  GET  /api/user                 -- current principal
  PUT  /api/profile              -- update bio/email/avatar/discord
  PUT  /api/change-password      -- re-verify current password, set new one
  POST /api/admin/create-user    -- admin creates an account (no session)

Security:
  Login is rate-limited per IP (LOGIN_RATE_LIMIT).
  authenticate_user() equalizes timing for unknown usernames -- use it, never
  get_by_username() + verify_password() inline.
  Login never says which half of the credentials was wrong. Registration
  does say "Username already exists"; that asymmetry is intentional.
  A fresh session token is issued on every login and registration; any
  session the browser already held is destroyed first.
  Cache-Control: no-store on responses that carry a new session cookie.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from api import activity
from api.limiter import limiter
from api.models import (
    AdminCreateUserRequest,
    ChangePasswordRequest,
    CreatedUserResponse,
    LoginRequest,
    MessageResponse,
    ProfileUpdate,
    RegisterRequest,
    UserEnvelope,
    UserPublic,
)
from auth.credentials import UsernameTakenError, authenticate_user, change_password, redact, register_user
from auth.dependencies import get_current_user, require_admin, session_token
from auth.models import User
from auth.passwords import verify_password
from auth.sessions import SessionManager, clear_session_cookie, set_session_cookie
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("devscripts.auth")

router = APIRouter()

_USERNAME_TAKEN = {"code": "username_taken", "message": "Username already exists"}


def _login_rate_limit() -> str:
    # Read per request so LOGIN_RATE_LIMIT changes apply without re-import.
    return get_settings().login_rate_limit


def _open_session(request: Request, user: User, status_code: int) -> JSONResponse:
    """Rotate the caller's session to `user` and return {"user": ...} with the cookie set."""
    manager: SessionManager = request.app.state.session_manager
    manager.destroy(session_token(request))
    token = manager.create(user)
    resp = JSONResponse(
        status_code=status_code,
        content=UserEnvelope(user=UserPublic.from_domain(user)).model_dump(by_alias=True, mode="json"),
    )
    set_session_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/register", status_code=201, response_model=UserEnvelope)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a `user`-role account and log it in."""
    user_store: UserStore = request.app.state.user_store
    try:
        user = register_user(user_store, body.username, body.password, email=body.email)
    except UsernameTakenError:
        raise HTTPException(status_code=400, detail=_USERNAME_TAKEN) from None
    activity.record(request, "register", user.id, username=user.username)
    return _open_session(request, user, 201)


@router.post("/login", response_model=UserEnvelope)
@limiter.limit(_login_rate_limit)  # below @router so the registered endpoint is the limited one
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set the session cookie.

    Unknown user, wrong password and active ban all get the same 401, and no
    cookie is set.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.username, body.password)
    if user is None:
        logger.info("Failed login for username=%r", body.username)
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    user_store.update_last_login(user.id)
    refreshed = user_store.get_by_id(user.id)
    if refreshed is not None:
        user = redact(refreshed)
    activity.record(request, "login", user.id)
    return _open_session(request, user, 200)


@router.post("/logout")
def logout(request: Request) -> Response:
    """Destroy the session (if any) and clear the cookie.

    Always 200: logging out without a session, or twice, is a no-op.
    """
    manager: SessionManager = request.app.state.session_manager
    manager.destroy(session_token(request))
    resp = Response(status_code=200)
    clear_session_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/user", response_model=UserEnvelope)
def current_user(user: User = Depends(get_current_user)) -> UserEnvelope:
    return UserEnvelope(user=UserPublic.from_domain(user))


@router.put("/profile", response_model=UserEnvelope)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    user: User = Depends(get_current_user),
) -> UserEnvelope:
    """Update the caller's profile. Only fields present in the body change."""
    user_store: UserStore = request.app.state.user_store
    fields = body.model_dump(exclude_none=True)
    if not user_store.update_user(user.id, **fields):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})
    updated = user_store.get_by_id(user.id)
    if updated is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})
    return UserEnvelope(user=UserPublic.from_domain(redact(updated)))


@router.put("/change-password", response_model=MessageResponse)
def update_password(
    request: Request,
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
) -> MessageResponse:
    """Replace the caller's password after re-verifying the current one.

    A wrong current password is a 400 and leaves the stored hash untouched.
    """
    user_store: UserStore = request.app.state.user_store
    stored = user_store.get_by_id(user.id)
    if stored is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})
    if not stored.hashed_password or not verify_password(body.current_password, stored.hashed_password):
        raise HTTPException(
            status_code=400,
            detail={"code": "bad_password", "message": "Current password is incorrect."},
        )
    if change_password(user_store, user.id, body.new_password) is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})
    logger.info("Password changed for user id=%s", user.id)
    activity.record(request, "change_password", user.id)
    return MessageResponse(message="Password updated successfully")


# ---------------------------------------------------------------------------
# Admin account creation
# ---------------------------------------------------------------------------


@router.post("/admin/create-user", status_code=201, response_model=CreatedUserResponse)
def admin_create_user(
    request: Request,
    body: AdminCreateUserRequest,
    admin: User = Depends(require_admin),
) -> CreatedUserResponse:
    """Create an account on someone's behalf. The admin's own session is untouched.

    A caller without a session gets 401, the same as every other
    session-gated route; only a signed-in non-admin gets 403.
    """
    user_store: UserStore = request.app.state.user_store
    try:
        created = register_user(
            user_store,
            body.username,
            body.password,
            email=body.email,
            role=body.resolved_role(),
        )
    except UsernameTakenError:
        raise HTTPException(status_code=400, detail=_USERNAME_TAKEN) from None
    logger.info("Admin id=%s created user id=%s role=%s", admin.id, created.id, created.role.value)
    activity.record(request, "admin_create_user", admin.id, created_user_id=created.id, role=created.role.value)
    return CreatedUserResponse(message="User created successfully", user=UserPublic.from_domain(created))
