"""
api/routes/admin.py -- User management for moderators and admins.

Routes:
  GET    /api/admin/users              -- list accounts (moderator)
  PATCH  /api/admin/users/{id}/role    -- change role (admin)
  POST   /api/admin/users/{id}/ban     -- ban with reason and optional duration in days (moderator)
  POST   /api/admin/users/{id}/unban   -- lift a ban (moderator)
  DELETE /api/admin/users/{id}         -- delete account (admin)

Guards:
  Nobody changes their own role, bans themselves or deletes themselves.
  Bans only reach principals ranked strictly below the caller, so a
  moderator cannot ban another moderator or an admin.
  The last admin can be neither demoted nor deleted.
  Role and ban changes apply on the target's next request: sessions carry
  only the user id and auth.dependencies reloads the user every time.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Request

from api import activity
from api.models import BanRequest, MessageResponse, RoleChangeRequest, UserPublic
from auth.credentials import redact
from auth.dependencies import require_admin, require_moderator
from auth.models import Role, User
from auth.store import UserStore
from market.store import MarketStore

logger = logging.getLogger("devscripts.admin")

router = APIRouter(prefix="/admin/users")


def _load_target(user_store: UserStore, user_id: int) -> User:
    target = user_store.get_by_id(user_id)
    if target is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})
    return target


def _reject_self(actor: User, target_id: int, action: str) -> None:
    if actor.id == target_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_action", "message": f"You cannot {action} your own account."},
        )


def _reject_last_admin(user_store: UserStore, target: User) -> None:
    if target.role == Role.admin and user_store.count_admins() <= 1:
        raise HTTPException(
            status_code=400,
            detail={"code": "last_admin", "message": "Cannot remove the last admin account."},
        )


@router.get("", response_model=list[UserPublic])
def list_users(request: Request, _: User = Depends(require_moderator)) -> list[UserPublic]:
    user_store: UserStore = request.app.state.user_store
    return [UserPublic.from_domain(u) for u in user_store.list_users()]


@router.patch("/{user_id}/role", response_model=UserPublic)
def change_role(
    request: Request,
    user_id: int,
    body: RoleChangeRequest,
    admin: User = Depends(require_admin),
) -> UserPublic:
    user_store: UserStore = request.app.state.user_store
    _reject_self(admin, user_id, "change the role of")
    target = _load_target(user_store, user_id)
    if body.role != Role.admin:
        _reject_last_admin(user_store, target)
    user_store.update_user(user_id, role=body.role)
    logger.info("Admin id=%s set role of user id=%s to %s", admin.id, user_id, body.role.value)
    activity.record(request, "change_role", admin.id, target_user_id=user_id, role=body.role.value)
    return UserPublic.from_domain(redact(_load_target(user_store, user_id)))


@router.post("/{user_id}/ban", response_model=UserPublic)
def ban_user(
    request: Request,
    user_id: int,
    body: BanRequest,
    moderator: User = Depends(require_moderator),
) -> UserPublic:
    """Ban a lower-ranked user. duration is in days; omitted or 0 bans permanently."""
    user_store: UserStore = request.app.state.user_store
    _reject_self(moderator, user_id, "ban")
    target = _load_target(user_store, user_id)
    if target.role.rank >= moderator.role.rank:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Cannot ban a user with an equal or higher role."},
        )
    expires_at = None
    if body.duration:
        expires_at = (datetime.now(timezone.utc) + timedelta(days=body.duration)).isoformat()
    user_store.ban_user(user_id, body.reason, expires_at)
    logger.warning("User id=%s banned by id=%s until %s", user_id, moderator.id, expires_at or "forever")
    activity.record(request, "ban_user", moderator.id, target_user_id=user_id, reason=body.reason)
    return UserPublic.from_domain(redact(_load_target(user_store, user_id)))


@router.post("/{user_id}/unban", response_model=UserPublic)
def unban_user(
    request: Request,
    user_id: int,
    moderator: User = Depends(require_moderator),
) -> UserPublic:
    user_store: UserStore = request.app.state.user_store
    _load_target(user_store, user_id)
    user_store.unban_user(user_id)
    logger.info("User id=%s unbanned by id=%s", user_id, moderator.id)
    activity.record(request, "unban_user", moderator.id, target_user_id=user_id)
    return UserPublic.from_domain(redact(_load_target(user_store, user_id)))


@router.delete("/{user_id}", response_model=MessageResponse)
def delete_user(
    request: Request,
    user_id: int,
    admin: User = Depends(require_admin),
) -> MessageResponse:
    """Delete an account. Its favorites go with it; its scripts stay, unowned.

    Every session the account holds is destroyed with it.
    """
    user_store: UserStore = request.app.state.user_store
    market_store: MarketStore = request.app.state.market_store
    _reject_self(admin, user_id, "delete")
    target = _load_target(user_store, user_id)
    _reject_last_admin(user_store, target)
    user_store.delete_user(user_id)
    market_store.delete_user_data(user_id)
    request.app.state.session_manager.destroy_user(user_id)
    logger.info("Admin id=%s deleted user id=%s", admin.id, user_id)
    activity.record(request, "delete_user", admin.id, target_user_id=user_id, username=target.username)
    return MessageResponse(message="User deleted successfully")
