"""
api/routes/scripts.py -- Script catalogue and favorites.

Routes (fixed paths registered before /scripts/{script_id} so they are not
captured by it):
  GET    /api/scripts                      -- approved scripts, newest first
  POST   /api/scripts                      -- upload (session)
  GET    /api/scripts/search?q=            -- substring search
  GET    /api/scripts/featured?limit=      -- featured scripts by rank
  GET    /api/scripts/{id}                 -- one script
  PATCH  /api/scripts/{id}                 -- edit (owner or moderator)
  DELETE /api/scripts/{id}                 -- delete (owner or moderator)
  POST   /api/scripts/{id}/view            -- count a view
  POST   /api/scripts/{id}/copy            -- count a copy
  GET    /api/scripts/{id}/favorite        -- favorite status (session)
  POST   /api/scripts/{id}/favorite        -- add favorite (session, idempotent)
  DELETE /api/scripts/{id}/favorite        -- remove favorite (session, idempotent)
  GET    /api/user/scripts                 -- caller's uploads (session)
  GET    /api/user/favorites               -- caller's favorites (session)

Unapproved scripts are hidden from listings and return 404 to everyone but
their owner and moderators. featuredRank and isApproved are moderator-only.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api import activity
from api.models import FavoriteStatus, MessageResponse, ScriptCreate, ScriptPatch, ScriptResponse
from auth.dependencies import get_current_user, try_get_current_user
from auth.models import Role, User, has_capability
from market.models import Script
from market.store import MarketStore

router = APIRouter()

_MODERATOR_FIELDS = frozenset({"featured_rank", "is_approved"})
# Fields a PATCH may explicitly set to null.
_NULLABLE_FIELDS = frozenset({"game_type", "game_link", "discord_link", "featured_rank"})


def _is_moderator(user: Optional[User]) -> bool:
    return user is not None and has_capability(user.role, Role.moderator)


def _can_manage(user: Optional[User], script: Script) -> bool:
    if user is None:
        return False
    return _is_moderator(user) or (script.user_id is not None and script.user_id == user.id)


def _load_script(request: Request, script_id: int, viewer: Optional[User] = None) -> Script:
    store: MarketStore = request.app.state.market_store
    script = store.get_script(script_id)
    if script is None or (not script.is_approved and not _can_manage(viewer, script)):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Script not found."})
    return script


def _forbidden(message: str) -> HTTPException:
    return HTTPException(status_code=403, detail={"code": "forbidden", "message": message})


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------


@router.get("/scripts", response_model=list[ScriptResponse])
def list_scripts(request: Request) -> list[ScriptResponse]:
    store: MarketStore = request.app.state.market_store
    return [ScriptResponse.from_domain(s) for s in store.list_scripts()]


@router.post("/scripts", status_code=201, response_model=ScriptResponse)
def create_script(
    request: Request,
    body: ScriptCreate,
    user: User = Depends(get_current_user),
) -> ScriptResponse:
    store: MarketStore = request.app.state.market_store
    script_id = store.create_script(
        Script(
            title=body.title,
            description=body.description,
            code=body.code,
            image_url=body.image_url,
            game_type=body.game_type,
            game_link=body.game_link,
            discord_link=body.discord_link,
            user_id=user.id,
        )
    )
    activity.record(request, "create_script", user.id, script_id=script_id, title=body.title)
    return ScriptResponse.from_domain(_load_script(request, script_id, user))


@router.get("/scripts/search", response_model=list[ScriptResponse])
def search_scripts(request: Request, q: str = Query("", max_length=200)) -> list[ScriptResponse]:
    store: MarketStore = request.app.state.market_store
    return [ScriptResponse.from_domain(s) for s in store.search_scripts(q)]


@router.get("/scripts/featured", response_model=list[ScriptResponse])
def featured_scripts(request: Request, limit: int = Query(5, ge=1, le=50)) -> list[ScriptResponse]:
    store: MarketStore = request.app.state.market_store
    return [ScriptResponse.from_domain(s) for s in store.list_featured_scripts(limit)]


@router.get("/scripts/{script_id}", response_model=ScriptResponse)
def get_script(request: Request, script_id: int) -> ScriptResponse:
    return ScriptResponse.from_domain(_load_script(request, script_id, try_get_current_user(request)))


@router.patch("/scripts/{script_id}", response_model=ScriptResponse)
def update_script(
    request: Request,
    script_id: int,
    body: ScriptPatch,
    user: User = Depends(get_current_user),
) -> ScriptResponse:
    store: MarketStore = request.app.state.market_store
    script = _load_script(request, script_id, user)
    if not _can_manage(user, script):
        raise _forbidden("Only the owner or a moderator can edit this script.")
    fields = {
        k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None or k in _NULLABLE_FIELDS
    }
    if _MODERATOR_FIELDS & fields.keys() and not _is_moderator(user):
        raise _forbidden("Moderator access required to feature or approve scripts.")
    store.update_script(script_id, **fields)
    activity.record(request, "update_script", user.id, script_id=script_id, fields=sorted(fields))
    return ScriptResponse.from_domain(_load_script(request, script_id, user))


@router.delete("/scripts/{script_id}", response_model=MessageResponse)
def delete_script(
    request: Request,
    script_id: int,
    user: User = Depends(get_current_user),
) -> MessageResponse:
    store: MarketStore = request.app.state.market_store
    script = _load_script(request, script_id, user)
    if not _can_manage(user, script):
        raise _forbidden("Only the owner or a moderator can delete this script.")
    store.delete_script(script_id)
    activity.record(request, "delete_script", user.id, script_id=script_id, title=script.title)
    return MessageResponse(message="Script deleted successfully")


@router.post("/scripts/{script_id}/view", response_model=ScriptResponse)
def record_view(request: Request, script_id: int) -> ScriptResponse:
    store: MarketStore = request.app.state.market_store
    _load_script(request, script_id)
    store.increment_views(script_id)
    return ScriptResponse.from_domain(_load_script(request, script_id))


@router.post("/scripts/{script_id}/copy", response_model=ScriptResponse)
def record_copy(request: Request, script_id: int) -> ScriptResponse:
    store: MarketStore = request.app.state.market_store
    _load_script(request, script_id)
    store.increment_copies(script_id)
    activity.record(request, "copy_script", None, script_id=script_id)
    return ScriptResponse.from_domain(_load_script(request, script_id))


# ---------------------------------------------------------------------------
# Favorites
# ---------------------------------------------------------------------------


@router.get("/scripts/{script_id}/favorite", response_model=FavoriteStatus)
def favorite_status(
    request: Request,
    script_id: int,
    user: User = Depends(get_current_user),
) -> FavoriteStatus:
    store: MarketStore = request.app.state.market_store
    _load_script(request, script_id, user)
    return FavoriteStatus(script_id=script_id, is_favorite=store.is_favorite(user.id, script_id))


@router.post("/scripts/{script_id}/favorite", response_model=FavoriteStatus)
def add_favorite(
    request: Request,
    script_id: int,
    user: User = Depends(get_current_user),
) -> FavoriteStatus:
    store: MarketStore = request.app.state.market_store
    _load_script(request, script_id, user)
    store.add_favorite(user.id, script_id)
    return FavoriteStatus(script_id=script_id, is_favorite=True)


@router.delete("/scripts/{script_id}/favorite", response_model=FavoriteStatus)
def remove_favorite(
    request: Request,
    script_id: int,
    user: User = Depends(get_current_user),
) -> FavoriteStatus:
    store: MarketStore = request.app.state.market_store
    store.remove_favorite(user.id, script_id)
    return FavoriteStatus(script_id=script_id, is_favorite=False)


# ---------------------------------------------------------------------------
# Per-user views
# ---------------------------------------------------------------------------


@router.get("/user/scripts", response_model=list[ScriptResponse])
def my_scripts(request: Request, user: User = Depends(get_current_user)) -> list[ScriptResponse]:
    store: MarketStore = request.app.state.market_store
    return [ScriptResponse.from_domain(s) for s in store.list_user_scripts(user.id)]


@router.get("/user/favorites", response_model=list[ScriptResponse])
def my_favorites(request: Request, user: User = Depends(get_current_user)) -> list[ScriptResponse]:
    store: MarketStore = request.app.state.market_store
    return [ScriptResponse.from_domain(s) for s in store.list_favorites(user.id)]
