"""
api/routes/affiliate.py -- Affiliate links and the public redirect.

Admin routes:
  GET/POST      /api/admin/affiliate-links
  PATCH/DELETE  /api/admin/affiliate-links/{id}   -- DELETE also drops its click history
  GET           /api/admin/affiliate-stats?linkId=&start=&end=

Public route:
  GET /api/ref/{code}  -- 302 to the link target and records the click.
                          Unknown, inactive and expired codes are all 404.

start/end are calendar dates (YYYY-MM-DD), both inclusive.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import IntegrityError

from api.models import (
    AffiliateLinkCreate,
    AffiliateLinkPatch,
    AffiliateLinkResponse,
    AffiliateStatsResponse,
    MessageResponse,
)
from api.routes.ads import to_iso
from auth.dependencies import require_admin
from auth.models import User
from market.models import AffiliateClick, AffiliateLink
from market.store import MarketStore, link_is_live

logger = logging.getLogger("devscripts.affiliate")

router = APIRouter()

_CODE_TAKEN = {"code": "code_taken", "message": "Affiliate code already exists"}


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "Affiliate link not found."})


@router.get("/admin/affiliate-links", response_model=list[AffiliateLinkResponse])
def list_links(request: Request, _: User = Depends(require_admin)) -> list[AffiliateLinkResponse]:
    store: MarketStore = request.app.state.market_store
    return [AffiliateLinkResponse.from_domain(link) for link in store.list_affiliate_links()]


@router.post("/admin/affiliate-links", status_code=201, response_model=AffiliateLinkResponse)
def create_link(
    request: Request,
    body: AffiliateLinkCreate,
    admin: User = Depends(require_admin),
) -> AffiliateLinkResponse:
    store: MarketStore = request.app.state.market_store
    try:
        link_id = store.create_affiliate_link(
            AffiliateLink(
                code=body.code,
                url=body.url,
                description=body.description,
                user_id=body.user_id if body.user_id is not None else admin.id,
                expires_at=to_iso(body.expires_at),
                is_active=body.is_active,
            )
        )
    except IntegrityError:
        raise HTTPException(status_code=400, detail=_CODE_TAKEN) from None
    return AffiliateLinkResponse.from_domain(store.get_affiliate_link(link_id))


@router.patch("/admin/affiliate-links/{link_id}", response_model=AffiliateLinkResponse)
def update_link(
    request: Request,
    link_id: int,
    body: AffiliateLinkPatch,
    _: User = Depends(require_admin),
) -> AffiliateLinkResponse:
    store: MarketStore = request.app.state.market_store
    if store.get_affiliate_link(link_id) is None:
        raise _not_found()
    fields = {
        k: v
        for k, v in body.model_dump(exclude_unset=True).items()
        if v is not None or k in ("description", "expires_at")
    }
    if "expires_at" in fields:
        fields["expires_at"] = to_iso(fields["expires_at"])
    try:
        store.update_affiliate_link(link_id, **fields)
    except IntegrityError:
        raise HTTPException(status_code=400, detail=_CODE_TAKEN) from None
    return AffiliateLinkResponse.from_domain(store.get_affiliate_link(link_id))


@router.delete("/admin/affiliate-links/{link_id}", response_model=MessageResponse)
def delete_link(request: Request, link_id: int, _: User = Depends(require_admin)) -> MessageResponse:
    store: MarketStore = request.app.state.market_store
    if not store.delete_affiliate_link(link_id):
        raise _not_found()
    return MessageResponse(message="Affiliate link deleted successfully")


@router.get("/admin/affiliate-stats", response_model=AffiliateStatsResponse)
def affiliate_stats(
    request: Request,
    link_id: Optional[int] = Query(None, alias="linkId"),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    _: User = Depends(require_admin),
) -> AffiliateStatsResponse:
    store: MarketStore = request.app.state.market_store
    if start and end and end < start:
        raise HTTPException(
            status_code=400,
            detail={"code": "validation_error", "message": "end must not be before start."},
        )
    # Stored timestamps are ISO strings, so "YYYY-MM-DD" of the next day is an
    # exclusive upper bound for everything on `end`.
    start_iso = start.isoformat() if start else None
    end_iso = (end + timedelta(days=1)).isoformat() if end else None
    return AffiliateStatsResponse.model_validate(store.affiliate_click_stats(link_id, start_iso, end_iso))


@router.get("/ref/{code}", response_class=RedirectResponse, status_code=302)
def follow_link(request: Request, code: str) -> RedirectResponse:
    store: MarketStore = request.app.state.market_store
    link = store.get_affiliate_link_by_code(code)
    if link is None or not link_is_live(link, datetime.now(timezone.utc)):
        raise _not_found()
    store.track_affiliate_click(
        AffiliateClick(
            link_id=link.id,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            referrer=request.headers.get("referer"),
        )
    )
    logger.info("Affiliate redirect code=%s link_id=%s", code, link.id)
    return RedirectResponse(link.url, status_code=302)
