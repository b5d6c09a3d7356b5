"""
api/routes/ads.py -- Ad campaigns and banners.

Admin routes (require_admin, applied per route):
  GET/POST      /api/admin/ad-campaigns
  PATCH/DELETE  /api/admin/ad-campaigns/{id}     -- DELETE also removes its banners
  GET/POST      /api/admin/ad-banners            -- GET accepts ?campaignId=
  PATCH/DELETE  /api/admin/ad-banners/{id}
  GET           /api/admin/ad-stats

Public routes:
  GET  /api/ads/banners?position=               -- banners eligible to serve now
  POST /api/ads/banners/{id}/impression
  POST /api/ads/banners/{id}/click

Eligibility lives in MarketStore.list_active_banners(): banner flag set and,
when the banner belongs to a campaign, the campaign is active and inside its
date window.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import (
    AdStatsResponse,
    BannerCreate,
    BannerPatch,
    BannerResponse,
    CampaignCreate,
    CampaignPatch,
    CampaignResponse,
    MessageResponse,
)
from auth.dependencies import require_admin
from auth.models import User
from market.models import AdBanner, AdCampaign
from market.store import MarketStore

router = APIRouter()


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Normalize a request datetime to an ISO string in UTC. Naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _not_found(what: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": f"{what} not found."})


def _check_window(start: Optional[str], end: Optional[str]) -> None:
    if start and end and end < start:
        raise HTTPException(
            status_code=400,
            detail={"code": "validation_error", "message": "endDate must not be before startDate."},
        )


def _check_campaign(store: MarketStore, campaign_id: Optional[int]) -> None:
    if campaign_id is not None and store.get_campaign(campaign_id) is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "validation_error", "message": f"Campaign {campaign_id} does not exist."},
        )


# ---------------------------------------------------------------------------
# Campaigns (admin)
# ---------------------------------------------------------------------------


@router.get("/admin/ad-campaigns", response_model=list[CampaignResponse])
def list_campaigns(request: Request, _: User = Depends(require_admin)) -> list[CampaignResponse]:
    store: MarketStore = request.app.state.market_store
    return [CampaignResponse.from_domain(c) for c in store.list_campaigns()]


@router.post("/admin/ad-campaigns", status_code=201, response_model=CampaignResponse)
def create_campaign(
    request: Request,
    body: CampaignCreate,
    admin: User = Depends(require_admin),
) -> CampaignResponse:
    store: MarketStore = request.app.state.market_store
    start, end = to_iso(body.start_date), to_iso(body.end_date)
    _check_window(start, end)
    campaign_id = store.create_campaign(
        AdCampaign(
            name=body.name,
            description=body.description,
            start_date=start,
            end_date=end,
            is_active=body.is_active,
            created_by=admin.id,
        )
    )
    return CampaignResponse.from_domain(store.get_campaign(campaign_id))


@router.patch("/admin/ad-campaigns/{campaign_id}", response_model=CampaignResponse)
def update_campaign(
    request: Request,
    campaign_id: int,
    body: CampaignPatch,
    _: User = Depends(require_admin),
) -> CampaignResponse:
    store: MarketStore = request.app.state.market_store
    current = store.get_campaign(campaign_id)
    if current is None:
        raise _not_found("Campaign")
    fields = {
        k: v
        for k, v in body.model_dump(exclude_unset=True).items()
        if v is not None or k in ("description", "end_date")
    }
    for key in ("start_date", "end_date"):
        if key in fields:
            fields[key] = to_iso(fields[key])
    _check_window(fields.get("start_date", current.start_date), fields.get("end_date", current.end_date))
    store.update_campaign(campaign_id, **fields)
    return CampaignResponse.from_domain(store.get_campaign(campaign_id))


@router.delete("/admin/ad-campaigns/{campaign_id}", response_model=MessageResponse)
def delete_campaign(request: Request, campaign_id: int, _: User = Depends(require_admin)) -> MessageResponse:
    store: MarketStore = request.app.state.market_store
    if not store.delete_campaign(campaign_id):
        raise _not_found("Campaign")
    return MessageResponse(message="Campaign deleted successfully")


# ---------------------------------------------------------------------------
# Banners (admin)
# ---------------------------------------------------------------------------


@router.get("/admin/ad-banners", response_model=list[BannerResponse])
def list_banners(
    request: Request,
    campaign_id: Optional[int] = Query(None, alias="campaignId"),
    _: User = Depends(require_admin),
) -> list[BannerResponse]:
    store: MarketStore = request.app.state.market_store
    return [BannerResponse.from_domain(b) for b in store.list_banners(campaign_id)]


@router.post("/admin/ad-banners", status_code=201, response_model=BannerResponse)
def create_banner(request: Request, body: BannerCreate, _: User = Depends(require_admin)) -> BannerResponse:
    store: MarketStore = request.app.state.market_store
    _check_campaign(store, body.campaign_id)
    banner_id = store.create_banner(
        AdBanner(
            name=body.name,
            image_url=body.image_url,
            link_url=body.link_url,
            position=body.position,
            campaign_id=body.campaign_id,
            is_active=body.is_active,
        )
    )
    return BannerResponse.from_domain(store.get_banner(banner_id))


@router.patch("/admin/ad-banners/{banner_id}", response_model=BannerResponse)
def update_banner(
    request: Request,
    banner_id: int,
    body: BannerPatch,
    _: User = Depends(require_admin),
) -> BannerResponse:
    store: MarketStore = request.app.state.market_store
    if store.get_banner(banner_id) is None:
        raise _not_found("Banner")
    fields = {
        k: v
        for k, v in body.model_dump(exclude_unset=True).items()
        if v is not None or k in ("position", "campaign_id")
    }
    if "campaign_id" in fields:
        _check_campaign(store, fields["campaign_id"])
    store.update_banner(banner_id, **fields)
    return BannerResponse.from_domain(store.get_banner(banner_id))


@router.delete("/admin/ad-banners/{banner_id}", response_model=MessageResponse)
def delete_banner(request: Request, banner_id: int, _: User = Depends(require_admin)) -> MessageResponse:
    store: MarketStore = request.app.state.market_store
    if not store.delete_banner(banner_id):
        raise _not_found("Banner")
    return MessageResponse(message="Banner deleted successfully")


@router.get("/admin/ad-stats", response_model=AdStatsResponse)
def ad_stats(request: Request, _: User = Depends(require_admin)) -> AdStatsResponse:
    store: MarketStore = request.app.state.market_store
    return AdStatsResponse.model_validate(store.ad_stats())


# ---------------------------------------------------------------------------
# Public serving and tracking
# ---------------------------------------------------------------------------


@router.get("/ads/banners", response_model=list[BannerResponse])
def active_banners(request: Request, position: Optional[str] = Query(None, max_length=50)) -> list[BannerResponse]:
    store: MarketStore = request.app.state.market_store
    return [BannerResponse.from_domain(b) for b in store.list_active_banners(position)]


@router.post("/ads/banners/{banner_id}/impression", response_model=MessageResponse)
def track_impression(request: Request, banner_id: int) -> MessageResponse:
    store: MarketStore = request.app.state.market_store
    if not store.track_impression(banner_id):
        raise _not_found("Banner")
    return MessageResponse(message="Impression recorded")


@router.post("/ads/banners/{banner_id}/click", response_model=MessageResponse)
def track_click(request: Request, banner_id: int) -> MessageResponse:
    store: MarketStore = request.app.state.market_store
    if not store.track_click(banner_id):
        raise _not_found("Banner")
    return MessageResponse(message="Click recorded")
