"""
api/routes/analytics.py -- Admin dashboard numbers.

GET /api/admin/analytics?range=7days|30days|90days  (moderator)

Trends compare the selected window with the window of equal length just
before it, as a percent change rounded to one decimal.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    ActivityEntry,
    ActivityStats,
    AnalyticsOverview,
    AnalyticsResponse,
    ScriptPopularity,
    TrendCount,
)
from auth.dependencies import require_moderator
from auth.models import User
from auth.store import UserStore
from market.store import MarketStore

router = APIRouter()

_RANGE_DAYS = {"7days": 7, "30days": 30, "90days": 90}
_RECENT_LIMIT = 20
_POPULAR_LIMIT = 10


def percent_change(current: int, previous: int) -> float:
    """Percent change from previous to current. A rise from zero counts as 100%."""
    if previous == 0:
        return 100.0 if current else 0.0
    return round((current - previous) / previous * 100, 1)


@router.get("/admin/analytics", response_model=AnalyticsResponse)
def analytics(
    request: Request,
    range_: Literal["7days", "30days", "90days"] = Query("7days", alias="range"),
    _: User = Depends(require_moderator),
) -> AnalyticsResponse:
    user_store: UserStore = request.app.state.user_store
    market_store: MarketStore = request.app.state.market_store

    window = timedelta(days=_RANGE_DAYS[range_])
    end = datetime.now(timezone.utc)
    start = end - window
    previous_start = start - window
    end_iso, start_iso, previous_iso = end.isoformat(), start.isoformat(), previous_start.isoformat()

    new_users = user_store.count_users_created_between(start_iso, end_iso)
    prior_users = user_store.count_users_created_between(previous_iso, start_iso)
    active_scripts = market_store.count_scripts_updated_between(start_iso, end_iso)
    prior_scripts = market_store.count_scripts_updated_between(previous_iso, start_iso)
    totals = market_store.script_totals()

    overview = AnalyticsOverview(
        total_users=user_store.count_users(),
        total_scripts=totals["scripts"],
        total_views=totals["views"],
        total_copies=totals["copies"],
        new_users=TrendCount(count=new_users, trend=percent_change(new_users, prior_users)),
        active_scripts=TrendCount(count=active_scripts, trend=percent_change(active_scripts, prior_scripts)),
    )
    return AnalyticsResponse(
        range=range_,
        start=start_iso,
        end=end_iso,
        overview=overview,
        activity=ActivityStats.model_validate(market_store.activity_stats(start_iso, end_iso)),
        script_popularity=[
            ScriptPopularity(id=s.id, title=s.title, views=s.views, copies=s.copies)
            for s in market_store.top_scripts(_POPULAR_LIMIT)
        ],
        recent_activity=[ActivityEntry.from_domain(a) for a in market_store.latest_activities(_RECENT_LIMIT)],
    )
