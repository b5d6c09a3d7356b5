"""
api/activity.py -- Write audit entries for user-visible actions.

Route handlers call record() after the action has succeeded. Entries feed
the admin analytics page (api/routes/analytics.py).
"""

from __future__ import annotations

from fastapi import Request

from market.models import ActivityLog
from market.store import MarketStore


def record(request: Request, action: str, user_id: int | None, **details) -> int:
    store: MarketStore = request.app.state.market_store
    return store.log_activity(
        ActivityLog(
            action=action,
            user_id=user_id,
            details=details,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
    )
