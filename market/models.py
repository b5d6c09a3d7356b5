"""
market/models.py -- Domain dataclasses for the DevScripts marketplace.

These are pure data containers with zero logic. Business rules (active banner
selection, click tracking, analytics aggregation) live in market/store.py.

id is None before a record is written to the database. Timestamps are
ISO 8601 strings in UTC, set by the store on insert.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Script:
    """A shared Roblox script.

    featured_rank: None means not featured; lower ranks are shown first.
    user_id: uploader, None for seeded/anonymous scripts.
    """

    title: str
    description: str
    code: str
    image_url: str
    game_type: Optional[str] = None
    game_link: Optional[str] = None
    discord_link: Optional[str] = None
    user_id: Optional[int] = None
    is_approved: bool = True
    featured_rank: Optional[int] = None
    views: int = 0
    copies: int = 0
    last_updated: str = ""
    id: Optional[int] = None


@dataclass
class Favorite:
    user_id: int
    script_id: int
    created_at: str = ""
    id: Optional[int] = None


@dataclass
class AdCampaign:
    """A dated group of banners. Banners of an inactive or out-of-window
    campaign are never served."""

    name: str
    start_date: str
    description: Optional[str] = None
    end_date: Optional[str] = None
    is_active: bool = True
    created_by: Optional[int] = None
    created_at: str = ""
    id: Optional[int] = None


@dataclass
class AdBanner:
    name: str
    image_url: str
    link_url: str
    position: Optional[str] = None  # "header" | "sidebar" | "footer" | ...
    campaign_id: Optional[int] = None
    is_active: bool = True
    impressions: int = 0
    clicks: int = 0
    created_at: str = ""
    id: Optional[int] = None


@dataclass
class AffiliateLink:
    code: str
    url: str
    description: Optional[str] = None
    user_id: Optional[int] = None
    expires_at: Optional[str] = None
    is_active: bool = True
    clicks: int = 0
    created_at: str = ""
    id: Optional[int] = None


@dataclass
class AffiliateClick:
    """Append-only record of one affiliate redirect."""

    link_id: int
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    created_at: str = ""
    id: Optional[int] = None


@dataclass
class ActivityLog:
    """Append-only audit entry. user_id is None for anonymous actions."""

    action: str
    user_id: Optional[int] = None
    details: dict = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: str = ""
    id: Optional[int] = None
