"""
market/store.py -- SQLAlchemy-backed persistence layer for the marketplace.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in market/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change, not a rewrite.

Pattern: Repository + Data Mapper. MarketStore is the repository (one clean
interface per entity). The _row_to_* functions are the mappers. Route
handlers never touch SQL directly.

Security: all queries use bound parameters. No f-strings in SQL. Search
terms are LIKE-escaped (autoescape=True) so "%" and "_" match literally.

Usage:
    store = MarketStore()                               # DATABASE_URL
    store = MarketStore("postgresql://user:pw@host/db") # PostgreSQL
    script_id = store.create_script(script)
    store.add_favorite(user_id, script_id)
    banners = store.list_active_banners(position="sidebar")
    store.close()
"""

import json
from collections import Counter
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine

from core.config import get_settings
from market.models import (
    ActivityLog,
    AdBanner,
    AdCampaign,
    AffiliateClick,
    AffiliateLink,
    Favorite,
    Script,
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_scripts = Table(
    "scripts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(255), nullable=False),
    Column("description", Text, nullable=False),
    Column("code", Text, nullable=False),
    Column("image_url", Text, nullable=False),
    Column("game_type", String(100)),
    Column("game_link", Text),
    Column("discord_link", Text),
    Column("user_id", Integer, index=True),
    Column("is_approved", Integer, nullable=False, server_default="1"),
    Column("featured_rank", Integer),
    Column("views", Integer, nullable=False, server_default="0"),
    Column("copies", Integer, nullable=False, server_default="0"),
    Column("last_updated", String(32), nullable=False),
    sqlite_autoincrement=True,
)

_favorites = Table(
    "favorites",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("script_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "script_id", name="uq_favorite_user_script"),
)

_campaigns = Table(
    "ad_campaigns",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("start_date", String(32), nullable=False),
    Column("end_date", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_by", Integer),
    Column("created_at", String(32), nullable=False),
    sqlite_autoincrement=True,
)

_banners = Table(
    "ad_banners",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("image_url", Text, nullable=False),
    Column("link_url", Text, nullable=False),
    Column("position", String(50)),
    Column("campaign_id", Integer, index=True),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("impressions", Integer, nullable=False, server_default="0"),
    Column("clicks", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    sqlite_autoincrement=True,
)

_affiliate_links = Table(
    "affiliate_links",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(64), nullable=False, unique=True),
    Column("url", Text, nullable=False),
    Column("description", Text),
    Column("user_id", Integer),
    Column("expires_at", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("clicks", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    sqlite_autoincrement=True,
)

_affiliate_clicks = Table(
    "affiliate_clicks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("link_id", Integer, nullable=False, index=True),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("referrer", Text),
    Column("created_at", String(32), nullable=False),
)

_activity = Table(
    "activity_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, index=True),
    Column("action", String(64), nullable=False),
    Column("details", Text),  # JSON object serialized as text
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False),
)

# Mutable columns per entity, checked before any UPDATE.
_SCRIPT_FIELDS = frozenset(
    {
        "title",
        "description",
        "code",
        "image_url",
        "game_type",
        "game_link",
        "discord_link",
        "is_approved",
        "featured_rank",
    }
)
_CAMPAIGN_FIELDS = frozenset({"name", "description", "start_date", "end_date", "is_active"})
_BANNER_FIELDS = frozenset({"name", "image_url", "link_url", "position", "campaign_id", "is_active"})
_LINK_FIELDS = frozenset({"code", "url", "description", "expires_at", "is_active"})
_BOOL_FIELDS = frozenset({"is_approved", "is_active"})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_iso(value: str) -> datetime:
    """Parse an ISO 8601 string; naive values are taken as UTC."""
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _ctr(impressions: int, clicks: int) -> float:
    """Click-through rate in percent, rounded to two places."""
    if not impressions:
        return 0.0
    return round(clicks / impressions * 100, 2)


def campaign_is_live(campaign: AdCampaign, now: datetime) -> bool:
    if not campaign.is_active:
        return False
    if _parse_iso(campaign.start_date) > now:
        return False
    if campaign.end_date and _parse_iso(campaign.end_date) < now:
        return False
    return True


def link_is_live(link: AffiliateLink, now: datetime) -> bool:
    if not link.is_active:
        return False
    return not (link.expires_at and _parse_iso(link.expires_at) <= now)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class MarketStore:
    def __init__(self, db_url: Optional[str] = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def _update(self, table: Table, row_id: int, allowed: frozenset, fields: dict) -> bool:
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown fields for {table.name}: {unknown!r}")
        values = {k: (1 if v else 0) if k in _BOOL_FIELDS else v for k, v in fields.items()}
        if table is _scripts:
            values["last_updated"] = _now_iso()
        if not values:
            with self.engine.connect() as conn:
                return conn.execute(select(table.c.id).where(table.c.id == row_id)).first() is not None
        with self.engine.connect() as conn:
            result = conn.execute(table.update().where(table.c.id == row_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def _increment(self, column, row_id: int) -> bool:
        table = column.table
        with self.engine.connect() as conn:
            result = conn.execute(table.update().where(table.c.id == row_id).values({column: column + 1}))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Scripts
    # ------------------------------------------------------------------

    def create_script(self, script: Script) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _scripts.insert().values(
                    title=script.title,
                    description=script.description,
                    code=script.code,
                    image_url=script.image_url,
                    game_type=script.game_type,
                    game_link=script.game_link,
                    discord_link=script.discord_link,
                    user_id=script.user_id,
                    is_approved=1 if script.is_approved else 0,
                    featured_rank=script.featured_rank,
                    views=script.views,
                    copies=script.copies,
                    last_updated=script.last_updated or _now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_script(self, script_id: int) -> Optional[Script]:
        with self.engine.connect() as conn:
            row = conn.execute(_scripts.select().where(_scripts.c.id == script_id)).fetchone()
        return _row_to_script(row) if row is not None else None

    def list_scripts(self, include_unapproved: bool = False) -> list[Script]:
        """All scripts, most recently updated first."""
        query = _scripts.select()
        if not include_unapproved:
            query = query.where(_scripts.c.is_approved == 1)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_scripts.c.last_updated.desc(), _scripts.c.id.desc())).fetchall()
        return [_row_to_script(r) for r in rows]

    def search_scripts(self, query: str) -> list[Script]:
        """Case-insensitive substring match on title, description, game type and game link.

        An empty query returns every approved script.
        """
        term = (query or "").strip()
        if not term:
            return self.list_scripts()
        columns = (_scripts.c.title, _scripts.c.description, _scripts.c.game_type, _scripts.c.game_link)
        condition = or_(*(c.icontains(term, autoescape=True) for c in columns))
        with self.engine.connect() as conn:
            rows = conn.execute(
                _scripts.select()
                .where(condition & (_scripts.c.is_approved == 1))
                .order_by(_scripts.c.last_updated.desc(), _scripts.c.id.desc())
            ).fetchall()
        return [_row_to_script(r) for r in rows]

    def list_featured_scripts(self, limit: int = 5) -> list[Script]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _scripts.select()
                .where(_scripts.c.featured_rank.is_not(None) & (_scripts.c.is_approved == 1))
                .order_by(_scripts.c.featured_rank, _scripts.c.id)
                .limit(limit)
            ).fetchall()
        return [_row_to_script(r) for r in rows]

    def list_user_scripts(self, user_id: int) -> list[Script]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _scripts.select().where(_scripts.c.user_id == user_id).order_by(_scripts.c.id)
            ).fetchall()
        return [_row_to_script(r) for r in rows]

    def update_script(self, script_id: int, **fields) -> bool:
        """Update mutable script fields; bumps last_updated. False if not found."""
        return self._update(_scripts, script_id, _SCRIPT_FIELDS, fields)

    def delete_script(self, script_id: int) -> bool:
        """Delete a script and the favorites pointing at it."""
        with self.engine.connect() as conn:
            conn.execute(_favorites.delete().where(_favorites.c.script_id == script_id))
            result = conn.execute(_scripts.delete().where(_scripts.c.id == script_id))
            conn.commit()
        return result.rowcount > 0

    def increment_views(self, script_id: int) -> bool:
        return self._increment(_scripts.c.views, script_id)

    def increment_copies(self, script_id: int) -> bool:
        return self._increment(_scripts.c.copies, script_id)

    def script_totals(self) -> dict[str, int]:
        """Return {"scripts": N, "views": N, "copies": N} across all scripts."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(
                    func.count(_scripts.c.id),
                    func.coalesce(func.sum(_scripts.c.views), 0),
                    func.coalesce(func.sum(_scripts.c.copies), 0),
                )
            ).one()
        return {"scripts": row[0], "views": row[1], "copies": row[2]}

    def count_scripts_updated_between(self, start_iso: str, end_iso: str) -> int:
        with self.engine.connect() as conn:
            return (
                conn.execute(
                    select(func.count())
                    .select_from(_scripts)
                    .where((_scripts.c.last_updated >= start_iso) & (_scripts.c.last_updated < end_iso))
                ).scalar()
                or 0
            )

    def top_scripts(self, limit: int = 10) -> list[Script]:
        """Most viewed scripts, for the analytics popularity table."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _scripts.select().order_by(_scripts.c.views.desc(), _scripts.c.copies.desc()).limit(limit)
            ).fetchall()
        return [_row_to_script(r) for r in rows]

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    def add_favorite(self, user_id: int, script_id: int) -> Favorite:
        """Favorite a script. Idempotent: an existing favorite is returned as-is."""
        existing = self._get_favorite(user_id, script_id)
        if existing is not None:
            return existing
        created_at = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _favorites.insert().values(user_id=user_id, script_id=script_id, created_at=created_at)
            )
            conn.commit()
        return Favorite(user_id=user_id, script_id=script_id, created_at=created_at, id=result.inserted_primary_key[0])

    def _get_favorite(self, user_id: int, script_id: int) -> Optional[Favorite]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _favorites.select().where((_favorites.c.user_id == user_id) & (_favorites.c.script_id == script_id))
            ).fetchone()
        if row is None:
            return None
        return Favorite(user_id=row.user_id, script_id=row.script_id, created_at=row.created_at, id=row.id)

    def remove_favorite(self, user_id: int, script_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _favorites.delete().where((_favorites.c.user_id == user_id) & (_favorites.c.script_id == script_id))
            )
            conn.commit()
        return result.rowcount > 0

    def is_favorite(self, user_id: int, script_id: int) -> bool:
        return self._get_favorite(user_id, script_id) is not None

    def list_favorites(self, user_id: int) -> list[Script]:
        """Scripts the user has favorited, newest favorite first."""
        query = (
            select(_scripts)
            .join(_favorites, _favorites.c.script_id == _scripts.c.id)
            .where(_favorites.c.user_id == user_id)
            .order_by(_favorites.c.created_at.desc(), _favorites.c.id.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_script(r) for r in rows]

    def delete_user_data(self, user_id: int) -> None:
        """Drop favorites owned by a deleted user. Their scripts stay, unowned."""
        with self.engine.connect() as conn:
            conn.execute(_favorites.delete().where(_favorites.c.user_id == user_id))
            conn.execute(_scripts.update().where(_scripts.c.user_id == user_id).values(user_id=None))
            conn.commit()

    # ------------------------------------------------------------------
    # Ad campaigns
    # ------------------------------------------------------------------

    def create_campaign(self, campaign: AdCampaign) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _campaigns.insert().values(
                    name=campaign.name,
                    description=campaign.description,
                    start_date=campaign.start_date,
                    end_date=campaign.end_date,
                    is_active=1 if campaign.is_active else 0,
                    created_by=campaign.created_by,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_campaign(self, campaign_id: int) -> Optional[AdCampaign]:
        with self.engine.connect() as conn:
            row = conn.execute(_campaigns.select().where(_campaigns.c.id == campaign_id)).fetchone()
        return _row_to_campaign(row) if row is not None else None

    def list_campaigns(self) -> list[AdCampaign]:
        with self.engine.connect() as conn:
            rows = conn.execute(_campaigns.select().order_by(_campaigns.c.id)).fetchall()
        return [_row_to_campaign(r) for r in rows]

    def update_campaign(self, campaign_id: int, **fields) -> bool:
        return self._update(_campaigns, campaign_id, _CAMPAIGN_FIELDS, fields)

    def delete_campaign(self, campaign_id: int) -> bool:
        """Delete a campaign together with its banners."""
        with self.engine.connect() as conn:
            conn.execute(_banners.delete().where(_banners.c.campaign_id == campaign_id))
            result = conn.execute(_campaigns.delete().where(_campaigns.c.id == campaign_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Ad banners
    # ------------------------------------------------------------------

    def create_banner(self, banner: AdBanner) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _banners.insert().values(
                    name=banner.name,
                    image_url=banner.image_url,
                    link_url=banner.link_url,
                    position=banner.position,
                    campaign_id=banner.campaign_id,
                    is_active=1 if banner.is_active else 0,
                    impressions=0,
                    clicks=0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_banner(self, banner_id: int) -> Optional[AdBanner]:
        with self.engine.connect() as conn:
            row = conn.execute(_banners.select().where(_banners.c.id == banner_id)).fetchone()
        return _row_to_banner(row) if row is not None else None

    def list_banners(self, campaign_id: Optional[int] = None) -> list[AdBanner]:
        query = _banners.select()
        if campaign_id is not None:
            query = query.where(_banners.c.campaign_id == campaign_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_banners.c.id)).fetchall()
        return [_row_to_banner(r) for r in rows]

    def update_banner(self, banner_id: int, **fields) -> bool:
        return self._update(_banners, banner_id, _BANNER_FIELDS, fields)

    def delete_banner(self, banner_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_banners.delete().where(_banners.c.id == banner_id))
            conn.commit()
        return result.rowcount > 0

    def track_impression(self, banner_id: int) -> bool:
        return self._increment(_banners.c.impressions, banner_id)

    def track_click(self, banner_id: int) -> bool:
        return self._increment(_banners.c.clicks, banner_id)

    def list_active_banners(self, position: Optional[str] = None, now: Optional[datetime] = None) -> list[AdBanner]:
        """Banners eligible to be served right now.

        A banner qualifies when its own is_active flag is set and, if it
        belongs to a campaign, that campaign is active, has started and has
        not ended. A banner whose campaign row is missing is not served.
        """
        now = now or datetime.now(timezone.utc)
        campaigns = {c.id: c for c in self.list_campaigns()}
        query = _banners.select().where(_banners.c.is_active == 1)
        if position:
            query = query.where(_banners.c.position == position)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_banners.c.id)).fetchall()
        active: list[AdBanner] = []
        for banner in (_row_to_banner(r) for r in rows):
            if banner.campaign_id is not None:
                campaign = campaigns.get(banner.campaign_id)
                if campaign is None or not campaign_is_live(campaign, now):
                    continue
            active.append(banner)
        return active

    def ad_stats(self) -> dict:
        """Impressions, clicks and CTR per campaign plus overall totals."""
        banners = self.list_banners()
        per_campaign: list[dict] = []
        for campaign in self.list_campaigns():
            owned = [b for b in banners if b.campaign_id == campaign.id]
            impressions = sum(b.impressions for b in owned)
            clicks = sum(b.clicks for b in owned)
            per_campaign.append(
                {
                    "campaign_id": campaign.id,
                    "name": campaign.name,
                    "banners": len(owned),
                    "impressions": impressions,
                    "clicks": clicks,
                    "ctr": _ctr(impressions, clicks),
                }
            )
        total_impressions = sum(b.impressions for b in banners)
        total_clicks = sum(b.clicks for b in banners)
        return {
            "total_impressions": total_impressions,
            "total_clicks": total_clicks,
            "ctr": _ctr(total_impressions, total_clicks),
            "campaigns": per_campaign,
        }

    # ------------------------------------------------------------------
    # Affiliate links
    # ------------------------------------------------------------------

    def create_affiliate_link(self, link: AffiliateLink) -> int:
        """Insert a link. Raises sqlalchemy.exc.IntegrityError on a duplicate code."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _affiliate_links.insert().values(
                    code=link.code,
                    url=link.url,
                    description=link.description,
                    user_id=link.user_id,
                    expires_at=link.expires_at,
                    is_active=1 if link.is_active else 0,
                    clicks=0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_affiliate_link(self, link_id: int) -> Optional[AffiliateLink]:
        with self.engine.connect() as conn:
            row = conn.execute(_affiliate_links.select().where(_affiliate_links.c.id == link_id)).fetchone()
        return _row_to_link(row) if row is not None else None

    def get_affiliate_link_by_code(self, code: str) -> Optional[AffiliateLink]:
        with self.engine.connect() as conn:
            row = conn.execute(_affiliate_links.select().where(_affiliate_links.c.code == code)).fetchone()
        return _row_to_link(row) if row is not None else None

    def list_affiliate_links(self, user_id: Optional[int] = None) -> list[AffiliateLink]:
        query = _affiliate_links.select()
        if user_id is not None:
            query = query.where(_affiliate_links.c.user_id == user_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_affiliate_links.c.id)).fetchall()
        return [_row_to_link(r) for r in rows]

    def update_affiliate_link(self, link_id: int, **fields) -> bool:
        return self._update(_affiliate_links, link_id, _LINK_FIELDS, fields)

    def delete_affiliate_link(self, link_id: int) -> bool:
        with self.engine.connect() as conn:
            conn.execute(_affiliate_clicks.delete().where(_affiliate_clicks.c.link_id == link_id))
            result = conn.execute(_affiliate_links.delete().where(_affiliate_links.c.id == link_id))
            conn.commit()
        return result.rowcount > 0

    def track_affiliate_click(self, click: AffiliateClick) -> None:
        """Record one click and bump the link's counter in the same transaction."""
        with self.engine.connect() as conn:
            conn.execute(
                _affiliate_links.update()
                .where(_affiliate_links.c.id == click.link_id)
                .values(clicks=_affiliate_links.c.clicks + 1)
            )
            conn.execute(
                _affiliate_clicks.insert().values(
                    link_id=click.link_id,
                    ip_address=click.ip_address,
                    user_agent=click.user_agent,
                    referrer=click.referrer,
                    created_at=click.created_at or _now_iso(),
                )
            )
            conn.commit()

    def affiliate_click_stats(
        self,
        link_id: Optional[int] = None,
        start_iso: Optional[str] = None,
        end_iso: Optional[str] = None,
    ) -> dict:
        """Return {"total_clicks", "unique_ips", "clicks_by_day"} for the filtered clicks.

        clicks_by_day maps YYYY-MM-DD to a count, in date order.
        """
        query = select(_affiliate_clicks.c.ip_address, _affiliate_clicks.c.created_at)
        if link_id is not None:
            query = query.where(_affiliate_clicks.c.link_id == link_id)
        if start_iso:
            query = query.where(_affiliate_clicks.c.created_at >= start_iso)
        if end_iso:
            query = query.where(_affiliate_clicks.c.created_at <= end_iso)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        by_day = Counter(row.created_at[:10] for row in rows)
        return {
            "total_clicks": len(rows),
            "unique_ips": len({row.ip_address for row in rows if row.ip_address}),
            "clicks_by_day": dict(sorted(by_day.items())),
        }

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------

    def log_activity(self, entry: ActivityLog) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _activity.insert().values(
                    user_id=entry.user_id,
                    action=entry.action,
                    details=json.dumps(entry.details or {}),
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    created_at=entry.created_at or _now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def latest_activities(self, limit: int = 100, user_id: Optional[int] = None) -> list[ActivityLog]:
        query = _activity.select()
        if user_id is not None:
            query = query.where(_activity.c.user_id == user_id)
        with self.engine.connect() as conn:
            rows = conn.execute(
                query.order_by(_activity.c.created_at.desc(), _activity.c.id.desc()).limit(limit)
            ).fetchall()
        return [_row_to_activity(r) for r in rows]

    def activity_stats(self, start_iso: str, end_iso: str) -> dict:
        """Return {"total_activities", "unique_users", "action_counts"} for [start, end]."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_activity.c.user_id, _activity.c.action).where(
                    (_activity.c.created_at >= start_iso) & (_activity.c.created_at <= end_iso)
                )
            ).fetchall()
        return {
            "total_activities": len(rows),
            "unique_users": len({row.user_id for row in rows if row.user_id is not None}),
            "action_counts": dict(Counter(row.action for row in rows)),
        }

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def close(self) -> None:
        self.engine.dispose()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_script(row) -> Script:
    return Script(
        id=row.id,
        title=row.title,
        description=row.description,
        code=row.code,
        image_url=row.image_url,
        game_type=row.game_type,
        game_link=row.game_link,
        discord_link=row.discord_link,
        user_id=row.user_id,
        is_approved=bool(row.is_approved),
        featured_rank=row.featured_rank,
        views=row.views or 0,
        copies=row.copies or 0,
        last_updated=row.last_updated,
    )


def _row_to_campaign(row) -> AdCampaign:
    return AdCampaign(
        id=row.id,
        name=row.name,
        description=row.description,
        start_date=row.start_date,
        end_date=row.end_date,
        is_active=bool(row.is_active),
        created_by=row.created_by,
        created_at=row.created_at,
    )


def _row_to_banner(row) -> AdBanner:
    return AdBanner(
        id=row.id,
        name=row.name,
        image_url=row.image_url,
        link_url=row.link_url,
        position=row.position,
        campaign_id=row.campaign_id,
        is_active=bool(row.is_active),
        impressions=row.impressions or 0,
        clicks=row.clicks or 0,
        created_at=row.created_at,
    )


def _row_to_link(row) -> AffiliateLink:
    return AffiliateLink(
        id=row.id,
        code=row.code,
        url=row.url,
        description=row.description,
        user_id=row.user_id,
        expires_at=row.expires_at,
        is_active=bool(row.is_active),
        clicks=row.clicks or 0,
        created_at=row.created_at,
    )


def _row_to_activity(row) -> ActivityLog:
    return ActivityLog(
        id=row.id,
        user_id=row.user_id,
        action=row.action,
        details=json.loads(row.details) if row.details else {},
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=row.created_at,
    )
