"""
API request and response models for DevScripts REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
market/models.py, which own the internal domain representation. Route
handlers map between the two with the from_domain() factories below.

Wire format: camelCase field names, as the browser client expects.
Request and resource models inherit _ApiModel or _ResponseModel, which generate
camelCase aliases and still accept snake_case input.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import Role, User
from core.config import get_settings
from market.models import ActivityLog, AdBanner, AdCampaign, AffiliateLink, Script

_MIN_PASSWORD = get_settings().min_password_length


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


class _ResponseModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class RegisterRequest(_ApiModel):
    # Passwords are not stripped: leading/trailing spaces are part of the secret.
    model_config = ConfigDict(str_strip_whitespace=False)

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=_MIN_PASSWORD, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)


class LoginRequest(_ApiModel):
    model_config = ConfigDict(str_strip_whitespace=False)

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class ProfileUpdate(_ApiModel):
    """PUT /api/profile. Omitted or null fields are left unchanged; send "" to clear."""

    bio: Optional[str] = Field(default=None, max_length=2000)
    email: Optional[str] = Field(default=None, max_length=255)
    avatar_url: Optional[str] = Field(default=None, max_length=2048)
    discord_username: Optional[str] = Field(default=None, max_length=255)


class ChangePasswordRequest(_ApiModel):
    model_config = ConfigDict(str_strip_whitespace=False)

    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=_MIN_PASSWORD, max_length=255)


class AdminCreateUserRequest(_ApiModel):
    """POST /api/admin/create-user.

    isAdmin=true is shorthand for role=admin; an explicit role wins.
    """

    model_config = ConfigDict(str_strip_whitespace=False)

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=_MIN_PASSWORD, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    is_admin: bool = False
    role: Optional[Role] = None

    def resolved_role(self) -> Role:
        if self.role is not None:
            return self.role
        return Role.admin if self.is_admin else Role.user


class RoleChangeRequest(_ApiModel):
    role: Role


class BanRequest(_ApiModel):
    reason: str = Field(min_length=1, max_length=500)
    # Ban length in days; omitted or 0 means permanent.
    duration: Optional[int] = Field(default=None, ge=0, le=3650)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class UserPublic(_ResponseModel):
    """A user as the API shows it. The password hash is never part of it."""

    id: int
    username: str
    email: Optional[str]
    role: Role
    is_admin: bool
    bio: str
    avatar_url: str
    discord_username: Optional[str]
    created_at: Optional[str]
    last_login_at: Optional[str]
    is_banned: bool
    ban_reason: Optional[str]
    ban_expires_at: Optional[str]

    @classmethod
    def from_domain(cls, user: User) -> "UserPublic":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            is_admin=user.role == Role.admin,
            bio=user.bio,
            avatar_url=user.avatar_url,
            discord_username=user.discord_username,
            created_at=user.created_at,
            last_login_at=user.last_login_at,
            is_banned=user.is_currently_banned(),
            ban_reason=user.ban_reason,
            ban_expires_at=user.ban_expires_at,
        )


class UserEnvelope(_ResponseModel):
    user: UserPublic


class CreatedUserResponse(_ResponseModel):
    message: str
    user: UserPublic


# ---------------------------------------------------------------------------
# Scripts and favorites
# ---------------------------------------------------------------------------


class ScriptCreate(_ApiModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1, max_length=5000)
    code: str = Field(min_length=1, max_length=100_000)
    image_url: str = Field(min_length=1, max_length=2048)
    game_type: Optional[str] = Field(default=None, max_length=100)
    game_link: Optional[str] = Field(default=None, max_length=2048)
    discord_link: Optional[str] = Field(default=None, max_length=2048)


class ScriptPatch(_ApiModel):
    """PATCH /api/scripts/{id}. featuredRank and isApproved are moderator-only."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, min_length=1, max_length=5000)
    code: Optional[str] = Field(default=None, min_length=1, max_length=100_000)
    image_url: Optional[str] = Field(default=None, min_length=1, max_length=2048)
    game_type: Optional[str] = Field(default=None, max_length=100)
    game_link: Optional[str] = Field(default=None, max_length=2048)
    discord_link: Optional[str] = Field(default=None, max_length=2048)
    featured_rank: Optional[int] = Field(default=None, ge=0)
    is_approved: Optional[bool] = None


class ScriptResponse(_ResponseModel):
    id: int
    title: str
    description: str
    code: str
    image_url: str
    game_type: Optional[str]
    game_link: Optional[str]
    discord_link: Optional[str]
    user_id: Optional[int]
    is_approved: bool
    featured_rank: Optional[int]
    views: int
    copies: int
    last_updated: str

    @classmethod
    def from_domain(cls, script: Script) -> "ScriptResponse":
        return cls(
            id=script.id,
            title=script.title,
            description=script.description,
            code=script.code,
            image_url=script.image_url,
            game_type=script.game_type,
            game_link=script.game_link,
            discord_link=script.discord_link,
            user_id=script.user_id,
            is_approved=script.is_approved,
            featured_rank=script.featured_rank,
            views=script.views,
            copies=script.copies,
            last_updated=script.last_updated,
        )


class FavoriteStatus(_ResponseModel):
    script_id: int
    is_favorite: bool


# ---------------------------------------------------------------------------
# Ads
# ---------------------------------------------------------------------------


class CampaignCreate(_ApiModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    start_date: datetime
    end_date: Optional[datetime] = None
    is_active: bool = True


class CampaignPatch(_ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None


class CampaignResponse(_ResponseModel):
    id: int
    name: str
    description: Optional[str]
    start_date: str
    end_date: Optional[str]
    is_active: bool
    created_by: Optional[int]
    created_at: str

    @classmethod
    def from_domain(cls, campaign: AdCampaign) -> "CampaignResponse":
        return cls(
            id=campaign.id,
            name=campaign.name,
            description=campaign.description,
            start_date=campaign.start_date,
            end_date=campaign.end_date,
            is_active=campaign.is_active,
            created_by=campaign.created_by,
            created_at=campaign.created_at,
        )


class BannerCreate(_ApiModel):
    name: str = Field(min_length=1, max_length=255)
    image_url: str = Field(min_length=1, max_length=2048)
    link_url: str = Field(min_length=1, max_length=2048)
    position: Optional[str] = Field(default=None, max_length=50)
    campaign_id: Optional[int] = None
    is_active: bool = True


class BannerPatch(_ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    image_url: Optional[str] = Field(default=None, min_length=1, max_length=2048)
    link_url: Optional[str] = Field(default=None, min_length=1, max_length=2048)
    position: Optional[str] = Field(default=None, max_length=50)
    campaign_id: Optional[int] = None
    is_active: Optional[bool] = None


class BannerResponse(_ResponseModel):
    id: int
    name: str
    image_url: str
    link_url: str
    position: Optional[str]
    campaign_id: Optional[int]
    is_active: bool
    impressions: int
    clicks: int
    ctr: float
    created_at: str

    @classmethod
    def from_domain(cls, banner: AdBanner) -> "BannerResponse":
        ctr = round(banner.clicks / banner.impressions * 100, 2) if banner.impressions else 0.0
        return cls(
            id=banner.id,
            name=banner.name,
            image_url=banner.image_url,
            link_url=banner.link_url,
            position=banner.position,
            campaign_id=banner.campaign_id,
            is_active=banner.is_active,
            impressions=banner.impressions,
            clicks=banner.clicks,
            ctr=ctr,
            created_at=banner.created_at,
        )


class CampaignStats(_ResponseModel):
    campaign_id: int
    name: str
    banners: int
    impressions: int
    clicks: int
    ctr: float


class AdStatsResponse(_ResponseModel):
    total_impressions: int
    total_clicks: int
    ctr: float
    campaigns: list[CampaignStats]


# ---------------------------------------------------------------------------
# Affiliate
# ---------------------------------------------------------------------------

_CODE_PATTERN = r"^[A-Za-z0-9_-]{3,64}$"


class AffiliateLinkCreate(_ApiModel):
    code: str = Field(pattern=_CODE_PATTERN)
    url: str = Field(min_length=1, max_length=2048, pattern=r"^https?://")
    description: Optional[str] = Field(default=None, max_length=2000)
    user_id: Optional[int] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True


class AffiliateLinkPatch(_ApiModel):
    code: Optional[str] = Field(default=None, pattern=_CODE_PATTERN)
    url: Optional[str] = Field(default=None, min_length=1, max_length=2048, pattern=r"^https?://")
    description: Optional[str] = Field(default=None, max_length=2000)
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None


class AffiliateLinkResponse(_ResponseModel):
    id: int
    code: str
    url: str
    description: Optional[str]
    user_id: Optional[int]
    expires_at: Optional[str]
    is_active: bool
    clicks: int
    created_at: str

    @classmethod
    def from_domain(cls, link: AffiliateLink) -> "AffiliateLinkResponse":
        return cls(
            id=link.id,
            code=link.code,
            url=link.url,
            description=link.description,
            user_id=link.user_id,
            expires_at=link.expires_at,
            is_active=link.is_active,
            clicks=link.clicks,
            created_at=link.created_at,
        )


class AffiliateStatsResponse(_ResponseModel):
    total_clicks: int
    unique_ips: int
    clicks_by_day: dict[str, int]


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


class TrendCount(_ResponseModel):
    count: int
    # Percent change against the previous period of equal length.
    trend: float


class AnalyticsOverview(_ResponseModel):
    total_users: int
    total_scripts: int
    total_views: int
    total_copies: int
    new_users: TrendCount
    active_scripts: TrendCount


class ActivityStats(_ResponseModel):
    total_activities: int
    unique_users: int
    action_counts: dict[str, int]


class ActivityEntry(_ResponseModel):
    id: int
    user_id: Optional[int]
    action: str
    details: dict
    created_at: str

    @classmethod
    def from_domain(cls, entry: ActivityLog) -> "ActivityEntry":
        return cls(
            id=entry.id,
            user_id=entry.user_id,
            action=entry.action,
            details=entry.details,
            created_at=entry.created_at,
        )


class ScriptPopularity(_ResponseModel):
    id: int
    title: str
    views: int
    copies: int


class AnalyticsResponse(_ResponseModel):
    range: str
    start: str
    end: str
    overview: AnalyticsOverview
    activity: ActivityStats
    script_popularity: list[ScriptPopularity]
    recent_activity: list[ActivityEntry]
