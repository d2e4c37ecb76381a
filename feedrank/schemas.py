"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from feedrank.config import settings
from feedrank.models import DistributionPhase

WatchSource = Literal["feed", "profile", "explore", "search", "share", "direct"]
FeedType = Literal["for_you", "following", "explore"]


# ──────────────────────────── Watch events ────────────────────────────────

class WatchEventIn(BaseModel):
    watch_duration: float = Field(..., ge=0)
    total_duration: float = Field(..., ge=0)
    # Derived from the durations when omitted; capped at 1 either way
    completion_rate: Optional[float] = Field(None, ge=0)
    replayed: bool = False
    replay_count: int = Field(0, ge=0)
    skipped: bool = False
    skip_time: Optional[float] = Field(None, ge=0)
    # Explicit override of the derived "skipped within 2 seconds" flag
    skipped_in_first_2s: Optional[bool] = None
    pause_count: int = Field(0, ge=0)
    device_type: Optional[str] = Field(None, max_length=50)
    source: Optional[WatchSource] = "feed"
    session_id: Optional[str] = Field(None, max_length=64)


class BatchWatchEvent(WatchEventIn):
    post_id: str
    user_id: Optional[str] = None


class WatchBatchRequest(BaseModel):
    events: list[BatchWatchEvent] = Field(..., max_length=settings.watch_batch_max_events)


class WatchBatchResult(BaseModel):
    processed: int
    failed: int


# ──────────────────────────── Posts ───────────────────────────────────────

class TagRequest(BaseModel):
    content: str = ""
    hashtags: list[str] = Field(default_factory=list)


class ContentVectorResponse(BaseModel):
    post_id: str
    tags: dict[str, float]
    hashtags: list[str]

    class Config:
        from_attributes = True


class ReportRequest(BaseModel):
    reporter_id: str
    reason: Optional[str] = Field(None, max_length=255)


class PostMetricsResponse(BaseModel):
    post_id: str
    total_views: int
    unique_views: int
    avg_watch_time: float
    completion_rate: float
    replay_rate: float
    like_rate: float
    comment_rate: float
    share_rate: float
    save_rate: float
    skip_rate: float
    viral_score: float
    distribution_phase: DistributionPhase
    last_calculated_at: datetime

    class Config:
        from_attributes = True


# ──────────────────────────── Feed ────────────────────────────────────────

class FeedPost(BaseModel):
    """A ranked post with the signals that placed it."""
    id: str
    user_id: str
    created_at: datetime
    score: float
    reasons: list[str]


class FeedResponse(BaseModel):
    posts: list[FeedPost]
    next_cursor: Optional[str]


class NotInterestedRequest(BaseModel):
    user_id: str
    post_id: str


class HideCreatorRequest(BaseModel):
    user_id: str
    creator_id: str


# ──────────────────────────── Creators ────────────────────────────────────

class TrustScoreResponse(BaseModel):
    user_id: str
    originality_score: float
    engagement_quality: float
    spam_signals: float
    report_weight: float
    content_quality: float
    trust_score: float
    is_shadow_banned: bool
    shadow_ban_reason: Optional[str]
    shadow_ban_expires_at: Optional[datetime]

    class Config:
        from_attributes = True


class TrustAdminAction(BaseModel):
    action: Literal["lift_ban", "apply_ban", "reset"]
    reason: Optional[str] = Field(None, max_length=500)


class ShadowBanStatus(BaseModel):
    user_id: str
    is_shadow_banned: bool


# ──────────────────────────── Admin analytics ─────────────────────────────

class ShadowBanSummary(BaseModel):
    active: int
    total: int
    percentage: float


class LowTrustCreator(BaseModel):
    user_id: str
    username: Optional[str]
    display_name: Optional[str]
    trust_score: float
    spam_signals: float
    report_weight: float


class TopPost(BaseModel):
    post_id: str
    content: str
    creator: Optional[str]
    viral_score: float
    distribution_phase: DistributionPhase
    total_views: int
    completion_rate: float


class WatchEventSummary(BaseModel):
    total: int
    avg_watch_duration: float
    avg_completion_rate: float
    last_24h: int


class TaggingCoverage(BaseModel):
    tagged_posts: int
    total_posts: int
    coverage: float  # percent


class FeedCacheStats(BaseModel):
    active: int
    expired: int


class AlgorithmAnalyticsResponse(BaseModel):
    distribution_phases: dict[str, int]
    avg_viral_scores: dict[str, float]
    shadow_bans: ShadowBanSummary
    low_trust_creators: list[LowTrustCreator]
    top_posts: list[TopPost]
    watch_events: WatchEventSummary
    interest_profiles: int
    content_tagging: TaggingCoverage
    feed_cache: FeedCacheStats
