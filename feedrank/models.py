"""
SQLAlchemy ORM models for TiDB.

Owned by the ranking core:
  post_content_vectors     — per-post category tag vector
  post_watch_events        — raw watch telemetry (source of all analytics)
  post_metrics             — recomputed engagement metrics + distribution phase
  creator_trust_scores     — creator reputation and shadow-ban state
  user_interest_profiles   — per-user interest vector
  user_content_preferences — "not interested" / "hide creator" signals

Read from collaborators (identity, social graph, engagement, moderation):
  users, follows, user_blocks, posts, likes, comments, shares, bookmarks,
  post_reports, user_reports
"""
import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from feedrank.clock import utcnow
from feedrank.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class DistributionPhase(str, enum.Enum):
    TEST = "TEST"
    SCALE = "SCALE"
    BLAST = "BLAST"
    KILLED = "KILLED"


class PreferenceType(str, enum.Enum):
    NOT_INTERESTED = "NOT_INTERESTED"
    HIDE_CREATOR = "HIDE_CREATOR"


# ──────────────────────────── Collaborator tables ─────────────────────────

class User(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(20), default="USER", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_profile_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )


class Follow(Base):
    __tablename__ = "follows"

    follower_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )
    followee_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("idx_followee", "followee_id"),)


class UserBlock(Base):
    __tablename__ = "user_blocks"

    blocker_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )
    blocked_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )

    __table_args__ = (Index("idx_blocked", "blocked_id"),)


class Post(Base):
    __tablename__ = "posts"

    post_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), nullable=False
    )
    content: Mapped[Optional[str]] = mapped_column(Text)
    # False for competition-only entries that must stay out of the normal feed
    visible_in_feed: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_posts_user", "user_id"),
        Index("idx_posts_created", "created_at"),
    )


class _PostEngagement:
    """Columns shared by the per-post engagement tables."""

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.post_id"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )


class Like(_PostEngagement, Base):
    __tablename__ = "likes"


class Comment(Base):
    __tablename__ = "comments"

    comment_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.post_id"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )


class Share(Base):
    __tablename__ = "shares"

    share_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.post_id"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )


class Bookmark(_PostEngagement, Base):
    __tablename__ = "bookmarks"


class PostReport(Base):
    __tablename__ = "post_reports"

    report_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.post_id"), nullable=False, index=True
    )
    reporter_id: Mapped[str] = mapped_column(String(36), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class UserReport(Base):
    __tablename__ = "user_reports"

    report_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    # The reported user
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    reporter_id: Mapped[str] = mapped_column(String(36), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


# ──────────────────────────── Ranking core tables ─────────────────────────

class PostContentVector(Base):
    __tablename__ = "post_content_vectors"

    post_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    # {category: relevance in [0, 1]}
    tags: Mapped[dict] = mapped_column(JSON, nullable=False)
    hashtags: Mapped[list] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class PostWatchEvent(Base):
    __tablename__ = "post_watch_events"

    event_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    post_id: Mapped[str] = mapped_column(String(36), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(36))
    watch_duration: Mapped[float] = mapped_column(Float, nullable=False)
    total_duration: Mapped[float] = mapped_column(Float, nullable=False)
    completion_rate: Mapped[float] = mapped_column(Float, nullable=False)
    replay_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped_in_first_2s: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    pause_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    device_type: Mapped[Optional[str]] = mapped_column(String(50))
    source: Mapped[Optional[str]] = mapped_column(String(20))
    session_id: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_watch_post_created", "post_id", "created_at"),
        Index("idx_watch_created", "created_at"),
    )


class PostMetrics(Base):
    __tablename__ = "post_metrics"

    post_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    total_views: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unique_views: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_watch_time: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    completion_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    replay_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    like_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    comment_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    share_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    save_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    skip_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    viral_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    distribution_phase: Mapped[DistributionPhase] = mapped_column(
        Enum(DistributionPhase, native_enum=False, length=10),
        default=DistributionPhase.TEST,
        nullable=False,
    )
    test_batch_size: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    test_batch_engagement: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    last_calculated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_metrics_phase", "distribution_phase"),)


class CreatorTrustScore(Base):
    __tablename__ = "creator_trust_scores"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    originality_score: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    engagement_quality: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    spam_signals: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    report_weight: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    content_quality: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    trust_score: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    is_shadow_banned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    shadow_ban_reason: Mapped[Optional[str]] = mapped_column(String(500))
    shadow_ban_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_trust_banned", "is_shadow_banned", "shadow_ban_expires_at"),)


class UserInterestProfile(Base):
    __tablename__ = "user_interest_profiles"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    # {category: affinity in [0, 1]} over the fixed category set
    interests: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class UserContentPreference(Base):
    __tablename__ = "user_content_preferences"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    type: Mapped[PreferenceType] = mapped_column(
        Enum(PreferenceType, native_enum=False, length=20), nullable=False
    )
    post_id: Mapped[Optional[str]] = mapped_column(String(36))
    creator_id: Mapped[Optional[str]] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "post_id", name="uq_preference_user_post"),
        Index("idx_preference_user", "user_id", "type"),
    )
