"""
Persistence collaborator — typed CRUD, upsert and filtered queries over the
async SQLAlchemy session factory.

Every public coroutine runs in its own short transaction, so a failure in one
call never leaves a half-applied write behind. Upserts are single
INSERT ... ON DUPLICATE KEY UPDATE statements (ON CONFLICT DO UPDATE on
sqlite), so concurrent writers of a row that does not exist yet never
collide and the last write wins.

Connectivity failures (OperationalError / InterfaceError) surface as
PersistenceUnavailable; everything else propagates unchanged.
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Iterable, Optional, Sequence

from sqlalchemy import delete, func, or_, select
from sqlalchemy.dialects import mysql, sqlite
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feedrank.errors import PersistenceUnavailable
from feedrank.models import (
    Bookmark,
    Comment,
    CreatorTrustScore,
    DistributionPhase,
    Follow,
    Like,
    Post,
    PostContentVector,
    PostMetrics,
    PostReport,
    PostWatchEvent,
    PreferenceType,
    Share,
    User,
    UserBlock,
    UserContentPreference,
    UserInterestProfile,
    UserReport,
)

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    """A post eligible for ranking, joined with its tags and metrics."""
    post_id: str
    user_id: str
    created_at: datetime
    tags: Optional[dict]
    viral_score: Optional[float]
    phase: Optional[DistributionPhase]


@dataclass
class EngagementCounts:
    likes: int = 0
    comments: int = 0
    shares: int = 0
    saves: int = 0


def _upsert_stmt(session: AsyncSession, model, values: dict, conflict_cols: list[str], update: dict):
    dialect = session.bind.dialect.name
    if dialect == "mysql":
        return mysql.insert(model).values(**values).on_duplicate_key_update(**update)
    if dialect == "sqlite":
        return (
            sqlite.insert(model)
            .values(**values)
            .on_conflict_do_update(index_elements=conflict_cols, set_=update)
        )
    raise NotImplementedError(f"Upsert is not supported on {dialect}")


async def _upsert(session: AsyncSession, model, key, values: dict, insert_only: Sequence[str] = ()):
    """
    Single-statement INSERT ... ON DUPLICATE KEY UPDATE keyed on the primary
    key. Columns named in `insert_only` keep the value from the first insert.
    Returns the row as stored after the write.
    """
    pk_cols = [c.name for c in model.__table__.primary_key.columns]
    update = {k: v for k, v in values.items() if k not in pk_cols and k not in insert_only}
    await session.execute(_upsert_stmt(session, model, values, pk_cols, update))
    return await session.get(model, key, populate_existing=True)


class Store:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on success and rolls back on error."""
        try:
            async with self._session_factory() as session:
                yield session
                await session.commit()
        except (OperationalError, InterfaceError) as exc:
            raise PersistenceUnavailable(str(exc)) from exc

    # ─────────────────────── Content vectors ──────────────────────────────

    async def get_content_vector(self, post_id: str) -> Optional[PostContentVector]:
        async with self.session() as session:
            return await session.get(PostContentVector, post_id)

    async def upsert_content_vector(
        self, post_id: str, tags: dict, hashtags: list[str], now: datetime
    ) -> None:
        async with self.session() as session:
            await _upsert(
                session,
                PostContentVector,
                post_id,
                {"post_id": post_id, "tags": tags, "hashtags": hashtags, "updated_at": now},
            )

    # ─────────────────────── Interest profiles ────────────────────────────

    async def get_interest_profile(self, user_id: str) -> Optional[UserInterestProfile]:
        async with self.session() as session:
            return await session.get(UserInterestProfile, user_id)

    async def upsert_interest_profile(
        self, user_id: str, interests: dict, now: datetime
    ) -> None:
        async with self.session() as session:
            await _upsert(
                session,
                UserInterestProfile,
                user_id,
                {"user_id": user_id, "interests": interests, "updated_at": now},
            )

    async def list_interest_profiles(self) -> list[UserInterestProfile]:
        async with self.session() as session:
            rows = await session.execute(select(UserInterestProfile))
            return list(rows.scalars().all())

    async def count_interest_profiles(self) -> int:
        async with self.session() as session:
            return await session.scalar(select(func.count()).select_from(UserInterestProfile))

    # ─────────────────────── Watch events ─────────────────────────────────

    async def add_watch_event(self, event: PostWatchEvent) -> PostWatchEvent:
        async with self.session() as session:
            session.add(event)
        return event

    async def add_watch_events(self, events: Sequence[PostWatchEvent]) -> int:
        """Bulk insert in one transaction; returns the number of rows written."""
        if not events:
            return 0
        async with self.session() as session:
            session.add_all(events)
        return len(events)

    async def list_watch_events(self, post_id: str, since: datetime) -> list[PostWatchEvent]:
        async with self.session() as session:
            rows = await session.execute(
                select(PostWatchEvent)
                .where(PostWatchEvent.post_id == post_id, PostWatchEvent.created_at >= since)
                .order_by(PostWatchEvent.created_at, PostWatchEvent.event_id)
            )
            return list(rows.scalars().all())

    async def count_watch_events(self, post_id: str) -> int:
        async with self.session() as session:
            return await session.scalar(
                select(func.count())
                .select_from(PostWatchEvent)
                .where(PostWatchEvent.post_id == post_id)
            )

    async def delete_watch_events_before(self, cutoff: datetime) -> int:
        async with self.session() as session:
            result = await session.execute(
                delete(PostWatchEvent).where(PostWatchEvent.created_at < cutoff)
            )
            return result.rowcount or 0

    # ─────────────────────── Post metrics ─────────────────────────────────

    async def get_post_metrics(self, post_id: str) -> Optional[PostMetrics]:
        async with self.session() as session:
            return await session.get(PostMetrics, post_id)

    async def save_post_metrics(self, post_id: str, values: dict) -> PostMetrics:
        async with self.session() as session:
            return await _upsert(
                session,
                PostMetrics,
                post_id,
                {"post_id": post_id, **values},
                insert_only=("created_at",),
            )

    async def list_recent_creator_metrics(self, user_id: str, limit: int = 10) -> list[PostMetrics]:
        async with self.session() as session:
            rows = await session.execute(
                select(PostMetrics)
                .join(Post, Post.post_id == PostMetrics.post_id)
                .where(Post.user_id == user_id)
                .order_by(PostMetrics.created_at.desc(), PostMetrics.post_id)
                .limit(limit)
            )
            return list(rows.scalars().all())

    async def list_post_ids_in_phase(self, phase: DistributionPhase, limit: int) -> list[str]:
        async with self.session() as session:
            rows = await session.execute(
                select(PostMetrics.post_id)
                .where(PostMetrics.distribution_phase == phase)
                .order_by(PostMetrics.last_calculated_at)
                .limit(limit)
            )
            return list(rows.scalars().all())

    async def engagement_counts(self, post_id: str) -> EngagementCounts:
        async with self.session() as session:
            counts = []
            for model in (Like, Comment, Share, Bookmark):
                counts.append(
                    await session.scalar(
                        select(func.count()).select_from(model).where(model.post_id == post_id)
                    )
                )
        return EngagementCounts(*counts)

    # ─────────────────────── Trust scores ─────────────────────────────────

    async def get_trust_score(self, user_id: str) -> Optional[CreatorTrustScore]:
        async with self.session() as session:
            return await session.get(CreatorTrustScore, user_id)

    async def create_trust_score_if_missing(self, user_id: str, values: dict) -> bool:
        """Insert a trust row; returns False when one already exists."""
        try:
            async with self.session() as session:
                if await session.get(CreatorTrustScore, user_id) is not None:
                    return False
                session.add(CreatorTrustScore(user_id=user_id, **values))
        except IntegrityError:
            # Lost a race with a concurrent initialiser
            return False
        return True

    async def save_trust_score(self, user_id: str, values: dict) -> CreatorTrustScore:
        async with self.session() as session:
            return await _upsert(
                session, CreatorTrustScore, user_id, {"user_id": user_id, **values}
            )

    async def list_trust_scores_with_spam(self) -> list[CreatorTrustScore]:
        async with self.session() as session:
            rows = await session.execute(
                select(CreatorTrustScore).where(CreatorTrustScore.spam_signals > 0)
            )
            return list(rows.scalars().all())

    async def list_expired_bans(self, now: datetime) -> list[CreatorTrustScore]:
        async with self.session() as session:
            rows = await session.execute(
                select(CreatorTrustScore).where(
                    CreatorTrustScore.is_shadow_banned.is_(True),
                    CreatorTrustScore.shadow_ban_expires_at <= now,
                )
            )
            return list(rows.scalars().all())

    async def count_posts_since(self, user_id: str, since: datetime) -> int:
        async with self.session() as session:
            return await session.scalar(
                select(func.count())
                .select_from(Post)
                .where(Post.user_id == user_id, Post.created_at > since)
            )

    async def count_reports_since(self, user_id: str, since: datetime) -> int:
        """Reports against the creator's posts plus reports against the creator."""
        async with self.session() as session:
            post_reports = await session.scalar(
                select(func.count())
                .select_from(PostReport)
                .join(Post, Post.post_id == PostReport.post_id)
                .where(Post.user_id == user_id, PostReport.created_at >= since)
            )
            user_reports = await session.scalar(
                select(func.count())
                .select_from(UserReport)
                .where(UserReport.user_id == user_id, UserReport.created_at >= since)
            )
        return (post_reports or 0) + (user_reports or 0)

    async def add_post_report(
        self, post_id: str, reporter_id: str, reason: Optional[str], now: datetime
    ) -> None:
        async with self.session() as session:
            session.add(
                PostReport(post_id=post_id, reporter_id=reporter_id, reason=reason, created_at=now)
            )

    async def get_post_author(self, post_id: str) -> Optional[str]:
        async with self.session() as session:
            return await session.scalar(select(Post.user_id).where(Post.post_id == post_id))

    # ─────────────────────── Social graph & preferences ───────────────────

    async def get_following_ids(self, user_id: str) -> set[str]:
        async with self.session() as session:
            rows = await session.execute(
                select(Follow.followee_id).where(Follow.follower_id == user_id)
            )
            return set(rows.scalars().all())

    async def get_blocked_user_ids(self, user_id: str) -> set[str]:
        """Users blocked by `user_id` and users who blocked `user_id`."""
        async with self.session() as session:
            blocked = await session.execute(
                select(UserBlock.blocked_id).where(UserBlock.blocker_id == user_id)
            )
            blocked_by = await session.execute(
                select(UserBlock.blocker_id).where(UserBlock.blocked_id == user_id)
            )
            return set(blocked.scalars().all()) | set(blocked_by.scalars().all())

    async def get_not_interested_post_ids(self, user_id: str) -> set[str]:
        async with self.session() as session:
            rows = await session.execute(
                select(UserContentPreference.post_id).where(
                    UserContentPreference.user_id == user_id,
                    UserContentPreference.type == PreferenceType.NOT_INTERESTED,
                    UserContentPreference.post_id.is_not(None),
                )
            )
            return set(rows.scalars().all())

    async def get_hidden_creator_ids(self, user_id: str) -> set[str]:
        async with self.session() as session:
            rows = await session.execute(
                select(UserContentPreference.creator_id).where(
                    UserContentPreference.user_id == user_id,
                    UserContentPreference.type == PreferenceType.HIDE_CREATOR,
                    UserContentPreference.creator_id.is_not(None),
                )
            )
            return set(rows.scalars().all())

    async def upsert_not_interested(self, user_id: str, post_id: str, now: datetime) -> None:
        async with self.session() as session:
            await session.execute(
                _upsert_stmt(
                    session,
                    UserContentPreference,
                    {
                        "user_id": user_id,
                        "post_id": post_id,
                        "type": PreferenceType.NOT_INTERESTED,
                        "created_at": now,
                    },
                    conflict_cols=["user_id", "post_id"],
                    update={"type": PreferenceType.NOT_INTERESTED},
                )
            )

    async def add_hidden_creator(self, user_id: str, creator_id: str, now: datetime) -> None:
        async with self.session() as session:
            existing = await session.scalar(
                select(UserContentPreference.id).where(
                    UserContentPreference.user_id == user_id,
                    UserContentPreference.creator_id == creator_id,
                    UserContentPreference.type == PreferenceType.HIDE_CREATOR,
                )
            )
            if existing is not None:
                return  # already hidden
            session.add(
                UserContentPreference(
                    user_id=user_id,
                    creator_id=creator_id,
                    type=PreferenceType.HIDE_CREATOR,
                    created_at=now,
                )
            )

    # ─────────────────────── Feed candidates ──────────────────────────────

    async def list_candidate_posts(
        self,
        exclude_user_ids: Iterable[str],
        exclude_post_ids: Iterable[str],
        following_ids: Iterable[str],
        following_only: bool,
        limit: int,
    ) -> list[Candidate]:
        """
        Most-recent posts from active, public (or followed) USER accounts,
        joined with their tag vector and metrics.
        """
        exclude_user_ids = list(exclude_user_ids)
        exclude_post_ids = list(exclude_post_ids)
        following_ids = list(following_ids)

        if following_only and not following_ids:
            return []

        stmt = (
            select(
                Post.post_id,
                Post.user_id,
                Post.created_at,
                PostContentVector.tags,
                PostMetrics.viral_score,
                PostMetrics.distribution_phase,
            )
            .join(User, User.user_id == Post.user_id)
            .outerjoin(PostContentVector, PostContentVector.post_id == Post.post_id)
            .outerjoin(PostMetrics, PostMetrics.post_id == Post.post_id)
            .where(
                User.role == "USER",
                User.is_active.is_(True),
                Post.visible_in_feed.is_(True),
            )
        )

        if following_ids:
            stmt = stmt.where(
                or_(User.is_profile_public.is_(True), User.user_id.in_(following_ids))
            )
        else:
            stmt = stmt.where(User.is_profile_public.is_(True))

        if following_only:
            stmt = stmt.where(Post.user_id.in_(following_ids))
        if exclude_user_ids:
            stmt = stmt.where(Post.user_id.not_in(exclude_user_ids))
        if exclude_post_ids:
            stmt = stmt.where(Post.post_id.not_in(exclude_post_ids))

        stmt = stmt.order_by(Post.created_at.desc(), Post.post_id).limit(limit)

        async with self.session() as session:
            rows = await session.execute(stmt)
            return [Candidate(*row) for row in rows.all()]

    async def get_existing_posts(self, post_ids: Sequence[str]) -> dict[str, tuple[str, datetime]]:
        """post_id -> (author id, created_at) for the ids that still exist."""
        if not post_ids:
            return {}
        async with self.session() as session:
            rows = await session.execute(
                select(Post.post_id, Post.user_id, Post.created_at).where(
                    Post.post_id.in_(list(post_ids))
                )
            )
            return {pid: (uid, created) for pid, uid, created in rows.all()}

    # ─────────────────────── Algorithm analytics ──────────────────────────

    async def phase_breakdown(self) -> list[tuple[DistributionPhase, int, float]]:
        """(phase, post count, average viral score) for every populated phase."""
        async with self.session() as session:
            rows = await session.execute(
                select(
                    PostMetrics.distribution_phase,
                    func.count(PostMetrics.post_id),
                    func.avg(PostMetrics.viral_score),
                ).group_by(PostMetrics.distribution_phase)
            )
            return [(phase, count, float(avg or 0.0)) for phase, count, avg in rows.all()]

    async def count_trust_scores(self, shadow_banned: Optional[bool] = None) -> int:
        stmt = select(func.count()).select_from(CreatorTrustScore)
        if shadow_banned is not None:
            stmt = stmt.where(CreatorTrustScore.is_shadow_banned.is_(shadow_banned))
        async with self.session() as session:
            return await session.scalar(stmt)

    async def list_low_trust_creators(
        self, threshold: float, limit: int
    ) -> list[tuple[CreatorTrustScore, Optional[str], Optional[str]]]:
        """Unbanned creators below `threshold`, lowest first, with username and display name."""
        async with self.session() as session:
            rows = await session.execute(
                select(CreatorTrustScore, User.username, User.display_name)
                .outerjoin(User, User.user_id == CreatorTrustScore.user_id)
                .where(
                    CreatorTrustScore.trust_score < threshold,
                    CreatorTrustScore.is_shadow_banned.is_(False),
                )
                .order_by(CreatorTrustScore.trust_score, CreatorTrustScore.user_id)
                .limit(limit)
            )
            return [tuple(row) for row in rows.all()]

    async def list_top_viral_posts(
        self, phases: Sequence[DistributionPhase], limit: int
    ) -> list[tuple[PostMetrics, Optional[str], Optional[str], Optional[str]]]:
        """Highest viral scores in `phases`, with post content and creator names."""
        async with self.session() as session:
            rows = await session.execute(
                select(PostMetrics, Post.content, User.username, User.display_name)
                .join(Post, Post.post_id == PostMetrics.post_id)
                .outerjoin(User, User.user_id == Post.user_id)
                .where(PostMetrics.distribution_phase.in_(list(phases)))
                .order_by(PostMetrics.viral_score.desc(), PostMetrics.post_id)
                .limit(limit)
            )
            return [tuple(row) for row in rows.all()]

    async def watch_event_totals(self, since: datetime) -> tuple[int, float, float, int]:
        """(all events, average watch seconds, average completion, events since `since`)."""
        async with self.session() as session:
            total, avg_duration, avg_completion = (
                await session.execute(
                    select(
                        func.count(PostWatchEvent.event_id),
                        func.avg(PostWatchEvent.watch_duration),
                        func.avg(PostWatchEvent.completion_rate),
                    )
                )
            ).one()
            recent = await session.scalar(
                select(func.count())
                .select_from(PostWatchEvent)
                .where(PostWatchEvent.created_at >= since)
            )
        return total or 0, float(avg_duration or 0.0), float(avg_completion or 0.0), recent or 0

    async def tagging_coverage(self) -> tuple[int, int]:
        """(posts with a content vector, all posts)."""
        async with self.session() as session:
            tagged = await session.scalar(select(func.count()).select_from(PostContentVector))
            total = await session.scalar(select(func.count()).select_from(Post))
        return tagged or 0, total or 0
