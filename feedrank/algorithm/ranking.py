"""
Personalized feed ranking.

  Stage 1 │ Cache
  ────────┼──────────────────────────────────────────────────────────────
          │  Logged-in users get their cached ranked list if it matches the
          │  feed type and has not expired.

  Stage 2 │ Personalization context
  ────────┼──────────────────────────────────────────────────────────────
          │  Interest vector, blocks (both directions), follows,
          │  "not interested" posts and hidden creators.

  Stage 3 │ Candidate retrieval
  ────────┼──────────────────────────────────────────────────────────────
          │  Up to 500 most-recent eligible posts.

  Stage 4 │ Scoring & phase weighting
  ────────┼──────────────────────────────────────────────────────────────
          │  score = interest_match * 0.7 + viral_score * 0.2
          │        × 1.5 if followed × 0.95^age_days × 0.1 if shadow-banned
          │        × (1 ± 5% jitter)
          │  then KILLED × 0.3, BLAST × 1.5, SCALE × 1.2 (not for "following")

  Stage 5 │ Cache write + cursor pagination
"""
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from opentelemetry import trace

from feedrank.algorithm.categories import InterestVector, neutral_vector
from feedrank.algorithm.feed_cache import CachedEntry, FeedCache
from feedrank.algorithm.interests import InterestProfiler, calculate_interest_match
from feedrank.algorithm.trust import TrustScorer
from feedrank.clock import Clock, utcnow
from feedrank.models import DistributionPhase
from feedrank.store import Candidate, Store
from feedrank.telemetry import FEED_CACHE_REQUESTS, FEED_CANDIDATES_TOTAL, FEED_LATENCY

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

FEED_TYPES = ("for_you", "following", "explore")

PHASE_WEIGHTS = {
    DistributionPhase.KILLED: 0.3,
    DistributionPhase.BLAST: 1.5,
    DistributionPhase.SCALE: 1.2,
}


@dataclass
class FeedConfig:
    interest_weight: float = 0.7
    engagement_weight: float = 0.2
    random_weight: float = 0.1      # jitter span: ±random_weight/2
    freshness_decay: float = 0.95   # per day
    following_boost: float = 1.5
    shadow_ban_penalty: float = 0.1
    candidate_limit: int = 500


DEFAULT_FEED_CONFIG = FeedConfig()


@dataclass
class RankedPost:
    id: str
    user_id: str
    created_at: datetime
    score: float
    reasons: list[str] = field(default_factory=list)


@dataclass
class FeedPage:
    posts: list[RankedPost]
    next_cursor: Optional[str]


def paginate(posts: Sequence[RankedPost], cursor: Optional[str], limit: int) -> FeedPage:
    """
    Page after the post whose id is `cursor`. An unknown cursor restarts at
    the top of the list rather than failing.
    """
    start = 0
    if cursor:
        for index, post in enumerate(posts):
            if post.id == cursor:
                start = index + 1
                break

    window = list(posts[start:start + limit + 1])
    page = window[:limit]
    has_more = len(window) > limit
    next_cursor = page[-1].id if has_more and page else None
    return FeedPage(posts=page, next_cursor=next_cursor)


def apply_phase_weighting(
    posts: list[RankedPost], phases: dict[str, Optional[DistributionPhase]]
) -> list[RankedPost]:
    for post in posts:
        weight = PHASE_WEIGHTS.get(phases.get(post.id))
        if weight is not None:
            post.score *= weight
    posts.sort(key=lambda p: p.score, reverse=True)
    return posts


class RankingEngine:
    def __init__(
        self,
        store: Store,
        profiler: InterestProfiler,
        trust: TrustScorer,
        cache: FeedCache,
        config: FeedConfig = DEFAULT_FEED_CONFIG,
        clock: Clock = utcnow,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.profiler = profiler
        self.trust = trust
        self.cache = cache
        self.config = config
        self.clock = clock
        # Unseeded in production; tests pass a seeded Random for reproducibility
        self.rng = rng or random.Random()

    async def generate_personalized_feed(
        self,
        user_id: Optional[str],
        limit: int = 10,
        cursor: Optional[str] = None,
        exclude_post_ids: Sequence[str] = (),
        feed_type: str = "for_you",
    ) -> FeedPage:
        if feed_type not in FEED_TYPES:
            raise ValueError(f"Unknown feed type: {feed_type}")

        start_time = time.perf_counter()
        with tracer.start_as_current_span("generate_feed") as span:
            span.set_attribute("feed.type", feed_type)
            span.set_attribute("feed.anonymous", user_id is None)

            if user_id:
                cached = await self._cached_feed(user_id, feed_type)
                if cached is not None:
                    FEED_CACHE_REQUESTS.labels(result="hit").inc()
                    FEED_LATENCY.observe(time.perf_counter() - start_time)
                    span.set_attribute("feed.cache_hit", True)
                    logger.debug("Returning cached feed for user %s", user_id)
                    return paginate(cached, cursor, limit)
                FEED_CACHE_REQUESTS.labels(result="miss").inc()

            span.set_attribute("feed.cache_hit", False)
            ranked = await self._rank(user_id, exclude_post_ids, feed_type)

            if user_id:
                await self.cache.put(
                    user_id,
                    feed_type,
                    [
                        CachedEntry(p.id, p.user_id, p.created_at, p.score, p.reasons)
                        for p in ranked
                    ],
                )

            FEED_LATENCY.observe(time.perf_counter() - start_time)
            span.set_attribute("feed.ranked", len(ranked))
            return paginate(ranked, cursor, limit)

    async def _cached_feed(self, user_id: str, feed_type: str) -> Optional[list[RankedPost]]:
        cached = await self.cache.get(user_id, feed_type)
        if cached is None:
            return None

        # Drop entries whose post has since been deleted
        existing = await self.store.get_existing_posts([e.post_id for e in cached.entries])
        return [
            RankedPost(
                id=e.post_id,
                user_id=existing[e.post_id][0],
                created_at=existing[e.post_id][1],
                score=e.score,
                reasons=list(e.reasons),
            )
            for e in cached.entries
            if e.post_id in existing
        ]

    async def _rank(
        self, user_id: Optional[str], exclude_post_ids: Sequence[str], feed_type: str
    ) -> list[RankedPost]:
        with tracer.start_as_current_span("gather_context"):
            if user_id:
                interests = await self.profiler.get_user_interests(user_id)
                blocked_ids = await self.store.get_blocked_user_ids(user_id)
                following_ids = await self.store.get_following_ids(user_id)
                not_interested_ids = await self.store.get_not_interested_post_ids(user_id)
                hidden_creator_ids = await self.store.get_hidden_creator_ids(user_id)
            else:
                interests = neutral_vector()
                blocked_ids, following_ids = set(), set()
                not_interested_ids, hidden_creator_ids = set(), set()

        with tracer.start_as_current_span("retrieve_candidates"):
            candidates = await self.store.list_candidate_posts(
                exclude_user_ids=blocked_ids | hidden_creator_ids,
                exclude_post_ids=set(exclude_post_ids) | not_interested_ids,
                following_ids=following_ids,
                following_only=feed_type == "following",
                limit=self.config.candidate_limit,
            )
        FEED_CANDIDATES_TOTAL.labels(feed_type=feed_type).inc(len(candidates))

        with tracer.start_as_current_span("score_candidates"):
            ranked = await self._score(candidates, interests, following_ids)

        if feed_type != "following":
            ranked = apply_phase_weighting(ranked, {c.post_id: c.phase for c in candidates})
        return ranked

    async def _score(
        self,
        candidates: Sequence[Candidate],
        interests: InterestVector,
        following_ids: set[str],
    ) -> list[RankedPost]:
        config = self.config
        now = self.clock()
        banned: dict[str, bool] = {}
        ranked = []

        for post in candidates:
            reasons = []
            score = 0.0

            if post.tags:
                interest_score = calculate_interest_match(interests, post.tags)
                score += interest_score * config.interest_weight
                if interest_score > 0.7:
                    reasons.append("Matches your interests")

            if post.viral_score is not None:
                score += post.viral_score * config.engagement_weight
                if post.viral_score > 0.5:
                    reasons.append("Popular content")

            if post.user_id in following_ids:
                score *= config.following_boost
                reasons.append("From someone you follow")

            age_days = max(0.0, (now - post.created_at).total_seconds() / 86400)
            score *= config.freshness_decay ** age_days

            if post.user_id not in banned:
                banned[post.user_id] = await self.trust.is_creator_shadow_banned(post.user_id)
            if banned[post.user_id]:
                score *= config.shadow_ban_penalty

            score *= 1 + (self.rng.random() - 0.5) * config.random_weight

            ranked.append(RankedPost(post.post_id, post.user_id, post.created_at, score, reasons))

        ranked.sort(key=lambda p: p.score, reverse=True)
        return ranked

    # ─────────────────────── Content preferences ──────────────────────────

    async def mark_not_interested(self, user_id: str, post_id: str) -> None:
        await self.store.upsert_not_interested(user_id, post_id, self.clock())
        await self.invalidate_feed_cache(user_id)

    async def hide_creator(self, user_id: str, creator_id: str) -> None:
        await self.store.add_hidden_creator(user_id, creator_id, self.clock())
        await self.invalidate_feed_cache(user_id)

    async def invalidate_feed_cache(self, user_id: str) -> None:
        await self.cache.invalidate(user_id)
