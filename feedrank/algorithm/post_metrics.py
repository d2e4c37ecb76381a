"""
Per-post engagement metrics and the distribution-phase state machine.

Metrics are fully recomputed from the trailing window of watch events on
every run, so concurrent recomputes for the same post are idempotent and
last-write-wins.

Distribution phases gate how widely a post is shown:

  TEST  ──(≥100 views, completion ≥0.6, skip <0.3)──▶ SCALE
  TEST  ──(completion <0.3 or skip >0.5)────────────▶ KILLED
  SCALE ──(≥5000 views, completion ≥0.7, viral ≥0.5)▶ BLAST

BLAST and KILLED are terminal; phases never move backwards.
"""
import logging
from datetime import timedelta
from typing import Optional

from feedrank.algorithm.categories import clamp
from feedrank.clock import Clock, utcnow
from feedrank.models import DistributionPhase, PostMetrics
from feedrank.store import Store
from feedrank.telemetry import PHASE_TRANSITIONS_TOTAL

logger = logging.getLogger(__name__)

TEST_MIN_VIEWS = 100
TEST_PASS_COMPLETION = 0.6
TEST_PASS_MAX_SKIP = 0.3
TEST_KILL_COMPLETION = 0.3
TEST_KILL_SKIP = 0.5
SCALE_MIN_VIEWS = 5000
SCALE_PASS_COMPLETION = 0.7
SCALE_PASS_VIRAL = 0.5

VIRAL_WEIGHTS = {
    "completion_rate": 0.4,
    "replay_rate": 0.3,
    "save_rate": 0.2,
    "share_rate": 0.1,
}


def viral_score(completion_rate: float, replay_rate: float, save_rate: float, share_rate: float) -> float:
    # Save and share rates exceed 1 when engagement outnumbers viewers
    return clamp(
        completion_rate * VIRAL_WEIGHTS["completion_rate"]
        + replay_rate * VIRAL_WEIGHTS["replay_rate"]
        + save_rate * VIRAL_WEIGHTS["save_rate"]
        + share_rate * VIRAL_WEIGHTS["share_rate"]
    )


def next_phase(
    current: DistributionPhase,
    total_views: int,
    completion_rate: float,
    skip_rate: float,
    viral: float,
) -> DistributionPhase:
    if current == DistributionPhase.TEST:
        if (
            total_views >= TEST_MIN_VIEWS
            and completion_rate >= TEST_PASS_COMPLETION
            and skip_rate < TEST_PASS_MAX_SKIP
        ):
            return DistributionPhase.SCALE
        if completion_rate < TEST_KILL_COMPLETION or skip_rate > TEST_KILL_SKIP:
            return DistributionPhase.KILLED
        return DistributionPhase.TEST

    if current == DistributionPhase.SCALE:
        if (
            total_views >= SCALE_MIN_VIEWS
            and completion_rate >= SCALE_PASS_COMPLETION
            and viral >= SCALE_PASS_VIRAL
        ):
            return DistributionPhase.BLAST
        return DistributionPhase.SCALE

    return current


class MetricsAggregator:
    def __init__(self, store: Store, clock: Clock = utcnow, window_days: int = 7) -> None:
        self.store = store
        self.clock = clock
        self.window = timedelta(days=window_days)

    async def recompute(self, post_id: str) -> Optional[PostMetrics]:
        now = self.clock()
        events = await self.store.list_watch_events(post_id, now - self.window)
        if not events:
            return None

        total_views = len(events)
        # Anonymous-only traffic falls back to total views so rates stay defined
        unique_views = len({e.user_id for e in events if e.user_id}) or total_views

        avg_watch_time = sum(e.watch_duration for e in events) / total_views
        completion_rate = sum(e.completion_rate for e in events) / total_views
        replay_rate = sum(1 for e in events if e.replay_count > 0) / total_views
        skip_rate = sum(1 for e in events if e.skipped_in_first_2s) / total_views

        counts = await self.store.engagement_counts(post_id)
        like_rate = counts.likes / unique_views
        comment_rate = counts.comments / unique_views
        share_rate = counts.shares / unique_views
        save_rate = counts.saves / unique_views

        viral = viral_score(completion_rate, replay_rate, save_rate, share_rate)

        existing = await self.store.get_post_metrics(post_id)
        current = existing.distribution_phase if existing else DistributionPhase.TEST
        phase = next_phase(current, total_views, completion_rate, skip_rate, viral)
        if phase != current:
            PHASE_TRANSITIONS_TOTAL.labels(from_phase=current.value, to_phase=phase.value).inc()
            logger.info("Post %s moved %s → %s", post_id, current.value, phase.value)

        values = {
            "total_views": total_views,
            "unique_views": unique_views,
            "avg_watch_time": avg_watch_time,
            "completion_rate": completion_rate,
            "replay_rate": replay_rate,
            "like_rate": like_rate,
            "comment_rate": comment_rate,
            "share_rate": share_rate,
            "save_rate": save_rate,
            "skip_rate": skip_rate,
            "viral_score": viral,
            "distribution_phase": phase,
            "test_batch_size": total_views,
            "test_batch_engagement": completion_rate,
            "last_calculated_at": now,
            "created_at": now,  # kept from the first insert
        }

        row = await self.store.save_post_metrics(post_id, values)
        logger.debug(
            "Updated metrics for post %s: viral_score=%.3f, phase=%s",
            post_id, viral, phase.value,
        )
        return row

    async def get_post_watch_stats(self, post_id: str) -> Optional[PostMetrics]:
        return await self.store.get_post_metrics(post_id)
