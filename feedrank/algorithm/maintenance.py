"""
Daily maintenance bundle, triggered once a day by an external scheduler.

Each step runs on its own: a failure is logged and recorded as
{"error": "..."} in the summary, and the next step still runs.
"""
import logging
from datetime import timedelta
from typing import Awaitable, Callable

from feedrank.algorithm.interests import InterestProfiler
from feedrank.algorithm.post_metrics import MetricsAggregator
from feedrank.algorithm.trust import TrustScorer
from feedrank.clock import Clock, utcnow
from feedrank.models import DistributionPhase
from feedrank.store import Store

logger = logging.getLogger(__name__)


class Maintenance:
    def __init__(
        self,
        store: Store,
        profiler: InterestProfiler,
        trust: TrustScorer,
        aggregator: MetricsAggregator,
        clock: Clock = utcnow,
        retention_days: int = 90,
        recompute_limit: int = 1000,
    ) -> None:
        self.store = store
        self.profiler = profiler
        self.trust = trust
        self.aggregator = aggregator
        self.clock = clock
        self.retention = timedelta(days=retention_days)
        self.recompute_limit = recompute_limit

    async def purge_old_watch_events(self) -> dict:
        cutoff = self.clock() - self.retention
        deleted = await self.store.delete_watch_events_before(cutoff)
        return {"deleted": deleted}

    async def recompute_test_phase_posts(self) -> dict:
        """Posts still in TEST get re-evaluated even without fresh views."""
        post_ids = await self.store.list_post_ids_in_phase(
            DistributionPhase.TEST, self.recompute_limit
        )
        processed = 0
        for post_id in post_ids:
            try:
                await self.aggregator.recompute(post_id)
                processed += 1
            except Exception as exc:
                logger.error("Metrics recompute failed for post %s: %s", post_id, exc)
        return {"processed": processed}

    async def run_daily_maintenance(self) -> dict:
        steps: list[tuple[str, Callable[[], Awaitable[dict]]]] = [
            ("interest_decay", self.profiler.apply_interest_decay),
            ("spam_decay", self.trust.decay_spam_signals),
            ("shadow_ban_expiry", self.trust.check_expired_shadow_bans),
            ("watch_event_cleanup", self.purge_old_watch_events),
            ("metrics_recalculation", self.recompute_test_phase_posts),
        ]

        results: dict[str, dict] = {}
        for name, step in steps:
            try:
                results[name] = await step()
                logger.info("Maintenance step %s: %s", name, results[name])
            except Exception as exc:
                logger.exception("Maintenance step %s failed", name)
                results[name] = {"error": str(exc)}
        return results
