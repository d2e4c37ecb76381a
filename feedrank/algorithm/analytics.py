"""
Read-only snapshot of how the ranking pipeline is behaving, for the admin
dashboard: distribution phases, creator trust, top posts, watch traffic,
interest profiles, tagging coverage and feed cache health.
"""
import logging
from datetime import timedelta

from opentelemetry import trace

from feedrank.algorithm.feed_cache import FeedCache
from feedrank.clock import Clock, utcnow
from feedrank.models import DistributionPhase
from feedrank.store import Store

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

LOW_TRUST_THRESHOLD = 0.5
LIST_LIMIT = 20
CONTENT_PREVIEW_CHARS = 100
RECENT_WINDOW = timedelta(hours=24)


def percentage(part: int, whole: int, digits: int = 2) -> float:
    return round(part / whole * 100, digits) if whole else 0.0


class AlgorithmAnalytics:
    def __init__(self, store: Store, cache: FeedCache, clock: Clock = utcnow) -> None:
        self.store = store
        self.cache = cache
        self.clock = clock

    async def snapshot(self) -> dict:
        with tracer.start_as_current_span("algorithm_analytics"):
            now = self.clock()

            phases = await self.store.phase_breakdown()

            banned = await self.store.count_trust_scores(shadow_banned=True)
            creators = await self.store.count_trust_scores()

            low_trust = await self.store.list_low_trust_creators(LOW_TRUST_THRESHOLD, LIST_LIMIT)
            top_posts = await self.store.list_top_viral_posts(
                (DistributionPhase.SCALE, DistributionPhase.BLAST), LIST_LIMIT
            )

            total, avg_duration, avg_completion, recent = await self.store.watch_event_totals(
                now - RECENT_WINDOW
            )
            tagged, posts = await self.store.tagging_coverage()

            result = {
                "distribution_phases": {phase.value: count for phase, count, _ in phases},
                "avg_viral_scores": {phase.value: round(avg, 3) for phase, _, avg in phases},
                "shadow_bans": {
                    "active": banned,
                    "total": creators,
                    "percentage": percentage(banned, creators),
                },
                "low_trust_creators": [
                    {
                        "user_id": row.user_id,
                        "username": username,
                        "display_name": display_name or username,
                        "trust_score": round(row.trust_score, 3),
                        "spam_signals": round(row.spam_signals, 3),
                        "report_weight": round(row.report_weight, 3),
                    }
                    for row, username, display_name in low_trust
                ],
                "top_posts": [
                    {
                        "post_id": metrics.post_id,
                        "content": (content or "")[:CONTENT_PREVIEW_CHARS],
                        "creator": display_name or username,
                        "viral_score": round(metrics.viral_score, 3),
                        "distribution_phase": metrics.distribution_phase,
                        "total_views": metrics.total_views,
                        "completion_rate": round(metrics.completion_rate, 3),
                    }
                    for metrics, content, username, display_name in top_posts
                ],
                "watch_events": {
                    "total": total,
                    "avg_watch_duration": round(avg_duration, 2),
                    "avg_completion_rate": round(avg_completion, 3),
                    "last_24h": recent,
                },
                "interest_profiles": await self.store.count_interest_profiles(),
                "content_tagging": {
                    "tagged_posts": tagged,
                    "total_posts": posts,
                    "coverage": percentage(tagged, posts, digits=1),
                },
                "feed_cache": await self.cache.stats(),
            }

        logger.info(
            "Algorithm analytics: %d creators (%d banned), %d watch events",
            creators, banned, total,
        )
        return result
