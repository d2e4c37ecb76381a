"""
Wiring for the ranking core: one instance of each component per process,
sharing a Store, a Redis client, a dispatcher and a clock.
"""
import random
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as aioredis
from fastapi import Request

from feedrank.algorithm.analytics import AlgorithmAnalytics
from feedrank.algorithm.dispatch import BackgroundDispatcher, InlineDispatcher
from feedrank.algorithm.feed_cache import FeedCache
from feedrank.algorithm.interests import InterestProfiler
from feedrank.algorithm.maintenance import Maintenance
from feedrank.algorithm.post_metrics import MetricsAggregator
from feedrank.algorithm.ranking import FeedConfig, RankingEngine
from feedrank.algorithm.tagger import ContentTagger
from feedrank.algorithm.trust import TrustScorer
from feedrank.algorithm.watch import WatchTracker
from feedrank.clock import Clock, utcnow
from feedrank.config import Settings, settings as default_settings
from feedrank.store import Store


@dataclass
class Services:
    store: Store
    dispatcher: BackgroundDispatcher | InlineDispatcher
    tagger: ContentTagger
    profiler: InterestProfiler
    trust: TrustScorer
    aggregator: MetricsAggregator
    watch: WatchTracker
    cache: FeedCache
    ranking: RankingEngine
    maintenance: Maintenance
    analytics: AlgorithmAnalytics


def build_services(
    store: Store,
    redis: aioredis.Redis,
    dispatcher: Optional[BackgroundDispatcher | InlineDispatcher] = None,
    clock: Clock = utcnow,
    rng: Optional[random.Random] = None,
    config: Settings = default_settings,
) -> Services:
    dispatcher = dispatcher or BackgroundDispatcher()
    profiler = InterestProfiler(store, clock)
    trust = TrustScorer(store, clock)
    aggregator = MetricsAggregator(store, clock, window_days=config.analytics_window_days)
    cache = FeedCache(redis, ttl_seconds=config.feed_cache_ttl_seconds, clock=clock)

    return Services(
        store=store,
        dispatcher=dispatcher,
        tagger=ContentTagger(store, clock),
        profiler=profiler,
        trust=trust,
        aggregator=aggregator,
        watch=WatchTracker(store, profiler, aggregator, dispatcher, clock),
        cache=cache,
        ranking=RankingEngine(
            store,
            profiler,
            trust,
            cache,
            config=FeedConfig(candidate_limit=config.feed_candidate_limit),
            clock=clock,
            rng=rng,
        ),
        maintenance=Maintenance(
            store,
            profiler,
            trust,
            aggregator,
            clock,
            retention_days=config.watch_event_retention_days,
            recompute_limit=config.maintenance_recompute_limit,
        ),
        analytics=AlgorithmAnalytics(store, cache, clock),
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency: the container built during app startup."""
    return request.app.state.services
