"""
Watch event tracker — the write side of the ranking pipeline.

The raw PostWatchEvent row is persisted synchronously and any failure there
reaches the caller. Everything downstream (interest profile update, metrics
recompute) is handed to the dispatcher and can never fail the write.
"""
import logging
from typing import Optional, Sequence

from feedrank.algorithm.dispatch import BackgroundDispatcher, InlineDispatcher
from feedrank.algorithm.interests import InterestProfiler
from feedrank.algorithm.post_metrics import MetricsAggregator
from feedrank.clock import Clock, utcnow
from feedrank.models import PostWatchEvent
from feedrank.schemas import BatchWatchEvent, WatchEventIn
from feedrank.store import Store
from feedrank.telemetry import WATCH_EVENTS_TOTAL

logger = logging.getLogger(__name__)

SKIP_THRESHOLD_SECONDS = 2


def derive_completion_rate(event: WatchEventIn) -> float:
    if event.completion_rate is not None:
        rate = event.completion_rate
    elif event.total_duration > 0:
        rate = event.watch_duration / event.total_duration
    else:
        rate = 0.0
    return min(rate, 1.0)


def derive_skipped_in_first_2s(event: WatchEventIn) -> bool:
    if event.skipped_in_first_2s is not None:
        return event.skipped_in_first_2s
    if not event.skipped:
        return False
    skip_time = event.skip_time if event.skip_time is not None else event.watch_duration
    return skip_time < SKIP_THRESHOLD_SECONDS


def was_replayed(event: WatchEventIn) -> bool:
    return event.replayed or event.replay_count > 0


def build_watch_event(
    post_id: str, user_id: Optional[str], event: WatchEventIn, clock: Clock
) -> PostWatchEvent:
    return PostWatchEvent(
        post_id=post_id,
        user_id=user_id or None,
        watch_duration=event.watch_duration,
        total_duration=event.total_duration,
        completion_rate=derive_completion_rate(event),
        replay_count=event.replay_count,
        skipped_in_first_2s=derive_skipped_in_first_2s(event),
        pause_count=event.pause_count,
        device_type=event.device_type,
        source=event.source,
        session_id=event.session_id,
        created_at=clock(),
    )


class WatchTracker:
    def __init__(
        self,
        store: Store,
        profiler: InterestProfiler,
        aggregator: MetricsAggregator,
        dispatcher: BackgroundDispatcher | InlineDispatcher,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.profiler = profiler
        self.aggregator = aggregator
        self.dispatcher = dispatcher
        self.clock = clock

    async def record_watch_event(
        self, post_id: str, user_id: Optional[str], event: WatchEventIn
    ) -> PostWatchEvent:
        """Persist one watch event, then kick off analytics without waiting."""
        row = build_watch_event(post_id, user_id, event, self.clock)
        await self.store.add_watch_event(row)
        WATCH_EVENTS_TOTAL.labels(mode="single").inc()
        logger.debug("Recorded watch event for post %s", post_id)

        if row.user_id:
            await self.dispatcher.dispatch(
                "interest-update",
                self.profiler.update_user_interests,
                row.user_id,
                post_id,
                row.completion_rate,
                was_replayed(event),
            )
        await self.dispatcher.dispatch("metrics-recompute", self.aggregator.recompute, post_id)
        return row

    async def record_watch_events_batch(self, events: Sequence[BatchWatchEvent]) -> dict:
        """
        Persist a batch in one write. Returns {"processed", "failed"}; a failed
        write is logged and reported through the counts instead of raising.
        """
        rows = [build_watch_event(e.post_id, e.user_id, e, self.clock) for e in events]
        processed = 0

        try:
            processed = await self.store.add_watch_events(rows)
        except Exception as exc:
            logger.error("Failed to record batch of %d watch events: %s", len(rows), exc)
            return {"processed": processed, "failed": len(rows) - processed}

        WATCH_EVENTS_TOTAL.labels(mode="batch").inc(processed)

        for post_id in dict.fromkeys(row.post_id for row in rows):
            await self.dispatcher.dispatch("metrics-recompute", self.aggregator.recompute, post_id)

        for event, row in zip(events, rows):
            if row.user_id:
                await self.dispatcher.dispatch(
                    "interest-update",
                    self.profiler.update_user_interests,
                    row.user_id,
                    row.post_id,
                    row.completion_rate,
                    was_replayed(event),
                )

        logger.info("Recorded %d watch events in batch", processed)
        return {"processed": processed, "failed": len(rows) - processed}
