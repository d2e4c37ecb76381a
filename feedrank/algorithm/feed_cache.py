"""
Per-user ranked feed cache.

One Redis STRING per user, keyed feed:cache:{user_id}, holding the full
ranked list as JSON together with its feed type and an explicit expiry:

  { "feed_type": "for_you",
    "generated_at": "...", "expires_at": "...",
    "feed": [{"post_id", "user_id", "created_at", "score", "reasons"}, ...] }

The expiry is checked against the service clock on read, so an entry past
expires_at is a miss even if Redis has not evicted it yet. The Redis TTL
only bounds memory. Cache failures are logged and degrade to a miss.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from feedrank.clock import Clock, utcnow

logger = logging.getLogger(__name__)

CACHE_KEY = "feed:cache:{user_id}"


@dataclass
class CachedEntry:
    post_id: str
    user_id: str
    created_at: datetime
    score: float
    reasons: list[str]


@dataclass
class CachedFeed:
    feed_type: str
    generated_at: datetime
    expires_at: datetime
    entries: list[CachedEntry]


def _encode(feed: CachedFeed) -> str:
    return json.dumps(
        {
            "feed_type": feed.feed_type,
            "generated_at": feed.generated_at.isoformat(),
            "expires_at": feed.expires_at.isoformat(),
            "feed": [
                {
                    "post_id": e.post_id,
                    "user_id": e.user_id,
                    "created_at": e.created_at.isoformat(),
                    "score": e.score,
                    "reasons": e.reasons,
                }
                for e in feed.entries
            ],
        }
    )


def _decode(raw: str) -> CachedFeed:
    data = json.loads(raw)
    return CachedFeed(
        feed_type=data["feed_type"],
        generated_at=datetime.fromisoformat(data["generated_at"]),
        expires_at=datetime.fromisoformat(data["expires_at"]),
        entries=[
            CachedEntry(
                post_id=e["post_id"],
                user_id=e["user_id"],
                created_at=datetime.fromisoformat(e["created_at"]),
                score=e["score"],
                reasons=list(e["reasons"]),
            )
            for e in data["feed"]
        ],
    )


class FeedCache:
    def __init__(self, redis: aioredis.Redis, ttl_seconds: int = 600, clock: Clock = utcnow) -> None:
        self.redis = redis
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock

    async def get(self, user_id: str, feed_type: str) -> Optional[CachedFeed]:
        """Return the cached feed if it matches feed_type and has not expired."""
        try:
            raw = await self.redis.get(CACHE_KEY.format(user_id=user_id))
        except RedisError as exc:
            logger.warning("Feed cache read failed (user=%s): %s; treating as miss", user_id, exc)
            return None
        if raw is None:
            return None

        try:
            cached = _decode(raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding malformed feed cache for user %s: %s", user_id, exc)
            return None

        if cached.feed_type != feed_type or self.clock() > cached.expires_at:
            return None
        return cached

    async def put(self, user_id: str, feed_type: str, entries: Sequence[CachedEntry]) -> Optional[CachedFeed]:
        now = self.clock()
        cached = CachedFeed(
            feed_type=feed_type,
            generated_at=now,
            expires_at=now + self.ttl,
            entries=list(entries),
        )
        try:
            await self.redis.set(
                CACHE_KEY.format(user_id=user_id),
                _encode(cached),
                ex=int(self.ttl.total_seconds()),
            )
        except RedisError as exc:
            logger.error("Failed to cache feed for user %s: %s", user_id, exc)
            return None
        return cached

    async def invalidate(self, user_id: str) -> None:
        """Drop the user's cached feed; a missing key is not an error."""
        try:
            await self.redis.delete(CACHE_KEY.format(user_id=user_id))
        except RedisError as exc:
            logger.error("Failed to invalidate feed cache for user %s: %s", user_id, exc)

    async def stats(self) -> dict:
        """Count cached feeds still inside their expiry and those past it."""
        active = expired = 0
        now = self.clock()
        try:
            pattern = CACHE_KEY.format(user_id="*")
            async for key in self.redis.scan_iter(match=pattern, count=500):
                raw = await self.redis.get(key)
                if raw is None:
                    continue
                try:
                    expires_at = datetime.fromisoformat(json.loads(raw)["expires_at"])
                except (ValueError, KeyError, TypeError):
                    expired += 1
                    continue
                if now > expires_at:
                    expired += 1
                else:
                    active += 1
        except RedisError as exc:
            logger.warning("Feed cache stats unavailable: %s", exc)
        return {"active": active, "expired": expired}
