"""
User interest profiler.

Each user carries an interest vector over the fixed category set. Watch
events nudge the categories of the watched post up or down:

  delta = signal_strength(watch behaviour) * tag_weight * LEARNING_RATE

and a daily decay job pulls every category 5% of the way back toward
neutral (0.5). The decay cadence is part of the contract: running the job
more or less often than once a day changes the effective half-life.
"""
import logging
from typing import Mapping

import numpy as np

from feedrank.algorithm.categories import (
    CONTENT_CATEGORIES,
    NEUTRAL_INTEREST,
    InterestVector,
    clamp,
    neutral_vector,
    normalize_vector,
)
from feedrank.clock import Clock, utcnow
from feedrank.errors import MissingContentVector
from feedrank.store import Store

logger = logging.getLogger(__name__)

LEARNING_RATE = 0.1
DECAY_RATE = 0.95  # keep 95% of the distance from neutral per daily run


def signal_strength(completion_rate: float, replayed: bool) -> float:
    """Map watch behaviour to a signed interest signal."""
    if replayed:
        return 0.3
    if completion_rate >= 0.9:
        return 0.2
    if completion_rate >= 0.7:
        return 0.1
    if completion_rate >= 0.3:
        return 0.0
    return -0.1


def calculate_interest_match(
    user_interests: Mapping[str, float], post_tags: Mapping[str, float]
) -> float:
    """Cosine similarity over the category set; 0 when either side is all zero."""
    user = np.array([user_interests.get(c, 0.0) or 0.0 for c in CONTENT_CATEGORIES], dtype=float)
    post = np.array([post_tags.get(c, 0.0) or 0.0 for c in CONTENT_CATEGORIES], dtype=float)

    magnitude = np.linalg.norm(user) * np.linalg.norm(post)
    if magnitude == 0:
        return 0.0
    return float(np.dot(user, post) / magnitude)


def decay_toward_neutral(interests: Mapping[str, float]) -> InterestVector:
    return {
        category: clamp(value + (NEUTRAL_INTEREST - value) * (1 - DECAY_RATE))
        for category, value in normalize_vector(interests).items()
    }


class InterestProfiler:
    def __init__(self, store: Store, clock: Clock = utcnow) -> None:
        self.store = store
        self.clock = clock

    async def update_user_interests(
        self,
        user_id: str,
        post_id: str,
        completion_rate: float,
        replayed: bool = False,
    ) -> None:
        try:
            post_tags = await self._post_tags(post_id)
        except MissingContentVector as exc:
            logger.debug("%s; skipping interest update for user %s", exc, user_id)
            return

        interests = await self.get_user_interests(user_id)
        signal = signal_strength(completion_rate, replayed)

        for tag, weight in post_tags.items():
            if tag in interests:
                delta = signal * float(weight) * LEARNING_RATE
                interests[tag] = clamp(interests[tag] + delta)

        await self.store.upsert_interest_profile(user_id, interests, self.clock())
        logger.debug("Updated interests for user %s (signal=%.2f)", user_id, signal)

    async def get_user_interests(self, user_id: str) -> InterestVector:
        profile = await self.store.get_interest_profile(user_id)
        if profile is None:
            return neutral_vector()
        return normalize_vector(profile.interests)

    async def _post_tags(self, post_id: str) -> dict[str, float]:
        vector = await self.store.get_content_vector(post_id)
        if vector is None:
            raise MissingContentVector(post_id)
        return dict(vector.tags or {})

    async def apply_interest_decay(self) -> dict:
        """Daily job: pull every stored profile toward neutral."""
        profiles = await self.store.list_interest_profiles()
        now = self.clock()
        processed = 0

        for profile in profiles:
            try:
                decayed = decay_toward_neutral(profile.interests)
                await self.store.upsert_interest_profile(profile.user_id, decayed, now)
                processed += 1
            except Exception as exc:
                logger.error("Interest decay failed for user %s: %s", profile.user_id, exc)

        logger.info("Applied interest decay to %d/%d profiles", processed, len(profiles))
        return {"processed": processed}
