"""
Creator trust score and shadow-ban management.

Trust starts at 1.0 when a creator is created and only degrades through
observed signals:

  base  = (originality + engagement_quality + content_quality) / 3
  trust = clamp(base - spam_signals - report_weight, 0, 1)

A creator whose trust falls below SHADOW_BAN_THRESHOLD is shadow-banned for
SHADOW_BAN_DURATION. Bans are lifted lazily on read once expired, and
eagerly by the daily sweep.
"""
import logging
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Optional

from feedrank.algorithm.categories import clamp
from feedrank.clock import Clock, utcnow
from feedrank.errors import CreatorNotFound
from feedrank.models import CreatorTrustScore
from feedrank.store import Store
from feedrank.telemetry import SHADOW_BANS_TOTAL

logger = logging.getLogger(__name__)

SHADOW_BAN_THRESHOLD = 0.3
SHADOW_BAN_DURATION = timedelta(days=7)
REPORT_WEIGHT_PER_REPORT = 0.05
REPORT_WINDOW = timedelta(days=30)
SPAM_SIGNAL_DECAY = 0.9
POSTING_VELOCITY_WINDOW = timedelta(hours=1)
POSTING_VELOCITY_LIMIT = 5
RECENT_METRICS_LIMIT = 10

ADMIN_ACTIONS = ("lift_ban", "apply_ban", "reset")


@dataclass
class TrustFactors:
    originality_score: float = 1.0
    engagement_quality: float = 1.0
    spam_signals: float = 0.0
    report_weight: float = 0.0
    content_quality: float = 1.0

    def trust_score(self) -> float:
        return compute_trust_score(
            self.originality_score,
            self.engagement_quality,
            self.content_quality,
            self.spam_signals,
            self.report_weight,
        )


def compute_trust_score(
    originality: float,
    engagement_quality: float,
    content_quality: float,
    spam_signals: float,
    report_weight: float,
) -> float:
    base = (originality + engagement_quality + content_quality) / 3
    return clamp(base - spam_signals - report_weight)


def shadow_ban_reason(factors: TrustFactors) -> str:
    reasons = []
    if factors.spam_signals > 0.3:
        reasons.append("Spam-like behavior detected")
    if factors.report_weight > 0.3:
        reasons.append("Multiple reports received")
    if factors.content_quality < 0.3:
        reasons.append("Low content quality")
    if factors.engagement_quality < 0.5:
        reasons.append("Suspicious engagement patterns")
    return "; ".join(reasons)


_LIFTED_BAN = {
    "is_shadow_banned": False,
    "shadow_ban_reason": None,
    "shadow_ban_expires_at": None,
}


class TrustScorer:
    def __init__(self, store: Store, clock: Clock = utcnow) -> None:
        self.store = store
        self.clock = clock

    async def initialize_creator_trust_score(self, user_id: str) -> None:
        """Create a full-trust row for a new creator; no-op if one exists."""
        factors = TrustFactors()
        created = await self.store.create_trust_score_if_missing(
            user_id,
            {
                **asdict(factors),
                "trust_score": 1.0,
                "is_shadow_banned": False,
                "updated_at": self.clock(),
            },
        )
        if created:
            logger.info("Initialised trust score for user %s", user_id)
        else:
            logger.debug("Trust score already exists for user %s", user_id)

    async def update_creator_trust_score(self, user_id: str) -> CreatorTrustScore:
        now = self.clock()
        factors = TrustFactors()

        # Posting velocity
        recent_posts = await self.store.count_posts_since(user_id, now - POSTING_VELOCITY_WINDOW)
        if recent_posts > POSTING_VELOCITY_LIMIT:
            factors.spam_signals += 0.2

        # Engagement quality from the creator's most recent posts
        metrics = await self.store.list_recent_creator_metrics(user_id, RECENT_METRICS_LIMIT)
        if metrics:
            count = len(metrics)
            avg_completion = sum(m.completion_rate for m in metrics) / count
            avg_like_rate = sum(m.like_rate or 0.0 for m in metrics) / count
            avg_skip_rate = sum(m.skip_rate or 0.0 for m in metrics) / count

            factors.content_quality = avg_completion
            if avg_like_rate > 0.3 and avg_completion < 0.3:
                # Lots of likes on content nobody finishes looks bot-driven
                factors.engagement_quality = 0.5
                factors.spam_signals += 0.1
            else:
                factors.engagement_quality = min(1.0, avg_completion + 0.2)

            if avg_skip_rate > 0.5:
                factors.content_quality *= 0.7

        reports = await self.store.count_reports_since(user_id, now - REPORT_WINDOW)
        factors.report_weight = min(1.0, reports * REPORT_WEIGHT_PER_REPORT)
        factors.spam_signals = clamp(factors.spam_signals)

        trust_score = factors.trust_score()
        is_shadow_banned = trust_score < SHADOW_BAN_THRESHOLD
        values = {
            **asdict(factors),
            "trust_score": trust_score,
            "updated_at": now,
            **_LIFTED_BAN,
        }
        if is_shadow_banned:
            values.update(
                is_shadow_banned=True,
                shadow_ban_reason=shadow_ban_reason(factors),
                shadow_ban_expires_at=now + SHADOW_BAN_DURATION,
            )
            SHADOW_BANS_TOTAL.labels(source="score").inc()

        row = await self.store.save_trust_score(user_id, values)
        logger.info(
            "Updated trust score for user %s: %.3f, shadow_banned=%s",
            user_id, trust_score, is_shadow_banned,
        )
        return row

    async def is_creator_shadow_banned(self, user_id: str) -> bool:
        row = await self.store.get_trust_score(user_id)
        if row is None:
            return False

        if row.is_shadow_banned and row.shadow_ban_expires_at is not None:
            if self.clock() > row.shadow_ban_expires_at:
                await self.store.save_trust_score(user_id, dict(_LIFTED_BAN))
                logger.info("Shadow ban expired for user %s", user_id)
                return False

        return row.is_shadow_banned

    async def get_creator_trust_score(self, user_id: str) -> Optional[CreatorTrustScore]:
        return await self.store.get_trust_score(user_id)

    async def handle_post_report(self, post_id: str, reporter_id: str) -> None:
        """Re-score the reported post's creator. Never raises."""
        try:
            creator_id = await self.store.get_post_author(post_id)
            if creator_id is None:
                logger.warning("Report by %s for unknown post %s", reporter_id, post_id)
                return
            await self.update_creator_trust_score(creator_id)
        except Exception as exc:
            logger.error("Failed to handle report for post %s: %s", post_id, exc)

    async def decay_spam_signals(self) -> dict:
        """Daily job: spam_signals *= 0.9 and re-derive trust from stored factors."""
        rows = await self.store.list_trust_scores_with_spam()
        processed = 0

        for row in rows:
            try:
                spam_signals = row.spam_signals * SPAM_SIGNAL_DECAY
                trust_score = compute_trust_score(
                    row.originality_score,
                    row.engagement_quality,
                    row.content_quality,
                    spam_signals,
                    row.report_weight,
                )
                await self.store.save_trust_score(
                    row.user_id,
                    {"spam_signals": spam_signals, "trust_score": trust_score},
                )
                processed += 1
            except Exception as exc:
                logger.error("Spam decay failed for user %s: %s", row.user_id, exc)

        logger.info("Decayed spam signals for %d creators", processed)
        return {"processed": processed}

    async def check_expired_shadow_bans(self) -> dict:
        """Daily job: lift every ban whose expiry has passed."""
        rows = await self.store.list_expired_bans(self.clock())
        expired = 0

        for row in rows:
            try:
                await self.store.save_trust_score(row.user_id, dict(_LIFTED_BAN))
                expired += 1
            except Exception as exc:
                logger.error("Failed to lift shadow ban for user %s: %s", row.user_id, exc)

        logger.info("Lifted %d expired shadow bans", expired)
        return {"expired": expired}

    async def apply_admin_action(
        self, user_id: str, action: str, reason: Optional[str] = None
    ) -> CreatorTrustScore:
        """Manual moderation override: lift_ban, apply_ban or reset."""
        if action not in ADMIN_ACTIONS:
            raise ValueError(f"Unknown trust action: {action}")
        if await self.store.get_trust_score(user_id) is None:
            raise CreatorNotFound(user_id)

        now = self.clock()
        if action == "lift_ban":
            values = {**_LIFTED_BAN, "trust_score": 0.5}
        elif action == "apply_ban":
            values = {
                "is_shadow_banned": True,
                "shadow_ban_reason": reason or "Manually applied by admin",
                "shadow_ban_expires_at": now + SHADOW_BAN_DURATION,
                "trust_score": 0.1,
            }
            SHADOW_BANS_TOTAL.labels(source="admin").inc()
        else:
            values = {**asdict(TrustFactors()), "trust_score": 1.0, **_LIFTED_BAN}

        values["updated_at"] = now
        row = await self.store.save_trust_score(user_id, values)
        logger.info("Admin action %s applied to user %s", action, user_id)
        return row
