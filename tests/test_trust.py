from datetime import timedelta

import pytest

from feedrank.algorithm.trust import TrustScorer, compute_trust_score
from feedrank.errors import CreatorNotFound


@pytest.fixture
def trust(store, clock):
    return TrustScorer(store, clock)


def test_trust_formula_is_clamped():
    assert compute_trust_score(1.0, 1.0, 1.0, 0.0, 0.0) == 1.0
    assert compute_trust_score(0.5, 0.5, 0.5, 0.4, 0.4) == 0.0
    assert compute_trust_score(1.0, 0.5, 0.2, 0.1, 0.0) == pytest.approx(0.4667, abs=1e-4)


async def test_initialize_is_idempotent(trust, store):
    await trust.initialize_creator_trust_score("c1")
    await store.save_trust_score("c1", {"trust_score": 0.6})

    await trust.initialize_creator_trust_score("c1")

    row = await trust.get_creator_trust_score("c1")
    assert row.trust_score == pytest.approx(0.6)


async def test_clean_creator_keeps_full_trust(trust, seed):
    await seed.user("c1")
    await seed.post("p1", "c1", age=timedelta(days=2))

    row = await trust.update_creator_trust_score("c1")

    assert row.trust_score == pytest.approx(1.0)
    assert row.is_shadow_banned is False
    assert row.shadow_ban_expires_at is None


async def test_posting_velocity_adds_spam_signal(trust, seed):
    await seed.user("c1")
    for i in range(6):
        await seed.post(f"p{i}", "c1", age=timedelta(minutes=5 + i))

    row = await trust.update_creator_trust_score("c1")

    assert row.spam_signals == pytest.approx(0.2)
    assert row.trust_score == pytest.approx(0.8)
    assert not row.is_shadow_banned


async def test_many_reports_trigger_shadow_ban(trust, seed, clock):
    await seed.user("c1")
    await seed.user_reports("c1", 20)

    row = await trust.update_creator_trust_score("c1")

    assert row.report_weight == pytest.approx(1.0)
    assert row.trust_score == 0.0
    assert row.is_shadow_banned is True
    assert row.shadow_ban_reason == "Multiple reports received"
    assert row.shadow_ban_expires_at == clock() + timedelta(days=7)


async def test_suspicious_engagement_lowers_quality(trust, seed, store, clock):
    await seed.user("c1")
    await seed.post("p1", "c1", age=timedelta(days=1))
    await store.save_post_metrics(
        "p1",
        {
            "completion_rate": 0.2,
            "like_rate": 0.5,
            "skip_rate": 0.0,
            "last_calculated_at": clock(),
            "created_at": clock(),
        },
    )
    await seed.user_reports("c1", 5)

    row = await trust.update_creator_trust_score("c1")

    assert row.engagement_quality == pytest.approx(0.5)
    assert row.content_quality == pytest.approx(0.2)
    assert row.spam_signals == pytest.approx(0.1)
    assert row.is_shadow_banned is True
    assert row.shadow_ban_reason == "Low content quality"


async def test_recovered_creator_is_unbanned_on_recalculation(trust, seed, clock):
    await seed.user("c1")
    await seed.user_reports("c1", 20)
    await trust.update_creator_trust_score("c1")

    clock.advance(days=31)
    row = await trust.update_creator_trust_score("c1")

    assert row.is_shadow_banned is False
    assert row.shadow_ban_reason is None


async def test_expired_ban_is_lifted_lazily(trust, store, clock):
    await trust.initialize_creator_trust_score("c1")
    await trust.apply_admin_action("c1", "apply_ban")
    assert await trust.is_creator_shadow_banned("c1") is True

    clock.advance(days=7, seconds=1)

    assert await trust.is_creator_shadow_banned("c1") is False
    row = await store.get_trust_score("c1")
    assert row.is_shadow_banned is False
    assert row.shadow_ban_expires_at is None
    assert row.shadow_ban_reason is None


async def test_unknown_creator_is_not_banned(trust):
    assert await trust.is_creator_shadow_banned("ghost") is False


async def test_handle_post_report_rescored_creator(trust, seed, store, clock):
    await seed.user("c1")
    await seed.post("p1", "c1", age=timedelta(days=1))
    for i in range(20):
        await store.add_post_report("p1", f"r{i}", "spam", clock())

    await trust.handle_post_report("p1", "r0")

    assert await trust.is_creator_shadow_banned("c1") is True


async def test_handle_post_report_swallows_errors(trust, store, monkeypatch):
    async def broken(post_id):
        raise RuntimeError("db down")

    monkeypatch.setattr(store, "get_post_author", broken)
    await trust.handle_post_report("p1", "r1")


async def test_spam_decay_rederives_trust(trust, store, clock):
    await store.save_trust_score(
        "c1", {"spam_signals": 0.5, "trust_score": 0.5, "updated_at": clock()}
    )
    await store.save_trust_score("c2", {"spam_signals": 0.0, "updated_at": clock()})

    result = await trust.decay_spam_signals()

    assert result == {"processed": 1}
    row = await store.get_trust_score("c1")
    assert row.spam_signals == pytest.approx(0.45)
    assert row.trust_score == pytest.approx(0.55)


async def test_expired_ban_sweep(trust, clock):
    for user_id in ("c1", "c2"):
        await trust.initialize_creator_trust_score(user_id)
    await trust.apply_admin_action("c1", "apply_ban")
    clock.advance(days=3)
    await trust.apply_admin_action("c2", "apply_ban")
    clock.advance(days=5)

    result = await trust.check_expired_shadow_bans()

    assert result == {"expired": 1}
    assert (await trust.get_creator_trust_score("c1")).is_shadow_banned is False
    assert (await trust.get_creator_trust_score("c2")).is_shadow_banned is True


async def test_admin_actions(trust, clock):
    await trust.initialize_creator_trust_score("c1")

    banned = await trust.apply_admin_action("c1", "apply_ban", "Impersonation")
    assert banned.is_shadow_banned is True
    assert banned.trust_score == pytest.approx(0.1)
    assert banned.shadow_ban_reason == "Impersonation"

    lifted = await trust.apply_admin_action("c1", "lift_ban")
    assert lifted.is_shadow_banned is False
    assert lifted.trust_score == pytest.approx(0.5)

    reset = await trust.apply_admin_action("c1", "reset")
    assert reset.trust_score == pytest.approx(1.0)
    assert reset.spam_signals == 0.0


async def test_admin_action_errors(trust):
    with pytest.raises(CreatorNotFound):
        await trust.apply_admin_action("ghost", "reset")

    await trust.initialize_creator_trust_score("c1")
    with pytest.raises(ValueError):
        await trust.apply_admin_action("c1", "delete")
