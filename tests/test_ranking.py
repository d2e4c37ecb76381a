import random
from datetime import timedelta

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import delete

from feedrank.algorithm.categories import CONTENT_CATEGORIES
from feedrank.algorithm.feed_cache import CACHE_KEY
from feedrank.algorithm.ranking import RankedPost, paginate
from feedrank.models import DistributionPhase, Post
from feedrank.services import build_services

MUSIC = {"music": 1.0}
FOOD = {"food": 1.0}


def ids(page):
    return [p.id for p in page.posts]


@pytest.fixture
async def world(seed):
    """Viewer `v` plus three public creators with one music post each."""
    await seed.user("v")
    for creator in ("a", "b", "c"):
        await seed.user(creator)
        await seed.post(f"{creator}1", creator, tags=MUSIC)
    return seed


@pytest.fixture
def ranking(services):
    return services.ranking


# ── Pagination ────────────────────────────────────────────────────────────

def test_paginate_walks_the_list():
    posts = [RankedPost(str(i), "a", None, 1.0) for i in range(5)]

    first = paginate(posts, None, 2)
    assert ids(first) == ["0", "1"] and first.next_cursor == "1"
    last = paginate(posts, "3", 2)
    assert ids(last) == ["4"] and last.next_cursor is None


def test_unknown_cursor_restarts_from_top():
    posts = [RankedPost(str(i), "a", None, 1.0) for i in range(3)]
    assert ids(paginate(posts, "gone", 2)) == ["0", "1"]


async def test_cursor_pages_are_disjoint(ranking, seed):
    await seed.user("v")
    await seed.user("a")
    for i in range(25):
        await seed.post(f"p{i:02d}", "a", age=timedelta(minutes=i), tags=MUSIC)

    seen = []
    cursor = None
    pages = 0
    while True:
        page = await ranking.generate_personalized_feed("v", limit=10, cursor=cursor)
        seen += ids(page)
        pages += 1
        cursor = page.next_cursor
        if cursor is None:
            break

    assert pages == 3
    assert len(seen) == 25
    assert len(set(seen)) == 25


# ── Eligibility ───────────────────────────────────────────────────────────

async def test_anonymous_feed_is_not_cached(ranking, world, redis):
    page = await ranking.generate_personalized_feed(None)

    assert sorted(ids(page)) == ["a1", "b1", "c1"]
    assert await redis.keys("feed:cache:*") == []


async def test_not_interested_post_never_returns(ranking, world):
    await ranking.generate_personalized_feed("v")

    await ranking.mark_not_interested("v", "a1")
    await ranking.mark_not_interested("v", "a1")
    page = await ranking.generate_personalized_feed("v")

    assert "a1" not in ids(page)
    assert sorted(ids(page)) == ["b1", "c1"]


async def test_hidden_creator_is_excluded_and_hide_is_idempotent(ranking, world, store):
    await world.post("a2", "a", tags=FOOD)
    await ranking.generate_personalized_feed("v")

    await ranking.hide_creator("v", "a")
    await ranking.hide_creator("v", "a")
    page = await ranking.generate_personalized_feed("v")

    assert all(p.user_id != "a" for p in page.posts)
    assert await store.get_hidden_creator_ids("v") == {"a"}


async def test_blocks_apply_in_both_directions(ranking, world):
    await world.block("v", "a")
    await world.block("b", "v")

    page = await ranking.generate_personalized_feed("v")

    assert ids(page) == ["c1"]


async def test_ineligible_authors_and_posts_are_filtered(ranking, world):
    await world.user("d")
    await world.post("d1", "d", tags=MUSIC)
    await world.user("secret", is_profile_public=False)
    await world.post("secret1", "secret", tags=MUSIC)
    await world.user("gone", is_active=False)
    await world.post("gone1", "gone", tags=MUSIC)
    await world.user("staff", role="ADMIN")
    await world.post("staff1", "staff", tags=MUSIC)
    await world.post("contest1", "a", visible_in_feed=False)
    await world.follow("v", "secret")

    page = await ranking.generate_personalized_feed("v", limit=50)

    assert sorted(ids(page)) == ["a1", "b1", "c1", "d1", "secret1"]


async def test_excluded_post_ids_are_skipped(ranking, world):
    page = await ranking.generate_personalized_feed("v", exclude_post_ids=["b1"])
    assert sorted(ids(page)) == ["a1", "c1"]


async def test_following_feed(ranking, world):
    assert (await ranking.generate_personalized_feed("v", feed_type="following")).posts == []

    await ranking.invalidate_feed_cache("v")
    await world.follow("v", "b")
    page = await ranking.generate_personalized_feed("v", feed_type="following")

    assert ids(page) == ["b1"]
    assert "From someone you follow" in page.posts[0].reasons


async def test_unknown_feed_type_is_rejected(ranking):
    with pytest.raises(ValueError):
        await ranking.generate_personalized_feed("v", feed_type="trending")


# ── Scoring ───────────────────────────────────────────────────────────────

async def test_matching_interests_rank_first(ranking, seed, store, clock):
    await seed.user("v")
    await seed.user("a")
    await seed.post("music", "a", tags=MUSIC)
    await seed.post("food", "a", tags=FOOD)
    await store.upsert_interest_profile(
        "v", {c: (1.0 if c == "music" else 0.0) for c in CONTENT_CATEGORIES}, clock()
    )

    page = await ranking.generate_personalized_feed("v")

    assert ids(page) == ["music", "food"]
    assert "Matches your interests" in page.posts[0].reasons
    assert page.posts[1].reasons == []


async def test_popular_content_reason(ranking, world):
    await world.post("viral", "a", tags=MUSIC, phase=DistributionPhase.TEST, viral=0.8)

    page = await ranking.generate_personalized_feed("v")

    viral = next(p for p in page.posts if p.id == "viral")
    assert "Popular content" in viral.reasons


async def test_older_posts_decay(ranking, seed):
    await seed.user("v")
    await seed.user("a")
    await seed.post("fresh", "a", age=timedelta(hours=1), tags=MUSIC)
    await seed.post("stale", "a", age=timedelta(days=10), tags=MUSIC)

    page = await ranking.generate_personalized_feed("v")

    fresh, stale = page.posts
    assert fresh.id == "fresh"
    # 0.95^10 ≈ 0.6, jitter is at most ±5%
    assert stale.score / fresh.score < 0.7


async def test_shadow_banned_creator_is_demoted(ranking, world, services):
    await services.trust.initialize_creator_trust_score("a")
    await services.trust.apply_admin_action("a", "apply_ban")

    page = await ranking.generate_personalized_feed("v")

    assert ids(page)[-1] == "a1"
    banned = page.posts[-1]
    assert banned.score / page.posts[0].score < 0.12


async def test_phase_weighting(ranking, seed):
    await seed.user("v")
    await seed.user("a")
    for phase in DistributionPhase:
        await seed.post(phase.value, "a", tags=MUSIC, phase=phase)

    page = await ranking.generate_personalized_feed("v")

    assert ids(page) == ["BLAST", "SCALE", "TEST", "KILLED"]


async def test_following_feed_skips_phase_weighting(ranking, seed):
    await seed.user("v")
    await seed.user("a")
    await seed.follow("v", "a")
    await seed.post("killed", "a", tags=MUSIC, phase=DistributionPhase.KILLED)
    await seed.post("blast", "a", tags=MUSIC, phase=DistributionPhase.BLAST)

    page = await ranking.generate_personalized_feed("v", feed_type="following")

    scores = {p.id: p.score for p in page.posts}
    assert 0.85 < scores["killed"] / scores["blast"] < 1.2


async def test_seeded_jitter_is_reproducible(seed, store, redis, clock):
    await seed.user("a")
    for i in range(6):
        await seed.post(f"p{i}", "a", tags=MUSIC)

    first = build_services(store, redis, clock=clock, rng=random.Random(7))
    second = build_services(store, redis, clock=clock, rng=random.Random(7))

    one = await first.ranking.generate_personalized_feed(None)
    two = await second.ranking.generate_personalized_feed(None)

    assert [(p.id, p.score) for p in one.posts] == [(p.id, p.score) for p in two.posts]


# ── Cache ─────────────────────────────────────────────────────────────────

async def test_cached_feed_is_served_until_ttl(ranking, world, clock):
    first = await ranking.generate_personalized_feed("v")
    await world.post("new", "a", age=timedelta(0), tags=MUSIC)

    clock.advance(minutes=9)
    cached = await ranking.generate_personalized_feed("v")
    assert [(p.id, p.score) for p in cached.posts] == [(p.id, p.score) for p in first.posts]

    clock.advance(minutes=2)
    fresh = await ranking.generate_personalized_feed("v")
    assert "new" in ids(fresh)


async def test_cache_is_keyed_by_feed_type(ranking, world, services):
    await ranking.generate_personalized_feed("v", feed_type="for_you")
    await ranking.generate_personalized_feed("v", feed_type="explore")

    cached = await services.cache.get("v", "explore")
    assert cached is not None
    assert await services.cache.get("v", "for_you") is None


async def test_cache_hit_drops_deleted_posts(ranking, world, store):
    await ranking.generate_personalized_feed("v")
    async with store.session() as session:
        await session.execute(delete(Post).where(Post.post_id == "b1"))

    page = await ranking.generate_personalized_feed("v")

    assert "b1" not in ids(page)
    assert len(page.posts) == 2


async def test_invalidate_missing_cache_is_fine(ranking, redis):
    await ranking.invalidate_feed_cache("nobody")
    assert await redis.exists(CACHE_KEY.format(user_id="nobody")) == 0


async def test_redis_outage_degrades_to_uncached_feed(ranking, world, redis, monkeypatch):
    async def down(*args, **kwargs):
        raise RedisConnectionError("redis down")

    monkeypatch.setattr(redis, "get", down)
    monkeypatch.setattr(redis, "set", down)

    page = await ranking.generate_personalized_feed("v")

    assert sorted(ids(page)) == ["a1", "b1", "c1"]
