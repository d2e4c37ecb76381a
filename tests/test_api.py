import pytest
from httpx import ASGITransport, AsyncClient

from feedrank.config import settings
from feedrank.errors import PersistenceUnavailable
from feedrank.main import app


@pytest.fixture
async def client(services):
    app.state.services = services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def world(seed):
    await seed.user("v")
    await seed.user("a")
    await seed.post("p1", "a", tags={"music": 1.0})
    await seed.post("p2", "a", tags={"food": 1.0})
    return seed


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "service": settings.service_name}


async def test_prometheus_metrics_are_exposed(client):
    resp = await client.get("/metrics/")
    assert resp.status_code == 200
    assert "feed_latency_seconds" in resp.text


# ── Watch events ──────────────────────────────────────────────────────────

async def test_record_watch_event(client):
    resp = await client.post(
        "/posts/p1/watch",
        params={"user_id": "v"},
        json={"watch_duration": 1.0, "total_duration": 20.0, "skipped": True},
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["completion_rate"] == pytest.approx(0.05)
    assert body["skipped_in_first_2s"] is True

    metrics = await client.get("/posts/p1/metrics")
    assert metrics.status_code == 200
    assert metrics.json()["total_views"] == 1
    assert metrics.json()["distribution_phase"] == "KILLED"


async def test_invalid_watch_event_is_rejected(client):
    resp = await client.post(
        "/posts/p1/watch", json={"watch_duration": -1, "total_duration": 20}
    )
    assert resp.status_code == 422


async def test_watch_write_outage_returns_503(client, services, monkeypatch):
    async def unavailable(event):
        raise PersistenceUnavailable("connection refused")

    monkeypatch.setattr(services.store, "add_watch_event", unavailable)

    resp = await client.post("/posts/p1/watch", json={"watch_duration": 1, "total_duration": 2})
    assert resp.status_code == 503


async def test_watch_batch(client):
    events = [
        {"post_id": "p1", "user_id": "v", "watch_duration": 10, "total_duration": 10},
        {"post_id": "p2", "watch_duration": 2, "total_duration": 10},
    ]

    resp = await client.post("/posts/watch-batch", json={"events": events})

    assert resp.status_code == 200
    assert resp.json() == {"processed": 2, "failed": 0}


async def test_oversized_batch_is_rejected(client):
    event = {"post_id": "p1", "watch_duration": 1, "total_duration": 2}
    limit = settings.watch_batch_max_events

    resp = await client.post("/posts/watch-batch", json={"events": [event] * limit})
    assert resp.status_code == 200
    assert resp.json() == {"processed": limit, "failed": 0}

    resp = await client.post("/posts/watch-batch", json={"events": [event] * (limit + 1)})
    assert resp.status_code == 422


# ── Posts ─────────────────────────────────────────────────────────────────

async def test_tag_post(client):
    resp = await client.post(
        "/posts/p9/tags", json={"content": "leg day #gym", "hashtags": ["#fitness"]}
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["hashtags"] == ["#fitness", "#gym"]
    assert body["tags"]["fitness"] == pytest.approx(0.6)


async def test_metrics_for_unwatched_post_is_404(client):
    assert (await client.get("/posts/nothing/metrics")).status_code == 404


async def test_report_post(client, world, services):
    resp = await client.post("/posts/p1/report", json={"reporter_id": "v", "reason": "spam"})

    assert resp.status_code == 202
    row = await services.trust.get_creator_trust_score("a")
    assert row.report_weight == pytest.approx(0.05)


async def test_report_unknown_post_is_404(client):
    resp = await client.post("/posts/ghost/report", json={"reporter_id": "v"})
    assert resp.status_code == 404


# ── Feed ──────────────────────────────────────────────────────────────────

async def test_get_feed(client, world):
    resp = await client.get("/feed", params={"user_id": "v", "limit": 1})

    assert resp.status_code == 200
    body = resp.json()
    assert len(body["posts"]) == 1
    assert body["next_cursor"] == body["posts"][0]["id"]

    rest = await client.get(
        "/feed", params={"user_id": "v", "limit": 1, "cursor": body["next_cursor"]}
    )
    assert rest.json()["next_cursor"] is None
    ids = {body["posts"][0]["id"], rest.json()["posts"][0]["id"]}
    assert ids == {"p1", "p2"}


@pytest.mark.parametrize(
    "params", [{"feed_type": "trending"}, {"limit": 0}, {"limit": 51}]
)
async def test_invalid_feed_params(client, params):
    assert (await client.get("/feed", params=params)).status_code == 422


async def test_feed_outage_returns_503(client, services, monkeypatch):
    async def unavailable(**kwargs):
        raise PersistenceUnavailable("connection refused")

    monkeypatch.setattr(services.store, "list_candidate_posts", unavailable)

    assert (await client.get("/feed")).status_code == 503


async def test_not_interested_and_hide_creator(client, world):
    await client.get("/feed", params={"user_id": "v"})

    resp = await client.post("/feed/not-interested", json={"user_id": "v", "post_id": "p1"})
    assert resp.status_code == 204
    feed = await client.get("/feed", params={"user_id": "v"})
    assert [p["id"] for p in feed.json()["posts"]] == ["p2"]

    resp = await client.post("/feed/hide-creator", json={"user_id": "v", "creator_id": "a"})
    assert resp.status_code == 204
    feed = await client.get("/feed", params={"user_id": "v"})
    assert feed.json()["posts"] == []


async def test_invalidate_feed_cache(client, world, redis):
    await client.get("/feed", params={"user_id": "v"})
    assert await redis.exists("feed:cache:v") == 1

    resp = await client.delete("/feed/cache/v")

    assert resp.status_code == 204
    assert await redis.exists("feed:cache:v") == 0


# ── Creators ──────────────────────────────────────────────────────────────

async def test_trust_score_lifecycle(client, world):
    assert (await client.get("/creators/a/trust-score")).status_code == 404

    resp = await client.post("/creators/a/trust-score")
    assert resp.status_code == 200
    assert resp.json()["trust_score"] == pytest.approx(1.0)

    resp = await client.patch("/creators/a/trust-score", json={"action": "apply_ban"})
    assert resp.status_code == 200
    assert resp.json()["shadow_ban_reason"] == "Manually applied by admin"

    status = await client.get("/creators/a/shadow-ban")
    assert status.json() == {"user_id": "a", "is_shadow_banned": True}


async def test_admin_action_validation(client):
    resp = await client.patch("/creators/ghost/trust-score", json={"action": "reset"})
    assert resp.status_code == 404

    resp = await client.patch("/creators/ghost/trust-score", json={"action": "delete"})
    assert resp.status_code == 422


# ── Maintenance ───────────────────────────────────────────────────────────

async def test_maintenance_requires_cron_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", "s3cret")

    assert (await client.post("/maintenance/run")).status_code == 401

    resp = await client.post(
        "/maintenance/run", headers={"Authorization": "Bearer s3cret"}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert set(body["results"]) == {
        "interest_decay",
        "spam_decay",
        "shadow_ban_expiry",
        "watch_event_cleanup",
        "metrics_recalculation",
    }


# ── Admin ─────────────────────────────────────────────────────────────────

async def test_algorithm_analytics(client, world):
    await client.post(
        "/posts/p1/watch",
        params={"user_id": "v"},
        json={"watch_duration": 20, "total_duration": 20},
    )
    await client.get("/feed", params={"user_id": "v"})

    resp = await client.get("/admin/algorithm")

    assert resp.status_code == 200
    body = resp.json()
    assert body["distribution_phases"] == {"TEST": 1}
    assert body["watch_events"]["total"] == 1
    assert body["watch_events"]["last_24h"] == 1
    assert body["interest_profiles"] == 1
    assert body["content_tagging"] == {"tagged_posts": 2, "total_posts": 2, "coverage": 100.0}
    assert body["feed_cache"] == {"active": 1, "expired": 0}
    assert body["top_posts"] == []


async def test_algorithm_analytics_outage_returns_503(client, services, monkeypatch):
    async def unavailable():
        raise PersistenceUnavailable("connection refused")

    monkeypatch.setattr(services.store, "phase_breakdown", unavailable)

    assert (await client.get("/admin/algorithm")).status_code == 503
