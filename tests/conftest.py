import os

# Must be set before feedrank.config is imported anywhere
os.environ.setdefault("TRACING_ENABLED", "false")

import random
from datetime import datetime, timedelta
from typing import Optional

import pytest
from fakeredis import aioredis as fake_aioredis

from feedrank.algorithm.dispatch import InlineDispatcher
from feedrank.database import create_engine, create_session_factory, init_db
from feedrank.models import (
    Bookmark,
    Comment,
    DistributionPhase,
    Follow,
    Like,
    Post,
    Share,
    User,
    UserBlock,
    UserReport,
)
from feedrank.services import build_services
from feedrank.store import Store

NOW = datetime(2026, 3, 2, 12, 0, 0)


class FakeClock:
    """Mutable naive-UTC clock shared by every component under test."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


class Seeder:
    """Writes collaborator rows (users, posts, follows, engagement) directly."""

    def __init__(self, store: Store, clock: FakeClock) -> None:
        self.store = store
        self.clock = clock

    async def _add(self, *rows) -> None:
        async with self.store.session() as session:
            session.add_all(rows)

    async def user(self, user_id: str, **fields) -> None:
        await self._add(User(user_id=user_id, username=user_id, **fields))

    async def post(
        self,
        post_id: str,
        user_id: str,
        age: timedelta = timedelta(hours=1),
        tags: Optional[dict] = None,
        phase: Optional[DistributionPhase] = None,
        viral: Optional[float] = None,
        **fields,
    ) -> None:
        now = self.clock()
        await self._add(Post(post_id=post_id, user_id=user_id, created_at=now - age, **fields))
        if tags is not None:
            await self.store.upsert_content_vector(post_id, tags, [], now)
        if phase is not None or viral is not None:
            await self.store.save_post_metrics(
                post_id,
                {
                    "distribution_phase": phase or DistributionPhase.TEST,
                    "viral_score": viral or 0.0,
                    "last_calculated_at": now,
                    "created_at": now,
                },
            )

    async def follow(self, follower_id: str, followee_id: str) -> None:
        await self._add(Follow(follower_id=follower_id, followee_id=followee_id))

    async def block(self, blocker_id: str, blocked_id: str) -> None:
        await self._add(UserBlock(blocker_id=blocker_id, blocked_id=blocked_id))

    async def engagement(
        self, post_id: str, likes: int = 0, comments: int = 0, shares: int = 0, saves: int = 0
    ) -> None:
        rows = []
        rows += [Like(user_id=f"liker-{i}", post_id=post_id) for i in range(likes)]
        rows += [Comment(user_id=f"commenter-{i}", post_id=post_id) for i in range(comments)]
        rows += [Share(user_id=f"sharer-{i}", post_id=post_id) for i in range(shares)]
        rows += [Bookmark(user_id=f"saver-{i}", post_id=post_id) for i in range(saves)]
        await self._add(*rows)

    async def user_reports(self, user_id: str, count: int) -> None:
        await self._add(
            *[
                UserReport(user_id=user_id, reporter_id=f"reporter-{i}", created_at=self.clock())
                for i in range(count)
            ]
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'feedrank.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine):
    return Store(create_session_factory(engine))


@pytest.fixture
async def redis():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def services(store, redis, clock):
    return build_services(
        store,
        redis,
        dispatcher=InlineDispatcher(),
        clock=clock,
        rng=random.Random(1234),
    )


@pytest.fixture
def seed(store, clock):
    return Seeder(store, clock)
