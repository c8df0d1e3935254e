"""Rate limit stores and route classification."""

import pytest

from arxledger.middleware.rate_limit import (
    BATCH,
    EXPENSIVE,
    STANDARD,
    InMemoryRateLimitStore,
    RedisRateLimitStore,
    classify_route,
)


class TestClassifyRoute:
    def test_admin_routes_are_batch(self):
        assert classify_route("POST", "/api/v1/admin/points/reconcile") == BATCH
        assert classify_route("POST", "/api/v1/admin/sessions/sweep") == BATCH

    def test_settlement_is_expensive(self):
        assert classify_route("POST", "/api/v1/admin/arena/battles/abc/settle") == EXPENSIVE

    def test_stake_is_expensive(self):
        assert classify_route("POST", "/api/v1/arena/battles/abc/stake") == EXPENSIVE

    def test_default_is_standard(self):
        assert classify_route("POST", "/api/v1/points/credit") == STANDARD
        assert classify_route("GET", "/api/v1/arena/battles/abc/quote") == STANDARD


@pytest.mark.asyncio
class TestInMemoryStore:
    async def test_counts_down_then_blocks(self):
        store = InMemoryRateLimitStore()
        results = [await store.hit("k", 3, 60, now=1000.0 + i) for i in range(4)]
        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[-1].reset_at == 1060.0
        assert results[-1].retry_after(1003.0) == 57

    async def test_window_resets(self):
        store = InMemoryRateLimitStore()
        for i in range(2):
            await store.hit("k", 2, 60, now=1000.0 + i)
        assert (await store.hit("k", 2, 60, now=1030.0)).allowed is False
        assert (await store.hit("k", 2, 60, now=1060.0)).allowed is True

    async def test_keys_are_independent(self):
        store = InMemoryRateLimitStore()
        assert (await store.hit("a", 1, 60, now=0.0)).allowed is True
        assert (await store.hit("a", 1, 60, now=1.0)).allowed is False
        assert (await store.hit("b", 1, 60, now=1.0)).allowed is True


class _FakePipeline:
    def __init__(self, counts: dict[str, int]) -> None:
        self.counts = counts
        self.key = ""

    def incr(self, key: str) -> None:
        self.key = key
        self.counts[key] = self.counts.get(key, 0) + 1

    def expire(self, key: str, seconds: int) -> None:
        pass

    async def execute(self) -> list[int]:
        return [self.counts[self.key], True]


class _FakeRedis:
    def __init__(self) -> None:
        self.counts: dict[str, int] = {}

    def pipeline(self) -> _FakePipeline:
        return _FakePipeline(self.counts)


@pytest.mark.asyncio
class TestRedisStore:
    async def test_fixed_window(self):
        fake = _FakeRedis()
        store = RedisRateLimitStore(lambda: fake)
        first = await store.hit("user:1:batch", 2, 60, now=120.5)
        second = await store.hit("user:1:batch", 2, 60, now=130.0)
        third = await store.hit("user:1:batch", 2, 60, now=179.0)
        assert (first.allowed, second.allowed, third.allowed) == (True, True, False)
        assert third.reset_at == 180.0
        assert "ratelimit:user:1:batch:2" in fake.counts
        # next window
        assert (await store.hit("user:1:batch", 2, 60, now=181.0)).allowed is True
