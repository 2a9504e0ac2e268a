"""Tests for the Redis-backed tier: failure swallowing, deadline, write TTLs."""

import asyncio
import json
import time

import pytest

from signed_media.api.distributed_cache import DistributedUrlCache
from signed_media.api.entry import SignedUrlEntry
from signed_media.api.tests.conftest import BUFFER, NOW, FakeClock, FakeRedis

pytestmark = pytest.mark.asyncio


def _cache(redis, deadline=2.0):
    return DistributedUrlCache(redis, mget_deadline=deadline, safety_buffer=BUFFER, clock=FakeClock())


def _entry(key, seconds_left=3600):
    return SignedUrlEntry(url=f"https://signed.test/{key}", expires_at=NOW + seconds_left)


class TestReads:
    async def test_get_hit_and_miss(self):
        redis = FakeRedis()
        redis.prime("media/a.jpg", _entry("a"))
        cache = _cache(redis)
        assert await cache.get("media/a.jpg") == _entry("a")
        assert await cache.get("media/b.jpg") is None

    async def test_get_failure_is_a_miss(self):
        redis = FakeRedis()
        redis.prime("k", _entry("k"))
        redis.fail_reads = True
        assert await _cache(redis).get("k") is None

    async def test_malformed_value_is_a_miss(self):
        redis = FakeRedis()
        redis.store["signed_url:k"] = "{broken"
        assert await _cache(redis).get("k") is None

    async def test_mget_aligned_to_keys(self):
        redis = FakeRedis()
        redis.prime("a", _entry("a"))
        redis.prime("c", _entry("c"))
        result = await _cache(redis).mget(["a", "b", "c"])
        assert result == [_entry("a"), None, _entry("c")]
        assert redis.mget_calls == 1

    async def test_mget_empty_issues_no_call(self):
        redis = FakeRedis()
        assert await _cache(redis).mget([]) == []
        assert redis.mget_calls == 0

    async def test_mget_failure_is_a_full_miss(self):
        redis = FakeRedis()
        redis.prime("a", _entry("a"))
        redis.fail_reads = True
        assert await _cache(redis).mget(["a", "b"]) == [None, None]

    async def test_mget_deadline_abandons_without_cancelling(self):
        redis = FakeRedis()
        redis.prime("a", _entry("a"))
        redis.mget_delay = 0.5
        cache = _cache(redis, deadline=0.05)

        start = time.monotonic()
        result = await cache.mget(["a"])
        elapsed = time.monotonic() - start

        assert result == [None]
        assert elapsed < 0.4
        assert cache.abandoned_reads == 1

        # The abandoned read still runs to completion; its result is ignored.
        await asyncio.sleep(0.6)
        assert redis.mget_completed == 1
        assert cache.abandoned_reads == 0


class TestWrites:
    async def test_set_uses_remaining_lifetime_minus_buffer(self):
        redis = FakeRedis()
        await _cache(redis).set("k", _entry("k", 3600))
        assert redis.entry("k") == _entry("k", 3600)
        assert redis.ttls["signed_url:k"] == 3600 - BUFFER

    async def test_set_skips_entries_with_no_lifetime_left(self):
        redis = FakeRedis()
        await _cache(redis).set("k", _entry("k", BUFFER))
        assert redis.set_calls == 0

    async def test_set_failure_is_swallowed(self):
        redis = FakeRedis()
        redis.fail_writes = True
        await _cache(redis).set("k", _entry("k"))

    async def test_pipeline_set_writes_all_in_one_round_trip(self):
        redis = FakeRedis()
        await _cache(redis).pipeline_set([("a", _entry("a")), ("b", _entry("b")), ("dead", _entry("dead", 10))])
        assert redis.pipeline_executions == 1
        assert json.loads(redis.store["signed_url:a"])["url"] == "https://signed.test/a"
        assert "signed_url:b" in redis.store
        assert "signed_url:dead" not in redis.store

    async def test_pipeline_failure_is_swallowed(self):
        redis = FakeRedis()
        redis.fail_writes = True
        await _cache(redis).pipeline_set([("a", _entry("a"))])
        assert redis.store == {}


class TestDisabled:
    async def test_no_client_always_misses(self):
        cache = _cache(None)
        assert not cache.enabled
        assert await cache.get("a") is None
        assert await cache.mget(["a", "b"]) == [None, None]
        await cache.set("a", _entry("a"))
        await cache.pipeline_set([("a", _entry("a"))])
        await cache.aclose()

    async def test_aclose_closes_client(self):
        redis = FakeRedis()
        await _cache(redis).aclose()
        assert redis.closed
