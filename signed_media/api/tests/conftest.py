"""Shared fixtures: controllable clock, in-memory async Redis double, counting signer."""

import asyncio

import pytest

from signed_media.api.background import BackgroundWriter
from signed_media.api.distributed_cache import DistributedUrlCache
from signed_media.api.entry import SignedUrlEntry
from signed_media.api.local_cache import LocalUrlCache
from signed_media.api.resolver import SignedUrlResolver
from signed_media.shared import REDIS_KEY_PREFIX

NOW = 1_760_000_000.0  # fixed epoch seconds used as "now" in tests
TTL = 3600
BUFFER = 300


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _FakePipeline:
    def __init__(self, redis: "FakeRedis"):
        self._redis = redis
        self._commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def set(self, key, value, ex=None):
        self._commands.append((key, value, ex))
        return self

    async def execute(self):
        if self._redis.fail_writes:
            raise ConnectionError("redis down")
        self._redis.pipeline_executions += 1
        for key, value, ex in self._commands:
            self._redis.store[key] = value
            self._redis.ttls[key] = ex
        return [True] * len(self._commands)


class FakeRedis:
    """The slice of ``redis.asyncio.Redis`` the distributed tier uses."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.mget_delay = 0.0
        self.fail_reads = False
        self.fail_writes = False
        self.get_calls = 0
        self.mget_calls = 0
        self.mget_completed = 0
        self.set_calls = 0
        self.pipeline_executions = 0
        self.closed = False

    async def get(self, key):
        self.get_calls += 1
        if self.fail_reads:
            raise ConnectionError("redis down")
        return self.store.get(key)

    async def mget(self, keys):
        self.mget_calls += 1
        if self.mget_delay:
            await asyncio.sleep(self.mget_delay)
        if self.fail_reads:
            raise ConnectionError("redis down")
        self.mget_completed += 1
        return [self.store.get(k) for k in keys]

    async def set(self, key, value, ex=None):
        self.set_calls += 1
        if self.fail_writes:
            raise ConnectionError("redis down")
        self.store[key] = value
        self.ttls[key] = ex
        return True

    def pipeline(self, transaction=True):
        return _FakePipeline(self)

    async def aclose(self):
        self.closed = True

    def prime(self, cache_key: str, entry: SignedUrlEntry) -> None:
        self.store[f"{REDIS_KEY_PREFIX}{cache_key}"] = entry.to_json()

    def entry(self, cache_key: str) -> SignedUrlEntry | None:
        return SignedUrlEntry.from_json(self.store.get(f"{REDIS_KEY_PREFIX}{cache_key}"))


class CountingSigner:
    """Origin signer double. URLs are deterministic per (bucket, key, disposition)."""

    default_bucket = "media"

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: list[tuple] = []
        self.delay = 0.0
        self.fail_keys: set[str] = set()
        self.fail_times = 0  # fail this many calls for keys in fail_keys, then succeed
        self.closed = False

    async def sign(self, key, ttl, content_disposition=None, bucket=None):
        self.calls.append((key, ttl, content_disposition, bucket))
        if self.delay:
            await asyncio.sleep(self.delay)
        if key in self.fail_keys and self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError(f"cannot sign {key}")
        url = f"https://signed.test/{bucket or self.default_bucket}/{key}?ttl={ttl}"
        if content_disposition:
            url += f"&disposition={content_disposition}"
        return SignedUrlEntry(url=url, expires_at=self.clock() + ttl)

    def close(self):
        self.closed = True

    @property
    def count(self) -> int:
        return len(self.calls)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def signer(clock):
    return CountingSigner(clock)


@pytest.fixture
def make_resolver(clock, fake_redis, signer):
    """Factory so a test can build several resolvers over the same or fresh state."""

    def _make(redis=fake_redis, sign=signer, mget_deadline=2.0, max_background_writes=64):
        return SignedUrlResolver(
            signer=sign,
            local=LocalUrlCache(maxsize=1000, ttl=TTL, safety_buffer=BUFFER, clock=clock),
            distributed=DistributedUrlCache(redis, mget_deadline=mget_deadline, safety_buffer=BUFFER, clock=clock),
            background=BackgroundWriter(max_background_writes),
            url_ttl=TTL,
            safety_buffer=BUFFER,
            clock=clock,
        )

    return _make


@pytest.fixture
def resolver(make_resolver):
    return make_resolver()
