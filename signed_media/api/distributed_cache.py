"""Shared signed URL cache backed by Redis.

Values are stored under ``signed_url:{cache_key}`` as JSON
``{"url": ..., "expiresAt": <epoch ms>}`` with a per-entry TTL.

Every operation swallows transport and decode failures: a miss is reported
instead, and writes become no-ops. This tier being slow or down must never
fail a caller. ``mget`` is additionally raced against a deadline; when the
deadline wins the whole batch is a miss and the in-flight read is left to
finish on its own (its result is discarded, it is not cancelled).
"""

import asyncio
import logging
import time
from typing import Callable, Iterable, Optional

from redis import asyncio as aioredis

from signed_media.api.entry import SignedUrlEntry
from signed_media.shared import MGET_DEADLINE, REDIS_KEY_PREFIX, SAFETY_BUFFER

log = logging.getLogger(__name__)


def _decode(raw, key: str) -> Optional[SignedUrlEntry]:
    entry = SignedUrlEntry.from_json(raw)
    if entry is None and raw is not None:
        log.warning("Undecodable signed URL cache value", extra={"cache_key": key, "tier": "distributed"})
    return entry


class DistributedUrlCache:
    """Deadline-guarded, failure-swallowing wrapper around an async Redis client.

    ``client`` may be None, in which case every read misses and every write
    is skipped (Redis not configured).
    """

    def __init__(
        self,
        client: Optional[aioredis.Redis],
        mget_deadline: float = MGET_DEADLINE,
        safety_buffer: float = SAFETY_BUFFER,
        key_prefix: str = REDIS_KEY_PREFIX,
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        self.mget_deadline = mget_deadline
        self.safety_buffer = safety_buffer
        self._prefix = key_prefix
        self._clock = clock
        # Strong references to abandoned mget calls until they settle.
        self._abandoned: set[asyncio.Future] = set()

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def _redis_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[SignedUrlEntry]:
        if self._client is None:
            return None
        try:
            raw = await self._client.get(self._redis_key(key))
        except Exception as e:
            log.warning(f"Redis GET failed for {key}: {e}", extra={"tier": "distributed"})
            return None
        return _decode(raw, key)

    async def mget(self, keys: list[str]) -> list[Optional[SignedUrlEntry]]:
        """Return entries aligned to *keys*; all None on failure or deadline."""
        if not keys:
            return []
        misses: list[Optional[SignedUrlEntry]] = [None] * len(keys)
        if self._client is None:
            return misses

        start = time.monotonic()
        try:
            call = asyncio.ensure_future(self._client.mget([self._redis_key(k) for k in keys]))
        except Exception as e:
            log.warning(f"Redis MGET failed: {e}", extra={"tier": "distributed", "count": len(keys)})
            return misses
        done, _pending = await asyncio.wait({call}, timeout=self.mget_deadline)
        if not done:
            self._abandon(call)
            log.warning(
                f"Redis MGET exceeded {self.mget_deadline}s deadline; treating {len(keys)} keys as misses",
                extra={"tier": "distributed", "count": len(keys), "duration": time.monotonic() - start},
            )
            return misses

        try:
            values = call.result()
        except Exception as e:
            log.warning(f"Redis MGET failed: {e}", extra={"tier": "distributed", "count": len(keys)})
            return misses
        if values is None or len(values) != len(keys):
            log.warning("Redis MGET returned a misaligned result", extra={"tier": "distributed", "count": len(keys)})
            return misses
        return [_decode(raw, key) for key, raw in zip(keys, values)]

    def _abandon(self, call: asyncio.Future) -> None:
        self._abandoned.add(call)

        def _settled(fut: asyncio.Future) -> None:
            self._abandoned.discard(fut)
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                log.debug(f"Abandoned Redis MGET failed late: {exc}")

        call.add_done_callback(_settled)

    async def set(self, key: str, entry: SignedUrlEntry, ttl: Optional[int] = None) -> None:
        if self._client is None:
            return
        if ttl is None:
            ttl = entry.ttl_seconds(self._clock(), self.safety_buffer)
        if ttl <= 0:
            return
        try:
            await self._client.set(self._redis_key(key), entry.to_json(), ex=ttl)
        except Exception as e:
            log.warning(f"Redis SET failed for {key}: {e}", extra={"tier": "distributed"})

    async def pipeline_set(self, entries: Iterable[tuple[str, SignedUrlEntry]]) -> None:
        """Bulk write in one round trip. Not atomic across entries."""
        if self._client is None:
            return
        now = self._clock()
        batch = [(key, entry, entry.ttl_seconds(now, self.safety_buffer)) for key, entry in entries]
        batch = [item for item in batch if item[2] > 0]
        if not batch:
            return
        try:
            async with self._client.pipeline(transaction=False) as pipe:
                for key, entry, ttl in batch:
                    pipe.set(self._redis_key(key), entry.to_json(), ex=ttl)
                await pipe.execute()
        except Exception as e:
            log.warning(f"Redis pipeline write failed: {e}", extra={"tier": "distributed", "count": len(batch)})

    @property
    def abandoned_reads(self) -> int:
        return len(self._abandoned)

    async def aclose(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
        except Exception as e:
            log.warning(f"Redis close failed: {e}")
