"""Signed URL resolution over the local tier, the distributed tier and the signer.

Lookup order for a cacheable locator is Local -> Distributed -> Origin signer.
A distributed hit is copied into Local with the expiry it was stored with; a
fresh signature is written to Local before returning and to Distributed in
the background when it is configured. Cache keys are the signed object's
``bucket/key``, so a legacy URL and a canonical locator for the same object
share one entry. Opaque references are returned unchanged without any lookup.

Concurrent resolutions of the same cold key may each call the signer. That
duplicate work is harmless (any of the URLs is valid) and is not coalesced.
"""

import asyncio
import logging
import posixpath
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from redis import asyncio as aioredis

from signed_media.api.background import BackgroundWriter
from signed_media.api.config import Settings
from signed_media.api.distributed_cache import DistributedUrlCache
from signed_media.api.entry import SignedUrlEntry
from signed_media.api.local_cache import LocalUrlCache
from signed_media.api.locator import Locator, Opaque, cache_key_for, parse_locator, signing_target
from signed_media.api.signer import OriginSigner, content_disposition_for, make_s3_client
from signed_media.shared import (
    ATTACHMENT_URL_TTL,
    CANONICAL_SCHEMES,
    DEFAULT_ATTACHMENT_FILENAME,
    SAFETY_BUFFER,
    SIGNED_URL_TTL,
)

log = logging.getLogger(__name__)

# Fully cached batches are only logged when they are unexpectedly slow.
_SLOW_CACHED_BATCH_SEC = 0.05


@dataclass
class ResolverStats:
    local_hits: int = 0
    distributed_hits: int = 0
    signer_calls: int = 0
    attachment_signs: int = 0
    batch_fallbacks: int = 0


@dataclass(frozen=True)
class ResolvedUrl:
    """Per-reference outcome of ``resolve_batch_settled``."""

    reference: str
    url: Optional[str]
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class _BatchOutcome:
    def __init__(self, references: list[str]):
        self.urls: list = list(references)
        self.errors: dict[int, BaseException] = {}


class SignedUrlResolver:
    def __init__(
        self,
        signer: OriginSigner,
        local: LocalUrlCache,
        distributed: DistributedUrlCache,
        background: BackgroundWriter,
        url_ttl: int = SIGNED_URL_TTL,
        safety_buffer: float = SAFETY_BUFFER,
        attachment_ttl: int = ATTACHMENT_URL_TTL,
        schemes: Iterable[str] = CANONICAL_SCHEMES,
        clock: Callable[[], float] = time.time,
    ):
        self.signer = signer
        self.local = local
        self.distributed = distributed
        self.background = background
        self.url_ttl = url_ttl
        self.safety_buffer = safety_buffer
        self.attachment_ttl = attachment_ttl
        self.schemes = tuple(schemes)
        self._clock = clock
        self.stats = ResolverStats()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def parse(self, reference: str) -> Locator:
        return parse_locator(reference, self.schemes)

    def _fresh(self, entry: Optional[SignedUrlEntry]) -> bool:
        return entry is not None and entry.is_fresh(self._clock(), self.safety_buffer)

    def _target(self, locator: Locator) -> tuple[str, str]:
        return signing_target(locator, self.signer.default_bucket)

    async def _sign(self, target: tuple[str, str], ttl: int, content_disposition: Optional[str] = None) -> SignedUrlEntry:
        bucket, key = target
        return await self.signer.sign(key, ttl, content_disposition=content_disposition, bucket=bucket)

    # ------------------------------------------------------------------
    # Single reference
    # ------------------------------------------------------------------

    async def resolve(self, reference: str) -> str:
        """Return a signed URL for *reference*, or *reference* itself if opaque.

        Signing failures propagate.
        """
        locator = self.parse(reference)
        if isinstance(locator, Opaque):
            return reference
        target = self._target(locator)
        key = cache_key_for(*target)

        entry = self.local.get(key)
        if entry is not None:
            self.stats.local_hits += 1
            return entry.url

        entry = await self.distributed.get(key)
        if self._fresh(entry):
            self.stats.distributed_hits += 1
            self.local.put(key, entry)
            return entry.url

        self.stats.signer_calls += 1
        entry = await self._sign(target, self.url_ttl)
        self.local.put(key, entry)
        if self.distributed.enabled:
            self.background.submit(self.distributed.set(key, entry), f"set {key}")
        return entry.url

    async def resolve_attachment(self, reference: str, filename: Optional[str] = None) -> str:
        """Signed download URL with a content-disposition filename.

        Always signs: the URL carries a caller-specific filename, so it is
        neither read from nor written to any cache tier.
        """
        locator = self.parse(reference)
        if isinstance(locator, Opaque):
            return reference
        if not filename:
            filename = posixpath.basename(locator.key) or DEFAULT_ATTACHMENT_FILENAME
        self.stats.attachment_signs += 1
        entry = await self._sign(self._target(locator), self.attachment_ttl, content_disposition_for(filename))
        return entry.url

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def resolve_batch(self, references: list[str]) -> list[str]:
        """Resolve many references at once; output is index-aligned with input.

        One distributed read covers every local miss, and the remaining keys
        are signed in parallel. If the batch path fails, every reference is
        resolved again one at a time; a signing failure there fails the
        whole call.
        """
        if not references:
            return []
        try:
            outcome = await self._resolve_batch(references, settle=False)
            return outcome.urls
        except Exception:
            self.stats.batch_fallbacks += 1
            log.exception(f"Batch signed URL resolution failed; resolving {len(references)} references sequentially")
        urls = []
        for reference in references:
            urls.append(await self.resolve(reference))
        return urls

    async def resolve_batch_settled(self, references: list[str]) -> list[ResolvedUrl]:
        """Like ``resolve_batch`` but a failing key only fails its own slot."""
        if not references:
            return []
        outcome = await self._resolve_batch(references, settle=True)
        return [
            ResolvedUrl(reference=ref, url=None if i in outcome.errors else outcome.urls[i], error=outcome.errors.get(i))
            for i, ref in enumerate(references)
        ]

    async def _resolve_batch(self, references: list[str], settle: bool) -> _BatchOutcome:
        start = time.monotonic()
        outcome = _BatchOutcome(references)

        # 1. Parse; group indices by cache key so duplicates cost one lookup.
        positions: dict[str, list[int]] = {}
        targets: dict[str, tuple[str, str]] = {}
        for i, reference in enumerate(references):
            locator = self.parse(reference)
            if isinstance(locator, Opaque):
                continue
            target = self._target(locator)
            key = cache_key_for(*target)
            positions.setdefault(key, []).append(i)
            targets.setdefault(key, target)

        def fill(key: str, url: str) -> None:
            for i in positions[key]:
                outcome.urls[i] = url

        # 2. Local tier.
        needs_lookup = []
        for key in positions:
            entry = self.local.get(key)
            if entry is not None:
                self.stats.local_hits += 1
                fill(key, entry.url)
            else:
                needs_lookup.append(key)
        if not needs_lookup:
            duration = time.monotonic() - start
            if duration > _SLOW_CACHED_BATCH_SEC:
                log.info(
                    f"Signed URLs (batch cache hit): {duration * 1000:.0f}ms count={len(references)}",
                    extra={"duration": duration, "count": len(references)},
                )
            return outcome

        # 3. One distributed read for every local miss.
        redis_start = time.monotonic()
        cached = await self.distributed.mget(needs_lookup)
        redis_duration = time.monotonic() - redis_start
        still_missing = []
        for key, entry in zip(needs_lookup, cached):
            if self._fresh(entry):
                self.stats.distributed_hits += 1
                self.local.put(key, entry)
                fill(key, entry.url)
            else:
                still_missing.append(key)

        # 4. Sign what is left, all in parallel.
        sign_start = time.monotonic()
        signed: list[tuple[str, SignedUrlEntry]] = []
        if still_missing:
            self.stats.signer_calls += len(still_missing)
            results = await asyncio.gather(
                *(self._sign(targets[key], self.url_ttl) for key in still_missing),
                return_exceptions=settle,
            )
            for key, result in zip(still_missing, results):
                if isinstance(result, BaseException):
                    for i in positions[key]:
                        outcome.errors[i] = result
                    continue
                # 5. Local write happens before returning.
                self.local.put(key, result)
                fill(key, result.url)
                signed.append((key, result))
        sign_duration = time.monotonic() - sign_start

        if signed and self.distributed.enabled:
            self.background.submit(self.distributed.pipeline_set(signed), f"pipeline set {len(signed)} keys")

        duration = time.monotonic() - start
        log.info(
            f"Signed URLs (Total: {duration * 1000:.0f}ms) | Redis: {redis_duration * 1000:.0f}ms"
            f" | Signing: {sign_duration * 1000:.0f}ms ({len(still_missing)} parallel) | Count: {len(references)}",
            extra={"duration": duration, "count": len(references)},
        )
        return outcome

    # ------------------------------------------------------------------
    # Introspection / lifecycle
    # ------------------------------------------------------------------

    def snapshot(self) -> dict:
        return {
            "local_entries": len(self.local),
            "distributed_enabled": self.distributed.enabled,
            "abandoned_distributed_reads": self.distributed.abandoned_reads,
            "local_hits": self.stats.local_hits,
            "distributed_hits": self.stats.distributed_hits,
            "signer_calls": self.stats.signer_calls,
            "attachment_signs": self.stats.attachment_signs,
            "batch_fallbacks": self.stats.batch_fallbacks,
            "background_in_flight": self.background.in_flight,
            "background_dropped": self.background.dropped,
            "background_failed": self.background.failed,
        }

    async def aclose(self) -> None:
        await self.background.drain()
        await self.distributed.aclose()
        self.signer.close()


def build_resolver(
    settings: Settings,
    redis_client: Optional[aioredis.Redis] = None,
    s3_client=None,
) -> SignedUrlResolver:
    """Wire a resolver from settings. Clients are created when not supplied."""
    if redis_client is None and settings.redis_url:
        redis_client = aioredis.from_url(
            settings.redis_url,
            socket_timeout=5,
            socket_connect_timeout=5,
        )
    if s3_client is None:
        s3_client = make_s3_client(settings.endpoint_url, settings.region)

    signer = OriginSigner(s3_client, settings.bucket, max_workers=settings.signer_workers)
    local = LocalUrlCache(
        maxsize=settings.local_maxsize,
        ttl=settings.url_ttl,
        safety_buffer=settings.safety_buffer,
    )
    distributed = DistributedUrlCache(
        redis_client,
        mget_deadline=settings.mget_deadline,
        safety_buffer=settings.safety_buffer,
    )
    return SignedUrlResolver(
        signer=signer,
        local=local,
        distributed=distributed,
        background=BackgroundWriter(settings.max_background_writes),
        url_ttl=settings.url_ttl,
        safety_buffer=settings.safety_buffer,
        schemes=settings.schemes,
    )
