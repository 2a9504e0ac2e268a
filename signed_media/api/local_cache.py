# Process-local signed URL cache (fastest tier, no network hop).

import threading
import time
from typing import Callable

from cachetools import TTLCache

from signed_media.api.entry import SignedUrlEntry
from signed_media.shared import LOCAL_CACHE_MAXSIZE, SAFETY_BUFFER, SIGNED_URL_TTL


class LocalUrlCache:
    """cache_key -> SignedUrlEntry, bounded by entry count and URL lifetime.

    Entries are only ever stored as received from the distributed tier or the
    signer, so the expiry reported here is never later than theirs. ``get``
    treats an entry inside the safety buffer as absent even if it has not
    been evicted yet.

    Created once per process and injected into the resolver.
    """

    def __init__(
        self,
        maxsize: int = LOCAL_CACHE_MAXSIZE,
        ttl: float = SIGNED_URL_TTL,
        safety_buffer: float = SAFETY_BUFFER,
        clock: Callable[[], float] = time.time,
    ):
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=clock)
        self._lock = threading.Lock()
        self._clock = clock
        self.safety_buffer = safety_buffer

    def get(self, key: str) -> SignedUrlEntry | None:
        with self._lock:
            entry = self._cache.get(key)
        if entry is None or not entry.is_fresh(self._clock(), self.safety_buffer):
            return None
        return entry

    def put(self, key: str, entry: SignedUrlEntry) -> None:
        with self._lock:
            self._cache[key] = entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
