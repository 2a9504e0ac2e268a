# Signed URL entry: the value every cache tier stores and the signer returns.

import json
from dataclasses import dataclass


@dataclass(frozen=True)
class SignedUrlEntry:
    """A signed URL and the epoch time (seconds) at which it stops working."""

    url: str
    expires_at: float

    def is_fresh(self, now: float, safety_buffer: float) -> bool:
        """True while the URL has more than *safety_buffer* seconds left."""
        return now + safety_buffer < self.expires_at

    def ttl_seconds(self, now: float, safety_buffer: float) -> int:
        """Whole seconds this entry may stay in a shared cache (0 if none)."""
        return max(0, int(self.expires_at - now - safety_buffer))

    def to_json(self) -> str:
        # expiresAt is epoch milliseconds on the wire.
        return json.dumps({"url": self.url, "expiresAt": int(self.expires_at * 1000)})

    @classmethod
    def from_json(cls, raw) -> "SignedUrlEntry | None":
        """Decode a cached value. Anything malformed decodes as None."""
        if raw is None:
            return None
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            data = json.loads(raw)
        except (TypeError, ValueError):
            return None
        if not isinstance(data, dict):
            return None
        url = data.get("url")
        expires_ms = data.get("expiresAt")
        if not isinstance(url, str) or not url:
            return None
        if isinstance(expires_ms, bool) or not isinstance(expires_ms, (int, float)):
            return None
        return cls(url=url, expires_at=expires_ms / 1000.0)
