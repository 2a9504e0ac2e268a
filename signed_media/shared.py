"""Constants shared by the resolver, the cache tiers and the HTTP app.

Single source of truth for URL lifetimes, cache key prefixes and locator
schemes so they can be changed in one place.
"""

# Lifetime requested from the signer for cacheable URLs (seconds).
SIGNED_URL_TTL = 3600

# A cached URL is served only while it has more than this left (seconds).
SAFETY_BUFFER = 300

# Lifetime for attachment URLs. These are never cached.
ATTACHMENT_URL_TTL = 3600
DEFAULT_ATTACHMENT_FILENAME = "download.png"

# Deadline for the distributed tier's batch read (seconds).
MGET_DEADLINE = 2.0

# Redis key prefix: signed_url:{cache_key}
REDIS_KEY_PREFIX = "signed_url:"

# Canonical locators look like {scheme}://{container}/{key}
CANONICAL_SCHEMES = ("r2", "store")

# Legacy B2 download URLs: https://host/file/{bucket}/{key}
LEGACY_PATH_SEGMENT = "file"

LOCAL_CACHE_MAXSIZE = 10_000
MAX_BACKGROUND_WRITES = 64
SIGNER_WORKERS = 16
