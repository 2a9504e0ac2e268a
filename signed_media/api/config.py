"""Environment-driven settings for the signed URL service.

Read once at startup. Invalid values raise RuntimeError naming the variable.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from signed_media import shared


@dataclass(frozen=True)
class Settings:
    bucket: str
    endpoint_url: Optional[str]
    region: str
    url_ttl: int
    safety_buffer: int
    mget_deadline: float
    local_maxsize: int
    max_background_writes: int
    signer_workers: int
    schemes: tuple[str, ...]
    redis_url: Optional[str]
    log_level: str


def _int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"Invalid {name}={raw!r}. Must be an integer.") from None
    if value < minimum:
        raise RuntimeError(f"Invalid {name}={value}. Must be >= {minimum}.")
    return value


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"Invalid {name}={raw!r}. Must be a number.") from None
    if value <= 0:
        raise RuntimeError(f"Invalid {name}={value}. Must be > 0.")
    return value


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env

    url_ttl = _int(env, "SIGNED_MEDIA_URL_TTL", shared.SIGNED_URL_TTL, minimum=1)
    safety_buffer = _int(env, "SIGNED_MEDIA_SAFETY_BUFFER", shared.SAFETY_BUFFER)
    if safety_buffer >= url_ttl:
        raise RuntimeError(
            f"Invalid SIGNED_MEDIA_SAFETY_BUFFER={safety_buffer}. Must be less than SIGNED_MEDIA_URL_TTL={url_ttl}."
        )

    raw_schemes = env.get("SIGNED_MEDIA_SCHEMES", "").strip()
    schemes = tuple(s.strip() for s in raw_schemes.split(",") if s.strip()) if raw_schemes else shared.CANONICAL_SCHEMES

    log_level = env.get("SIGNED_MEDIA_LOG_LEVEL", "INFO").strip().upper() or "INFO"
    if log_level not in _VALID_LOG_LEVELS:
        raise RuntimeError(f"Invalid SIGNED_MEDIA_LOG_LEVEL={log_level!r}. Must be one of {sorted(_VALID_LOG_LEVELS)}.")

    return Settings(
        bucket=env.get("SIGNED_MEDIA_BUCKET", "").strip(),
        endpoint_url=env.get("SIGNED_MEDIA_ENDPOINT_URL", "").strip() or None,
        region=env.get("SIGNED_MEDIA_REGION", "").strip() or "us-east-1",
        url_ttl=url_ttl,
        safety_buffer=safety_buffer,
        mget_deadline=_float(env, "SIGNED_MEDIA_MGET_DEADLINE", shared.MGET_DEADLINE),
        local_maxsize=_int(env, "SIGNED_MEDIA_LOCAL_MAXSIZE", shared.LOCAL_CACHE_MAXSIZE, minimum=1),
        max_background_writes=_int(env, "SIGNED_MEDIA_MAX_BACKGROUND_WRITES", shared.MAX_BACKGROUND_WRITES, minimum=1),
        signer_workers=_int(env, "SIGNED_MEDIA_SIGNER_WORKERS", shared.SIGNER_WORKERS, minimum=1),
        schemes=schemes,
        redis_url=env.get("REDIS_URL", "").strip() or None,
        log_level=log_level,
    )
