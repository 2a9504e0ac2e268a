"""Object locator parsing.

A stored reference is one of:

* ``Canonical`` -- ``r2://{container}/{key}`` (or another configured scheme)
* ``Legacy``    -- a historical download URL, ``https://host/file/{bucket}/{key}``
* ``Opaque``    -- anything else; returned to callers unchanged

Parsing never fails and has no side effects.
"""

from dataclasses import dataclass
from typing import Iterable, Union
from urllib.parse import unquote, urlsplit

from signed_media.shared import CANONICAL_SCHEMES, LEGACY_PATH_SEGMENT


@dataclass(frozen=True)
class Canonical:
    container: str
    key: str


@dataclass(frozen=True)
class Legacy:
    key: str


@dataclass(frozen=True)
class Opaque:
    original: str


Locator = Union[Canonical, Legacy, Opaque]


def _parse_canonical(ref: str, schemes: Iterable[str]) -> Canonical | None:
    scheme, sep, rest = ref.partition("://")
    if not sep or scheme not in schemes:
        return None
    container, _, key = rest.partition("/")
    if not container or not key:
        return None
    return Canonical(container=container, key=key)


def _parse_legacy(ref: str) -> Legacy | None:
    try:
        parts = urlsplit(ref)
    except ValueError:
        return None
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    segments = parts.path.split("/")
    for i, segment in enumerate(segments):
        if segment != LEGACY_PATH_SEGMENT:
            continue
        # file/{bucket}/{key...}
        if i + 2 < len(segments) and segments[i + 1]:
            key = unquote("/".join(segments[i + 2 :]))
            if key:
                return Legacy(key=key)
        return None
    return None


def parse_locator(ref: str | None, schemes: Iterable[str] = CANONICAL_SCHEMES) -> Locator:
    """Classify *ref*. Canonical is tried first, then legacy, else opaque."""
    if not ref:
        return Opaque(original=ref or "")
    schemes = tuple(schemes)
    locator = _parse_canonical(ref, schemes)
    if locator is not None:
        return locator
    legacy = _parse_legacy(ref)
    if legacy is not None:
        return legacy
    return Opaque(original=ref)


def signing_target(locator: Locator, default_bucket: str) -> tuple[str, str]:
    """(bucket, key) a cacheable locator is signed against.

    Canonical locators sign in their own container, legacy ones in
    *default_bucket* (objects were migrated under their old key).
    """
    if isinstance(locator, Canonical):
        return locator.container, locator.key
    if isinstance(locator, Legacy):
        return default_bucket, locator.key
    raise TypeError(f"Cannot sign opaque reference {locator!r}")


def cache_key_for(bucket: str, key: str) -> str:
    """Cache key shared by every locator form that signs the same object."""
    return f"{bucket}/{key}"
