"""Origin signer: presigned GET URLs from S3-compatible storage (S3, R2).

Thin adapter over boto3's ``generate_presigned_url``. Nothing here is cached;
failures propagate to the caller unchanged. Signing runs on a bounded thread
pool off the event loop.
"""

import asyncio
import functools
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

import boto3
from botocore.client import Config

from signed_media.api.entry import SignedUrlEntry
from signed_media.shared import SIGNER_WORKERS

log = logging.getLogger(__name__)


def make_s3_client(endpoint_url: Optional[str] = None, region_name: str = "us-east-1"):
    """boto3 S3 client for signing. Path-style addressing works for S3 and R2 alike."""
    return boto3.client(
        "s3",
        region_name=region_name,
        endpoint_url=endpoint_url,
        config=Config(
            signature_version="s3v4",
            s3={"addressing_style": "path"},
        ),
    )


def content_disposition_for(filename: str) -> str:
    """``attachment; filename="..."`` with quotes and line breaks stripped."""
    safe = "".join(ch for ch in filename if ch not in '"\r\n\\')
    return f'attachment; filename="{safe}"'


class OriginSigner:
    """Signs (bucket, key) pairs. ``bucket`` defaults to *default_bucket*."""

    def __init__(
        self,
        s3_client,
        default_bucket: str,
        max_workers: int = SIGNER_WORKERS,
        clock: Callable[[], float] = time.time,
    ):
        self._s3 = s3_client
        self.default_bucket = default_bucket
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="signer_")
        self._clock = clock

    def check(self) -> None:
        """Fail fast if there is no bucket to sign legacy locators against."""
        if not self.default_bucket:
            raise RuntimeError("SIGNED_MEDIA_BUCKET is not set")
        log.info(f"Origin signer configured bucket={self.default_bucket} endpoint={self._s3.meta.endpoint_url}")

    def sign_sync(
        self,
        key: str,
        ttl: int,
        content_disposition: Optional[str] = None,
        bucket: Optional[str] = None,
    ) -> SignedUrlEntry:
        params = {"Bucket": bucket or self.default_bucket, "Key": key}
        if content_disposition:
            params["ResponseContentDisposition"] = content_disposition
        # Taken before signing so the recorded expiry is never later than the real one.
        expires_at = self._clock() + ttl
        url = self._s3.generate_presigned_url(
            ClientMethod="get_object",
            Params=params,
            ExpiresIn=ttl,
        )
        return SignedUrlEntry(url=url, expires_at=expires_at)

    async def sign(
        self,
        key: str,
        ttl: int,
        content_disposition: Optional[str] = None,
        bucket: Optional[str] = None,
    ) -> SignedUrlEntry:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                self._executor,
                functools.partial(self.sign_sync, key, ttl, content_disposition, bucket),
            )
        except Exception as e:
            log.error(f"Signing failed for {key}: {e}", extra={"cache_key": key})
            raise

    def close(self) -> None:
        self._executor.shutdown(wait=False)
