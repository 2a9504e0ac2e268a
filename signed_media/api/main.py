#!/usr/bin/env python3
"""
Signed media API: FastAPI app exposing signed URL resolution over HTTP.
Entrypoint for uvicorn is signed_media.api.main:app. Configuration comes from env (see config.py).
"""
import logging
import re
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware

from signed_media.api import create_router
from signed_media.api.config import load_settings
from signed_media.api.logging_config import setup_logging
from signed_media.api.resolver import SignedUrlResolver, build_resolver

log = logging.getLogger(__name__)


def _request_line_safe(path: str, query: str) -> str:
    """Path + query with signatures redacted for the access log."""
    if not query:
        return path
    safe = re.sub(r"(signature|token)=[^&\s]+", r"\1=REDACTED", query, flags=re.IGNORECASE)
    return f"{path}?{safe}"


class _AccessLogMiddleware(BaseHTTPMiddleware):
    """Log every /api request. No log for GET /api/ping when 200."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        path = request.url.path
        if not path.startswith("/api"):
            return response
        if path == "/api/ping" and response.status_code == 200:
            return response  # health-check noise
        client = request.client or ("?", "?")
        path_safe = _request_line_safe(path, request.url.query)
        log.info(
            f'{client[0]}:{client[1]} - "{request.method} {path_safe}" {response.status_code}',
            extra={"path": path, "method": request.method},
        )
        return response


def create_app(resolver: Optional[SignedUrlResolver] = None) -> FastAPI:
    """Build the app. Without *resolver*, one is wired from env at startup."""

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        owned = None
        if resolver is None:
            settings = load_settings()
            setup_logging(getattr(logging, settings.log_level))
            owned = build_resolver(settings)
            owned.signer.check()
            app.state.resolver = owned
        else:
            app.state.resolver = resolver
        log.info(
            "Signed media API loaded distributed_cache=%s",
            "on" if app.state.resolver.distributed.enabled else "off",
        )
        try:
            yield
        finally:
            if owned is not None:
                await owned.aclose()
            else:
                await resolver.background.drain()

    app = FastAPI(title="Signed Media", lifespan=_lifespan)
    app.add_middleware(_AccessLogMiddleware)
    app.include_router(create_router(), prefix="/api")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        stats = app.state.resolver.snapshot()
        warnings = []
        if stats["background_dropped"]:
            warnings.append(f"{stats['background_dropped']} background cache writes dropped at the in-flight cap")
        if stats["abandoned_distributed_reads"]:
            warnings.append(f"{stats['abandoned_distributed_reads']} distributed reads still pending past deadline")
        return {
            "status": "warning" if warnings else "ok",
            "cache": stats,
            "warnings": warnings,
        }

    return app


app = create_app()
