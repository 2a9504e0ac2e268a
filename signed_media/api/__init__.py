import logging

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse

_log = logging.getLogger(__name__)


def _resolver(request: Request):
    return request.app.state.resolver


def create_router() -> APIRouter:
    """Create the media URL router: single, batch and attachment resolution."""
    router = APIRouter(tags=["media"])

    @router.get("/ping")
    def ping():
        _log.info("api ping")
        return {"status": "ok"}

    @router.post("/media/url")
    async def media_url(request: Request, body: dict = Body(default=None)):
        data = body or {}
        reference = data.get("reference")
        if not isinstance(reference, str) or not reference:
            return JSONResponse({"error": "Missing reference"}, status_code=400)
        try:
            url = await _resolver(request).resolve(reference)
        except Exception:
            _log.exception("Signed URL resolution failed")
            return JSONResponse({"error": "Signing failed"}, status_code=502)
        return {"url": url}

    @router.post("/media/urls")
    async def media_urls(request: Request, body: dict = Body(default=None)):
        data = body or {}
        references = data.get("references")
        if not isinstance(references, list) or not all(isinstance(r, str) for r in references):
            return JSONResponse({"error": "references must be a list of strings"}, status_code=400)
        _log.info(f"media urls count={len(references)}")
        try:
            urls = await _resolver(request).resolve_batch(references)
        except Exception:
            _log.exception("Batch signed URL resolution failed")
            return JSONResponse({"error": "Signing failed"}, status_code=502)
        return {"urls": urls}

    @router.post("/media/attachment")
    async def media_attachment(request: Request, body: dict = Body(default=None)):
        data = body or {}
        reference = data.get("reference")
        filename = data.get("filename")
        if not isinstance(reference, str) or not reference:
            return JSONResponse({"error": "Missing reference"}, status_code=400)
        if filename is not None and not isinstance(filename, str):
            return JSONResponse({"error": "filename must be a string"}, status_code=400)
        try:
            url = await _resolver(request).resolve_attachment(reference, filename)
        except Exception:
            _log.exception("Attachment URL signing failed")
            return JSONResponse({"error": "Signing failed"}, status_code=502)
        return {"url": url}

    return router
