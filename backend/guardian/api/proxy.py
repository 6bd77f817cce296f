"""
Guardian Angel - Fetch Proxy
============================

Fetches an external http(s) resource on behalf of the browser and relays
it with permissive CORS headers.
"""

from urllib.parse import urlparse

import httpx
import structlog
from fastapi import APIRouter, HTTPException, Query, Response, status

from guardian.api.deps import CurrentUser
from guardian.core.config import settings

logger = structlog.get_logger()

router = APIRouter(prefix="/proxy", tags=["Proxy"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def upstream_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, follow_redirects=True)


@router.get(
    "",
    summary="Fetch an external resource",
    responses={
        400: {"description": "Missing or non-http(s) url"},
        502: {"description": "Upstream fetch failed"},
    },
)
async def fetch(
    current_user: CurrentUser,
    url: str | None = Query(None, description="Absolute http(s) URL to fetch"),
) -> Response:
    if not url:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="URL parameter is required",
        )
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only absolute http(s) URLs can be fetched",
        )

    try:
        async with upstream_client() as client:
            upstream = await client.get(url, headers={"User-Agent": settings.PROXY_USER_AGENT})
            upstream.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning("proxy_fetch_failed", url=url, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to fetch resource: {e}",
        ) from e

    return Response(
        content=upstream.content,
        media_type=upstream.headers.get("content-type", "application/octet-stream"),
        headers={**CORS_HEADERS, "Cache-Control": "public, max-age=3600"},
    )
