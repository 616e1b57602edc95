from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from meteor.core.logger import logger
from meteor.core.models import MediaType

router = APIRouter()


@router.post(
    "/api/browser/cleanup",
    tags=["Admin"],
    summary="Browser Cleanup",
    description="Closes zombie pages and resyncs the browser pool counters.",
)
async def browser_cleanup(request: Request):
    pool = request.app.state.pool
    cleaned = await pool.reconcile()
    return {"success": True, "cleaned": cleaned, "stats": pool.stats()}


@router.get(
    "/api/cache/stats",
    tags=["Admin"],
    summary="Cache Statistics",
)
async def cache_stats(request: Request):
    return await request.app.state.cache.stats()


@router.delete(
    "/api/cache/{media_type}/{media_id}",
    tags=["Admin"],
    summary="Cache Invalidation",
    description="Removes the cached outcome of every provider for a media item.",
)
async def invalidate_cache(
    request: Request,
    media_type: str,
    media_id: str,
    season: Optional[int] = None,
    episode: Optional[int] = None,
):
    try:
        media_type = MediaType("series" if media_type.lower() == "tv" else media_type)
    except ValueError:
        return JSONResponse(
            {"error": "Invalid type. Use 'movie', 'series' or 'tv'"}, status_code=400
        )

    invalidated = await request.app.state.cache.invalidate(
        media_type, media_id, season, episode
    )
    logger.log("CACHE", f"🗑️ {invalidated} entries invalidated for {media_type.value} {media_id}")
    return {"success": True, "invalidated": invalidated}
