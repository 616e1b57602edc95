from typing import Optional

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from meteor.core.logger import logger
from meteor.core.models import ExtractionRequest

streams = APIRouter()


async def extract(request: Request, media_type, media_id, season, episode):
    try:
        extraction_request = ExtractionRequest(
            media_type=media_type or "",
            media_id="" if media_id is None else str(media_id),
            season=season,
            episode=episode,
        )
    except ValidationError as e:
        return JSONResponse({"error": e.errors()[0]["msg"]}, status_code=400)

    try:
        return await request.app.state.orchestrator.extract(extraction_request)
    except Exception as e:
        logger.exception(f"Extraction failed for {extraction_request.identifier}: {e}")
        return JSONResponse(
            {"error": "Internal server error", "message": str(e)}, status_code=500
        )


@streams.get(
    "/api/streams/extract/{media_type}/{media_id}",
    tags=["Streams"],
    summary="Extract Streams",
    description="Resolves the best stream per variant for a movie or an episode.",
)
async def extract_get(
    request: Request,
    media_type: str,
    media_id: str,
    season: Optional[int] = None,
    episode: Optional[int] = None,
):
    return await extract(request, media_type, media_id, season, episode)


@streams.post(
    "/api/streams/extract",
    tags=["Streams"],
    summary="Extract Streams",
)
async def extract_post(request: Request, body: dict = Body(...)):
    return await extract(
        request,
        body.get("type"),
        body.get("tmdbId"),
        body.get("season"),
        body.get("episode"),
    )
