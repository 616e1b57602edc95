import time

import aiohttp

from meteor.core.exceptions import NoStreamFound
from meteor.core.models import (
    ExtractionRequest,
    ProviderResult,
    Variant,
    elapsed_ms_since,
)
from meteor.providers.base import BaseProvider, ProviderKind
from meteor.utils.http_client import fetch_json


class CuevanaProvider(BaseProvider):
    """Latin-American Spanish track from the Cuevana fast API."""

    kind = ProviderKind.CUEVANA
    variant = Variant.LATINO

    def __init__(self, session: aiohttp.ClientSession, api_url: str, timeout: float = 20):
        super().__init__(session)
        self.api_url = api_url
        self.timeout = timeout

    def endpoint(self, request: ExtractionRequest):
        if request.is_series:
            return f"{self.api_url}/fast/tv/{request.media_id}/{request.season}/{request.episode}"
        return f"{self.api_url}/fast/movie/{request.media_id}"

    async def fetch(self, request: ExtractionRequest):
        start = time.monotonic()

        data = await fetch_json(
            self.session,
            "GET",
            self.endpoint(request),
            self.timeout,
            headers={"User-Agent": "streaming-api/1.0"},
        )

        video = data.get("video") if isinstance(data, dict) else None
        if not isinstance(video, dict) or not video.get("url"):
            raise NoStreamFound("No video URL in response")

        if video.get("status") != "success":
            raise NoStreamFound(f"Video status: {video.get('status')}")

        return ProviderResult.ok(
            self.name,
            self.variant,
            video["url"],
            elapsed_ms=elapsed_ms_since(start),
            player=video.get("player", "unknown"),
            sourceUrl=video.get("source_url"),
        )
