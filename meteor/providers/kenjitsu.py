import re
import time
from typing import Optional

import aiohttp

from meteor.core.exceptions import NoStreamFound
from meteor.core.logger import logger
from meteor.core.models import (
    ExtractionRequest,
    ProviderResult,
    SubtitleTrack,
    Variant,
    elapsed_ms_since,
)
from meteor.providers.base import (
    LANGUAGE_NAMES,
    BaseProvider,
    CatalogDescriptor,
    language_code_for,
)
from meteor.utils.http_client import fetch_json

VERSION_VARIANTS = {"sub": Variant.ORIGINAL, "dub": Variant.DUB}

LEADING_YEAR_PATTERN = re.compile(r"^\s*([+-]?\d+)")


def release_year(release_date):
    if isinstance(release_date, int):
        return release_date
    if not isinstance(release_date, str):
        return None

    match = LEADING_YEAR_PATTERN.match(release_date)
    return int(match.group(1)) if match else None


def pick_catalog_match(results: list, season_year: Optional[int] = None):
    """
    Choose a search result for the requested season.

    With a known air year and more than one result, the first result whose
    release year matches wins. Anything else falls back to the first result,
    even when it may be an unrelated title.
    """
    if not results:
        return None

    if season_year and len(results) > 1:
        for result in results:
            if release_year(result.get("releaseDate")) == season_year:
                return result

        logger.log(
            "ANIME",
            f"No exact year match found for {season_year}, using first result",
        )

    return results[0]


def find_episode(episodes: list, number: int):
    for episode in episodes:
        if episode.get("number") == number or episode.get("episodeNumber") == number:
            return episode

    if 1 <= number <= len(episodes):
        return episodes[number - 1]

    return None


def parse_subtitles(raw_subtitles: list):
    subtitles = []
    for subtitle in raw_subtitles or []:
        if not isinstance(subtitle, dict):
            continue

        url = subtitle.get("url") or subtitle.get("file")
        if not url:
            continue

        label = subtitle.get("lang") or subtitle.get("label") or "Unknown"
        code = language_code_for(label)
        subtitles.append(
            SubtitleTrack(
                url=url,
                language=code,
                label=LANGUAGE_NAMES.get(code, label),
            )
        )

    return subtitles


class CatalogProvider(BaseProvider):
    """One anime catalog behind the Kenjitsu API, searched by title."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        descriptor: CatalogDescriptor,
        base_url: str,
        timeout: float = 10,
        sources_timeout: float = 15,
    ):
        super().__init__(session)
        self.descriptor = descriptor
        self.kind = descriptor.kind
        self.variant = Variant.ORIGINAL
        self.base_url = base_url
        self.timeout = timeout
        self.sources_timeout = sources_timeout

    async def search(self, title: str):
        data = await fetch_json(
            self.session,
            "GET",
            self.base_url + self.descriptor.search_path,
            self.timeout,
            params={"q": title, "page": 1},
        )
        results = data.get("data") if isinstance(data, dict) else None
        return results if isinstance(results, list) else []

    async def episodes(self, anime_id: str):
        data = await fetch_json(
            self.session,
            "GET",
            self.descriptor.episodes_url(self.base_url, anime_id),
            self.timeout,
        )
        payload = data.get("data") if isinstance(data, dict) else None
        if isinstance(payload, dict):
            payload = payload.get("episodes")
        return payload if isinstance(payload, list) else []

    async def sources(self, episode_id: str, version: str):
        data = await fetch_json(
            self.session,
            "GET",
            self.descriptor.sources_url(self.base_url, episode_id),
            self.sources_timeout,
            params={**self.descriptor.sources_params, "version": version},
        )
        payload = data.get("data") if isinstance(data, dict) else None
        if not isinstance(payload, dict):
            return [], []
        return payload.get("sources") or [], payload.get("subtitles") or []

    async def fetch(
        self,
        request: ExtractionRequest,
        search_title: Optional[str] = None,
        season_year: Optional[int] = None,
        version: str = "sub",
    ):
        start = time.monotonic()
        prefix = f"[{self.descriptor.display_name}:{version}]"

        if not search_title:
            raise NoStreamFound("No title to search")

        logger.debug(f"{prefix} Searching: {search_title}")
        match = pick_catalog_match(await self.search(search_title), season_year)
        if match is None:
            raise NoStreamFound("No results found")

        episodes = await self.episodes(match["id"])
        if not episodes:
            raise NoStreamFound("No episodes found")

        episode = find_episode(episodes, request.episode)
        if episode is None:
            raise NoStreamFound(f"Episode {request.episode} not found")

        sources, subtitles = await self.sources(
            episode.get("episodeId") or episode.get("id"), version
        )
        sources = [source for source in sources if isinstance(source, dict) and source.get("url")]
        if not sources:
            raise NoStreamFound("No sources found")

        elapsed = elapsed_ms_since(start)
        logger.log(
            "ANIME",
            f"{prefix} ✅ {len(sources)} sources, {len(subtitles)} subs ({elapsed}ms)",
        )
        return ProviderResult.ok(
            self.name,
            VERSION_VARIANTS[version],
            sources[0]["url"],
            subtitles=parse_subtitles(subtitles),
            elapsed_ms=elapsed,
            quality=", ".join(str(source.get("quality", "auto")) for source in sources),
        )
