from typing import Optional

import aiohttp

from meteor.core.exceptions import ClassificationUnavailable, UpstreamUnreachable
from meteor.core.logger import logger
from meteor.core.models import AnimeClassification
from meteor.utils.http_client import fetch_json

ANIMATION_GENRE_ID = 16
JAPAN = "JP"


def is_animation(data: dict):
    return any(
        genre.get("id") == ANIMATION_GENRE_ID or genre.get("name") == "Animation"
        for genre in data.get("genres") or []
    )


def is_japanese(data: dict):
    countries = list(data.get("origin_country") or [])
    countries += [
        country.get("iso_3166_1")
        for country in data.get("production_countries") or []
        if isinstance(country, dict)
    ]
    return JAPAN in countries


class TMDBApi:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        token: Optional[str] = None,
        timeout: float = 5,
    ):
        self.session = session
        self.token = token
        self.timeout = timeout
        self.base_url = "https://api.themoviedb.org/3"
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    async def _get(self, path: str):
        return await fetch_json(
            self.session,
            "GET",
            f"{self.base_url}{path}",
            self.timeout,
            headers=self.headers,
        )

    async def get_season_air_year(self, tmdb_id: str, season: int):
        try:
            data = await self._get(f"/tv/{tmdb_id}/season/{season}")
        except UpstreamUnreachable as e:
            logger.warning(f"TMDB: Failed to fetch season {season} of {tmdb_id}: {e}")
            return None

        air_date = data.get("air_date") if isinstance(data, dict) else None
        if not air_date:
            return None

        try:
            return int(air_date.split("-")[0])
        except ValueError:
            return None

    async def classify(self, tmdb_id: str, season: Optional[int] = None):
        """Decide whether a series is Japanese animation and how to search for it."""
        if not self.token:
            logger.log("ANIME", "TMDB token not configured, skipping anime check")
            return AnimeClassification(is_anime=False)

        try:
            data = await self._get(f"/tv/{tmdb_id}")
        except UpstreamUnreachable as e:
            raise ClassificationUnavailable(f"TMDB lookup failed for {tmdb_id}: {e}")

        if not isinstance(data, dict):
            raise ClassificationUnavailable(f"TMDB returned no details for {tmdb_id}")

        title = data.get("name") or data.get("title")
        try:
            is_anime = is_animation(data) and is_japanese(data)
        except (AttributeError, TypeError, ValueError) as e:
            raise ClassificationUnavailable(
                f"TMDB returned malformed details for {tmdb_id}: {e}"
            )

        search_title = title
        season_air_year = None
        if is_anime and season and season > 1:
            season_air_year = await self.get_season_air_year(tmdb_id, season)
            search_title = f"{title} Season {season}"
            logger.log(
                "ANIME",
                f"Season {season} aired in {season_air_year}, search: {search_title}",
            )

        logger.log("ANIME", f"{tmdb_id} - {title}: isAnime={is_anime}")
        return AnimeClassification(
            is_anime=is_anime,
            canonical_title=title,
            search_title=search_title,
            season_air_year=season_air_year,
        )
