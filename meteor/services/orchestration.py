import asyncio
import time
from datetime import datetime, timezone
from typing import List, Optional

from meteor.core.exceptions import ClassificationUnavailable
from meteor.core.logger import log_provider_error, logger
from meteor.core.models import (
    UNAVAILABLE,
    AnimeClassification,
    ExtractionRequest,
    MergedSources,
    ProviderResult,
    Variant,
    elapsed_ms_since,
)
from meteor.metadata.tmdb import TMDBApi
from meteor.providers.base import ANIME_CATALOGS, BaseProvider
from meteor.providers.cuevana import CuevanaProvider
from meteor.providers.kenjitsu import CatalogProvider
from meteor.providers.vidify import VidifyProvider
from meteor.providers.vidlink import VidlinkProvider
from meteor.services.cache import ANIME_CACHE_PROVIDER, CacheStore, make_key


class StreamOrchestrator:
    """
    Resolve the best stream per variant for one media item.

    Series are first checked against the merged anime cache unit, then
    classified. Japanese animation goes through the anime catalogs, anything
    else (and every movie) through the general providers. Provider faults
    become failed results, cache faults propagate.
    """

    def __init__(
        self,
        cache: CacheStore,
        classifier,
        providers: List[BaseProvider],
        anime_catalogs: List[CatalogProvider],
        anime_latino: BaseProvider,
        verify_cached: bool = False,
    ):
        self.cache = cache
        self.classifier = classifier
        self.providers = providers
        self.anime_catalogs = anime_catalogs
        self.anime_latino = anime_latino
        self.verify_cached = verify_cached

    def _key(self, provider_name: str, request: ExtractionRequest):
        return make_key(
            provider_name,
            request.media_type,
            request.media_id,
            request.season,
            request.episode,
        )

    async def _attempt(
        self,
        provider: BaseProvider,
        request: ExtractionRequest,
        variant: Optional[Variant] = None,
        **kwargs,
    ):
        start = time.monotonic()
        try:
            return await provider.fetch(request, **kwargs), None
        except Exception as e:
            log_provider_error(provider.name, request.identifier, e)
            result = ProviderResult.failed(
                provider.name,
                variant or provider.variant,
                str(e) or type(e).__name__,
                elapsed_ms=elapsed_ms_since(start),
            )
            return result, e

    async def _cached_call(self, provider: BaseProvider, request: ExtractionRequest):
        start = time.monotonic()
        key = self._key(provider.name, request)

        entry = await self.cache.get(key)
        if entry is not None:
            if entry.is_negative:
                logger.log(
                    "PROVIDER",
                    f"⚠️ {provider.name} not available for {request.identifier} (cached negative)",
                )
                return ProviderResult.failed(
                    provider.name,
                    provider.variant,
                    f"Content not available on {provider.name} (cached)",
                    elapsed_ms=elapsed_ms_since(start),
                    cached=True,
                )

            result = ProviderResult.model_validate(entry.payload).model_copy(
                update={"cached": True, "elapsed_ms": elapsed_ms_since(start)}
            )
            if not self.verify_cached or await provider.verify(result):
                return result

            logger.log("CACHE", f"🔄 Re-extracting {key}")

        result, error = await self._attempt(provider, request)
        if result.success:
            await self.cache.set(
                key,
                result.model_dump(mode="json", exclude={"cached"}),
                provider=provider.name,
            )
        elif getattr(error, "cacheable", False):
            await self.cache.set(key, UNAVAILABLE, provider=provider.name)

        return result

    async def classify(self, request: ExtractionRequest):
        try:
            return await self.classifier.classify(request.media_id, request.season)
        except ClassificationUnavailable as e:
            logger.log("ANIME", f"⚠️ {e}, treating as not anime")
            return AnimeClassification(is_anime=False)

    async def extract_general(self, request: ExtractionRequest):
        results = await asyncio.gather(
            *(self._cached_call(provider, request) for provider in self.providers)
        )

        merged = MergedSources()
        for result in results:
            merged.place(result)
        return merged

    async def extract_anime(
        self, request: ExtractionRequest, classification: AnimeClassification
    ):
        """All catalogs for sub and dub plus the latino track, first success per variant."""
        attempts = [
            self._attempt(
                catalog,
                request,
                variant=Variant.ORIGINAL if version == "sub" else Variant.DUB,
                search_title=classification.search_title,
                season_year=classification.season_air_year,
                version=version,
            )
            for version in ("sub", "dub")
            for catalog in self.anime_catalogs
        ]
        attempts.append(self._attempt(self.anime_latino, request))

        outcomes = await asyncio.gather(*attempts)

        # outcomes keep priority order, place() keeps the first success per slot
        merged = MergedSources()
        for result, _ in outcomes:
            merged.place(result)

        key = self._key(ANIME_CACHE_PROVIDER, request)
        if merged.success_count:
            await self.cache.set(
                key,
                {
                    "title": classification.canonical_title,
                    "sources": merged.model_dump(mode="json"),
                },
                provider=ANIME_CACHE_PROVIDER,
            )
        elif all(getattr(error, "cacheable", False) for _, error in outcomes):
            await self.cache.set(key, UNAVAILABLE, provider=ANIME_CACHE_PROVIDER)

        return merged

    def _from_anime_entry(self, entry):
        if entry.is_negative:
            return MergedSources(), None

        merged = MergedSources.model_validate(entry.payload["sources"])
        for name in ("original", "latino", "english_dub"):
            result = getattr(merged, name)
            if result is not None:
                result.cached = True
        return merged, entry.payload.get("title")

    async def extract(self, request: ExtractionRequest):
        start = time.monotonic()

        if request.is_series:
            entry = await self.cache.get(self._key(ANIME_CACHE_PROVIDER, request))
            if entry is not None:
                merged, anime_title = self._from_anime_entry(entry)
                return self.respond(request, merged, start, True, anime_title)

            classification = await self.classify(request)
            if classification.is_anime:
                logger.log(
                    "ANIME",
                    f"✅ {request.identifier} is anime: {classification.canonical_title}",
                )
                merged = await self.extract_anime(request, classification)
                return self.respond(
                    request, merged, start, True, classification.canonical_title
                )

        logger.log(
            "PROVIDER",
            f"🚀 {request.identifier}: {', '.join(p.name for p in self.providers)}",
        )
        merged = await self.extract_general(request)
        return self.respond(request, merged, start, False)

    def respond(
        self,
        request: ExtractionRequest,
        merged: MergedSources,
        start: float,
        is_anime: bool,
        anime_title: Optional[str] = None,
    ):
        total_time = elapsed_ms_since(start)
        slots = merged.slots()

        metadata = {
            "identifier": request.identifier,
            "isAnime": is_anime,
            "extractedAt": datetime.now(timezone.utc).isoformat(),
            "totalTimeMs": total_time,
            "cached": merged.cached_flags(),
            "successCount": merged.success_count,
            "totalProviders": len(slots),
        }
        if is_anime:
            metadata["animeTitle"] = anime_title

        logger.log(
            "METEOR",
            f"{request.identifier}: {merged.success_count}/{len(slots)} variants in {total_time}ms",
        )
        return {
            "success": merged.success_count > 0,
            "sources": merged.as_response(),
            "metadata": metadata,
        }


def build_orchestrator(app_settings, session, pool, cache: CacheStore):
    providers = [
        VidlinkProvider(
            session,
            pool,
            app_settings.VIDLINK_URL,
            navigation_timeout=app_settings.VIDLINK_NAVIGATION_TIMEOUT,
            settle_time=app_settings.VIDLINK_SETTLE_TIME,
            extra_wait=app_settings.VIDLINK_EXTRA_WAIT,
            user_agent=app_settings.BROWSER_USER_AGENT,
        ),
        CuevanaProvider(
            session, app_settings.CUEVANA_API_URL, timeout=app_settings.CUEVANA_TIMEOUT
        ),
        VidifyProvider(
            session,
            app_settings.VIDIFY_API_URL,
            app_settings.VIDIFY_TOKEN,
            app_settings.VIDIFY_XOR_KEY,
            timeout=app_settings.VIDIFY_TIMEOUT,
        ),
    ]
    anime_catalogs = [
        CatalogProvider(
            session,
            descriptor,
            app_settings.KENJITSU_API_URL,
            timeout=app_settings.KENJITSU_TIMEOUT,
            sources_timeout=app_settings.KENJITSU_SOURCES_TIMEOUT,
        )
        for descriptor in ANIME_CATALOGS
    ]

    return StreamOrchestrator(
        cache,
        TMDBApi(
            session,
            token=app_settings.TMDB_READ_ACCESS_TOKEN,
            timeout=app_settings.TMDB_TIMEOUT,
        ),
        providers,
        anime_catalogs,
        CuevanaProvider(
            session,
            app_settings.CUEVANA_API_URL,
            timeout=app_settings.ANIME_LATINO_TIMEOUT,
        ),
        verify_cached=app_settings.VERIFY_CACHED_STREAMS,
    )
