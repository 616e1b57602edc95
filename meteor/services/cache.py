import asyncio
import time
from typing import Callable, Optional, Union

import orjson
from databases import Database

from meteor.core.logger import logger
from meteor.core.models import UNAVAILABLE, CacheEntry, MediaType
from meteor.providers.base import ProviderKind

# merged anime outcome is cached as one unit under this provider name
ANIME_CACHE_PROVIDER = "anime"


def make_key(
    provider: str,
    media_type: Union[MediaType, str],
    media_id: str,
    season: Optional[int] = None,
    episode: Optional[int] = None,
):
    media_type = MediaType(media_type).value
    if media_type == MediaType.SERIES.value and season and episode:
        return f"{provider}_{media_type}_{media_id}_s{season}e{episode}"
    return f"{provider}_{media_type}_{media_id}"


def _age_days(seconds: float):
    return f"{seconds / 86400:.1f}"


class CacheStore:
    """TTL store for provider outcomes, negative results included.

    Storage errors are not handled here, they propagate to the caller.
    """

    def __init__(
        self,
        database: Database,
        default_ttl: int = 604800,
        clock: Callable[[], float] = time.time,
    ):
        self.database = database
        self.default_ttl = default_ttl
        self.clock = clock

    async def get(self, key: str):
        row = await self.database.fetch_one(
            "SELECT key, payload, cached_at, expires_at FROM stream_cache WHERE key = :key",
            {"key": key},
        )
        if row is None:
            return None

        now = self.clock()
        entry = CacheEntry(
            key=row["key"],
            payload=orjson.loads(row["payload"]),
            cached_at=row["cached_at"],
            expires_at=row["expires_at"],
        )

        if entry.is_expired(now):
            logger.log(
                "CACHE",
                f"⏰ Expired: {key} (age: {_age_days(now - entry.cached_at)} days)",
            )
            await self.delete(key)
            return None

        logger.log(
            "CACHE",
            f"✅ Hit: {key} (age: {_age_days(now - entry.cached_at)}d, expires in: {_age_days(entry.expires_at - now)}d)",
        )
        return entry

    async def set(
        self,
        key: str,
        value: Union[dict, str],
        ttl: Optional[int] = None,
        provider: Optional[str] = None,
    ):
        if isinstance(value, str) and value != UNAVAILABLE:
            raise ValueError(f"Unsupported cache sentinel: {value}")

        now = self.clock()
        ttl = ttl if ttl is not None else self.default_ttl
        entry = CacheEntry(key=key, payload=value, cached_at=now, expires_at=now + ttl)

        await self.database.execute(
            """
                INSERT INTO stream_cache (key, provider, payload, cached_at, expires_at)
                VALUES (:key, :provider, :payload, :cached_at, :expires_at)
                ON CONFLICT (key) DO UPDATE SET
                    provider = :provider,
                    payload = :payload,
                    cached_at = :cached_at,
                    expires_at = :expires_at
            """,
            {
                "key": key,
                "provider": provider or key.split("_", 1)[0],
                "payload": orjson.dumps(value).decode("utf-8"),
                "cached_at": entry.cached_at,
                "expires_at": entry.expires_at,
            },
        )

        logger.log(
            "CACHE",
            f"💾 Saved: {key}{' (negative)' if entry.is_negative else ''} (expires in {ttl / 86400:.0f} days)",
        )
        return entry

    async def delete(self, key: str):
        existing = await self.database.fetch_val(
            "SELECT 1 FROM stream_cache WHERE key = :key", {"key": key}
        )
        if existing is None:
            return False

        await self.database.execute(
            "DELETE FROM stream_cache WHERE key = :key", {"key": key}
        )
        return True

    async def invalidate(
        self,
        media_type: Union[MediaType, str],
        media_id: str,
        season: Optional[int] = None,
        episode: Optional[int] = None,
    ):
        providers = [kind.value for kind in ProviderKind] + [ANIME_CACHE_PROVIDER]

        invalidated = 0
        for provider in providers:
            key = make_key(provider, media_type, media_id, season, episode)
            if await self.delete(key):
                invalidated += 1
                logger.log("CACHE", f"🗑️ Invalidated: {key}")

        return invalidated

    async def clean_expired(self):
        now = self.clock()
        expired = await self.database.fetch_val(
            "SELECT COUNT(*) FROM stream_cache WHERE expires_at < :now", {"now": now}
        )
        if expired:
            await self.database.execute(
                "DELETE FROM stream_cache WHERE expires_at < :now", {"now": now}
            )
            logger.log("CACHE", f"🧹 Cleaned {expired} expired entries")

        return expired or 0

    async def stats(self):
        now = self.clock()
        rows = await self.database.fetch_all(
            "SELECT provider, payload, expires_at FROM stream_cache"
        )

        valid = 0
        expired = 0
        negative = 0
        by_provider = {}
        for row in rows:
            if now > row["expires_at"]:
                expired += 1
                continue

            valid += 1
            if orjson.loads(row["payload"]) == UNAVAILABLE:
                negative += 1
            by_provider[row["provider"]] = by_provider.get(row["provider"], 0) + 1

        return {
            "total": len(rows),
            "valid": valid,
            "expired": expired,
            "negative": negative,
            "byProvider": by_provider,
        }

    async def run_cleanup_loop(self, interval: int):
        while True:
            await asyncio.sleep(interval)
            try:
                await self.clean_expired()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.log("CACHE", f"❌ Error during periodic cache cleanup: {e}")
