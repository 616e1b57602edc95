import asyncio
from typing import Optional

import aiohttp

from meteor.core.exceptions import UpstreamUnreachable
from meteor.core.models import AppSettings


class HttpClientManager:
    def __init__(self, app_settings: AppSettings):
        self.settings = app_settings
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def init(self) -> aiohttp.ClientSession:
        if self._session and not self._session.closed:
            return self._session

        async with self._lock:
            if self._session and not self._session.closed:
                return self._session

            connector = aiohttp.TCPConnector(
                limit=self.settings.HTTP_CLIENT_LIMIT,
                limit_per_host=self.settings.HTTP_CLIENT_LIMIT_PER_HOST,
                ttl_dns_cache=self.settings.HTTP_CLIENT_TTL_DNS_CACHE,
                keepalive_timeout=self.settings.HTTP_CLIENT_KEEPALIVE_TIMEOUT,
                enable_cleanup_closed=True,
            )
            timeout = aiohttp.ClientTimeout(
                total=self.settings.HTTP_CLIENT_TIMEOUT_TOTAL
            )
            self._session = aiohttp.ClientSession(connector=connector, timeout=timeout)
            return self._session

    async def close(self) -> None:
        async with self._lock:
            if self._session and not self._session.closed:
                await self._session.close()
            self._session = None


async def fetch_json(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    timeout: float,
    **kwargs,
):
    """Request `url` and decode its JSON body, mapping transport failures."""
    try:
        async with session.request(
            method, url, timeout=aiohttp.ClientTimeout(total=timeout), **kwargs
        ) as response:
            if response.status >= 400:
                raise UpstreamUnreachable(f"HTTP {response.status}: {response.reason}")

            return await response.json(content_type=None)
    except asyncio.TimeoutError:
        raise UpstreamUnreachable(f"Timeout after {timeout}s")
    except aiohttp.ClientError as e:
        raise UpstreamUnreachable(f"{type(e).__name__}: {e}")
    except ValueError as e:
        raise UpstreamUnreachable(f"Invalid JSON response: {e}")
