import re
import time
from dataclasses import dataclass
from urllib.parse import parse_qs, unquote, urlparse

import aiohttp

from meteor.core.exceptions import NoStreamFound, ProviderError
from meteor.core.logger import logger
from meteor.core.models import (
    ExtractionRequest,
    ProviderResult,
    Variant,
    elapsed_ms_since,
)
from meteor.providers.base import BaseProvider, ProviderKind
from meteor.utils.concurrency import first_success
from meteor.utils.http_client import fetch_json
from meteor.utils.obfuscation import decode_payload_async

PLAYER_ORIGIN = "https://player.vidify.top"

URL_FIELDS = ("url", "streaming_url", "stream_url", "video_url", "m3u8")
PROXY_PATTERN = re.compile(r"proxify\.vidify\.top/proxy|workers\.dev/proxy")
BROKEN_EXTENSION_PATTERN = re.compile(r"\.mp4(\?|$)", re.IGNORECASE)
IP_HOST_PATTERN = re.compile(r"^https?://\d{1,3}(\.\d{1,3}){3}")


@dataclass(frozen=True)
class VidifyServer:
    name: str
    sr: int
    language: str


SERVERS = (
    VidifyServer("Adam", 44, "Original Lang"),
    VidifyServer("Vplus", 18, "Original Lang"),
    VidifyServer("Test", 28, "English Dub"),
    VidifyServer("Vfast", 11, "English Dub"),
)


def unwrap_proxy(url: str):
    if not PROXY_PATTERN.search(url):
        return url

    wrapped = parse_qs(urlparse(url).query).get("url")
    if not wrapped:
        return url

    return unquote(wrapped[0])


def extract_stream_url(data: dict):
    """Pick the stream URL out of a decoded payload, or None if unusable."""
    url = None
    for field in URL_FIELDS:
        if isinstance(data.get(field), str) and data[field]:
            url = data[field]
            break

    if url is None:
        sources = data.get("sources")
        if isinstance(sources, list) and sources and isinstance(sources[0], dict):
            url = sources[0].get("url") or sources[0].get("originalUrl")

    if url is None:
        streams = data.get("streams")
        if isinstance(streams, list) and streams and isinstance(streams[0], dict):
            url = streams[0].get("url")

    if not url or not isinstance(url, str):
        return None

    url = unwrap_proxy(url)

    if BROKEN_EXTENSION_PATTERN.search(url):
        logger.debug(f"Vidify: rejecting broken extension {url[:80]}")
        return None

    if IP_HOST_PATTERN.match(url):
        logger.debug(f"Vidify: rejecting IP-literal host {url[:80]}")
        return None

    return url


class VidifyProvider(BaseProvider):
    kind = ProviderKind.VIDIFY
    variant = Variant.DUB

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_url: str,
        token: str,
        xor_key: str,
        timeout: float = 5,
        servers=SERVERS,
    ):
        super().__init__(session)
        self.api_url = api_url
        self.token = token
        self.xor_key = xor_key.encode("utf-8")
        self.timeout = timeout
        self.servers = servers

    def _request_body(self, request: ExtractionRequest, server: VidifyServer):
        body = {
            "tmdb_id": request.media_id,
            "sr": server.sr,
            "type": request.upstream_type,
        }
        if request.is_series:
            body["season"] = request.season
            body["episode"] = request.episode
        return body

    async def _try_server(self, request: ExtractionRequest, server: VidifyServer):
        try:
            data = await fetch_json(
                self.session,
                "POST",
                f"{self.api_url}?token={self.token}",
                self.timeout,
                json=self._request_body(request, server),
                headers={
                    "Content-Type": "application/json",
                    "Origin": PLAYER_ORIGIN,
                    "Referer": f"{PLAYER_ORIGIN}/",
                },
            )
        except ProviderError as e:
            logger.debug(f"Vidify {server.name}: {e}")
            return None

        token = data.get("snoopdog") if isinstance(data, dict) else None
        if not token:
            logger.debug(f"Vidify {server.name}: no token in response")
            return None

        payload = await decode_payload_async(token, self.xor_key)
        if payload is None:
            logger.debug(f"Vidify {server.name}: token could not be decoded")
            return None

        url = extract_stream_url(payload)
        if url is None:
            return None

        logger.log("PROVIDER", f"✅ Vidify {server.name} ({server.language})")
        return server, url

    async def fetch(self, request: ExtractionRequest):
        start = time.monotonic()

        winner = await first_success(
            self._try_server(request, server) for server in self.servers
        )
        if winner is None:
            raise NoStreamFound(f"All {len(self.servers)} Vidify servers failed")

        server, url = winner
        return ProviderResult.ok(
            self.name,
            self.variant,
            url,
            elapsed_ms=elapsed_ms_since(start),
            server=server.name,
            language=server.language,
        )
