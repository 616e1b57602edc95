import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional
from urllib.parse import urlencode

import aiohttp
from playwright.async_api import Error as PlaywrightError

from meteor.core.exceptions import NoManifestFound
from meteor.core.logger import logger
from meteor.core.models import (
    ExtractionRequest,
    ProviderResult,
    StreamCandidate,
    SubtitleTrack,
    Variant,
    elapsed_ms_since,
)
from meteor.providers.base import LANGUAGE_NAMES, BaseProvider, ProviderKind
from meteor.services.browser import BrowserPool

PLAYER_QUERY = {
    "primaryColor": "63b8bc",
    "player": "jw",
    "title": "false",
    "autoplay": "false",
}

MASTER_SCORE = 150

MANIFEST_PATTERN = re.compile(r"\.m3u8", re.IGNORECASE)
SUBTITLE_PATTERN = re.compile(r"\.vtt(\?|$)", re.IGNORECASE)
INDEXED_SUBTITLE_PATTERN = re.compile(r"([a-z]{3})-\d+\.vtt$")

SCORE_RULES = (
    (re.compile(r"\.m3u8(\?|$)", re.IGNORECASE), 100),
    (re.compile(r"playlist\.m3u8", re.IGNORECASE), 50),
    (re.compile(r"master\.m3u8", re.IGNORECASE), 50),
    (re.compile(r"workers\.dev", re.IGNORECASE), 30),
    (re.compile(r"cloudflare", re.IGNORECASE), 20),
    (re.compile(r"index\.m3u8", re.IGNORECASE), -20),
)


def score_manifest_url(url: str):
    return sum(points for pattern, points in SCORE_RULES if pattern.search(url))


def detect_subtitle_language(url: str):
    filename = url.split("/")[-1].split("?")[0].lower()

    match = INDEXED_SUBTITLE_PATTERN.search(filename)
    if match and match.group(1) in LANGUAGE_NAMES:
        return match.group(1), LANGUAGE_NAMES[match.group(1)]

    for code, name in LANGUAGE_NAMES.items():
        pattern = rf"[._-]{code}[._-]|^{code}[._-]|[._-]{code}\.vtt"
        if re.search(pattern, filename, re.IGNORECASE):
            return code, name

    return "unknown", "Unknown"


@dataclass(frozen=True)
class NetworkEvent:
    kind: str
    url: str
    observed_at: float
    seq: int


@dataclass
class NetworkLog:
    """Append-only record of the URLs a page requested or received."""

    clock: Callable[[], float] = time.monotonic
    events: List[NetworkEvent] = field(default_factory=list)
    master_seen: asyncio.Event = field(default_factory=asyncio.Event)

    def record(self, kind: str, url: str):
        event = NetworkEvent(kind, url, self.clock(), len(self.events))
        self.events.append(event)

        if MANIFEST_PATTERN.search(url) and score_manifest_url(url) >= MASTER_SCORE:
            self.master_seen.set()

        return event

    def has_manifest(self):
        return any(MANIFEST_PATTERN.search(event.url) for event in self.events)

    def subtitles(self):
        tracks = []
        seen = set()
        for event in self.events:
            if not SUBTITLE_PATTERN.search(event.url) or event.url in seen:
                continue

            seen.add(event.url)
            code, name = detect_subtitle_language(event.url)
            tracks.append(SubtitleTrack(url=event.url, language=code, label=name))

        return tracks


def select_candidate(events: Iterable[NetworkEvent]) -> Optional[StreamCandidate]:
    """
    Reduce observed events to the stream to play.

    The first manifest reaching the master score is taken as is. Otherwise
    the highest score wins and ties go to the manifest seen first.
    """
    candidates = []
    seen = set()
    for event in sorted(events, key=lambda event: event.seq):
        if not MANIFEST_PATTERN.search(event.url) or event.url in seen:
            continue

        seen.add(event.url)
        candidate = StreamCandidate(
            url=event.url,
            relevance_score=score_manifest_url(event.url),
            discovered_at=event.observed_at,
        )
        if candidate.relevance_score >= MASTER_SCORE:
            return candidate

        candidates.append(candidate)

    if not candidates:
        return None

    return max(candidates, key=lambda candidate: candidate.relevance_score)


class VidlinkProvider(BaseProvider):
    kind = ProviderKind.VIDLINK
    variant = Variant.ORIGINAL

    def __init__(
        self,
        session: aiohttp.ClientSession,
        pool: BrowserPool,
        base_url: str,
        navigation_timeout: float = 20,
        settle_time: float = 3,
        extra_wait: float = 4,
        user_agent: Optional[str] = None,
    ):
        super().__init__(session)
        self.pool = pool
        self.base_url = base_url
        self.navigation_timeout = navigation_timeout
        self.settle_time = settle_time
        self.extra_wait = extra_wait
        self.user_agent = user_agent

    def player_url(self, request: ExtractionRequest):
        if request.is_series:
            path = f"/tv/{request.media_id}/{request.season}/{request.episode}"
        else:
            path = f"/movie/{request.media_id}"
        return f"{self.base_url}{path}?{urlencode(PLAYER_QUERY)}"

    async def _wait_for_master(self, network_log: NetworkLog, timeout: float):
        try:
            await asyncio.wait_for(network_log.master_seen.wait(), timeout)
        except asyncio.TimeoutError:
            pass

    async def capture(self, page, source_url: str, prefix: str):
        network_log = NetworkLog()
        page.on("request", lambda req: network_log.record("request", req.url))
        page.on("response", lambda res: network_log.record("response", res.url))

        try:
            await page.goto(
                source_url,
                wait_until="domcontentloaded",
                timeout=self.navigation_timeout * 1000,
            )
        except PlaywrightError as e:
            logger.debug(f"{prefix} Navigation did not complete: {e}")

        await self._wait_for_master(network_log, self.settle_time)
        if not network_log.master_seen.is_set() and not network_log.has_manifest():
            logger.debug(f"{prefix} 🔍 Searching M3U8...")
            await self._wait_for_master(network_log, self.extra_wait)

        return network_log

    async def fetch(self, request: ExtractionRequest):
        start = time.monotonic()
        prefix = f"[VIDLINK] {request.identifier}"
        source_url = self.player_url(request)

        async with self.pool.page() as page:
            network_log = await self.capture(page, source_url, prefix)

        candidate = select_candidate(network_log.events)
        if candidate is None:
            raise NoManifestFound()

        subtitles = network_log.subtitles()
        elapsed = elapsed_ms_since(start)
        logger.log(
            "PROVIDER",
            f"{prefix} 🎉 M3U8 captured (score {candidate.relevance_score}, {elapsed}ms, {len(subtitles)} subs)",
        )
        return ProviderResult.ok(
            self.name,
            self.variant,
            candidate.url,
            subtitles=subtitles,
            elapsed_ms=elapsed,
            sourceUrl=source_url,
        )

    async def verify(self, result: ProviderResult):
        headers = {"Referer": f"{self.base_url}/"}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent

        try:
            async with self.session.head(
                result.stream_url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=3),
            ) as response:
                if response.ok:
                    return True

                logger.log(
                    "CACHE", f"⚠️ Cached M3U8 expired (HTTP {response.status})"
                )
        except (asyncio.TimeoutError, aiohttp.ClientError):
            logger.log("CACHE", "⚠️ Cached M3U8 unreachable")

        return False
