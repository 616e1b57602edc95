import time
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    FASTAPI_HOST: Optional[str] = "0.0.0.0"
    FASTAPI_PORT: Optional[int] = 4000
    FASTAPI_WORKERS: Optional[int] = 1
    LOG_LEVEL: Optional[str] = "INFO"
    SHUTDOWN_TIMEOUT: Optional[int] = 10
    DATABASE_TYPE: Optional[str] = "sqlite"
    DATABASE_URL: Optional[str] = "username:password@hostname:port"
    DATABASE_PATH: Optional[str] = "data/meteor.db"
    CACHE_TTL: Optional[int] = 604800  # 7 days
    CACHE_CLEANUP_INTERVAL: Optional[int] = 21600  # 6 hours
    VERIFY_CACHED_STREAMS: Optional[bool] = False
    HTTP_CLIENT_LIMIT: Optional[int] = 100
    HTTP_CLIENT_LIMIT_PER_HOST: Optional[int] = 20
    HTTP_CLIENT_TTL_DNS_CACHE: Optional[int] = 300
    HTTP_CLIENT_KEEPALIVE_TIMEOUT: Optional[int] = 30
    HTTP_CLIENT_TIMEOUT_TOTAL: Optional[int] = 30
    BROWSER_MAX_PAGES: Optional[int] = 10
    BROWSER_ACQUIRE_TIMEOUT: Optional[float] = 30
    BROWSER_PAGE_TTL: Optional[float] = 120
    BROWSER_RESTART_INTERVAL: Optional[int] = 3600
    BROWSER_RECONCILE_INTERVAL: Optional[int] = 300
    BROWSER_RELEASE_TIMEOUT: Optional[float] = 5
    BROWSER_HEADLESS: Optional[bool] = True
    BROWSER_USER_AGENT: Optional[str] = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/142.0.0.0 Safari/537.36"
    )
    BROWSER_POPUP_ALLOWLIST: Optional[str] = (
        r"vidlink|videasy|vidking|111movies|megafiles|workers\.dev"
    )
    VIDLINK_URL: Optional[str] = "https://vidlink.pro"
    VIDLINK_NAVIGATION_TIMEOUT: Optional[float] = 20
    VIDLINK_SETTLE_TIME: Optional[float] = 3
    VIDLINK_EXTRA_WAIT: Optional[float] = 4
    CUEVANA_API_URL: Optional[str] = "https://api.cineparatodos.lat"
    CUEVANA_TIMEOUT: Optional[float] = 20
    VIDIFY_API_URL: Optional[str] = "https://apiv2.vidify.top/api"
    VIDIFY_TOKEN: Optional[str] = "1212"
    VIDIFY_XOR_KEY: Optional[str] = "HpobLp2wBesBkA8rU9HJQcYTBxdrs8X1"
    VIDIFY_TIMEOUT: Optional[float] = 5
    KENJITSU_API_URL: Optional[str] = (
        "https://fatal-jacklyn-nasheee1337-5d2fbb84.koyeb.app"
    )
    KENJITSU_TIMEOUT: Optional[float] = 10
    KENJITSU_SOURCES_TIMEOUT: Optional[float] = 15
    ANIME_LATINO_TIMEOUT: Optional[float] = 10
    TMDB_READ_ACCESS_TOKEN: Optional[str] = None
    TMDB_TIMEOUT: Optional[float] = 5

    @field_validator(
        "VIDLINK_URL",
        "CUEVANA_API_URL",
        "VIDIFY_API_URL",
        "KENJITSU_API_URL",
    )
    def remove_trailing_slash(cls, v):
        if v and v.endswith("/"):
            return v[:-1]
        return v

    @field_validator("DATABASE_TYPE")
    def check_database_type(cls, v):
        if v not in ["sqlite", "postgresql"]:
            raise ValueError("Invalid DATABASE_TYPE")
        return v


settings = AppSettings()


def build_database_url(app_settings: AppSettings):
    if app_settings.DATABASE_TYPE == "sqlite":
        return f"sqlite:///{app_settings.DATABASE_PATH}"
    return f"postgresql+asyncpg://{app_settings.DATABASE_URL}"


class MediaType(str, Enum):
    MOVIE = "movie"
    SERIES = "series"


class Variant(str, Enum):
    ORIGINAL = "original"
    DUB = "dub"
    LATINO = "latino"


UNAVAILABLE = "unavailable"


class ExtractionRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    media_type: MediaType
    media_id: str
    season: Optional[int] = None
    episode: Optional[int] = None

    @field_validator("media_type", mode="before")
    def normalize_media_type(cls, v):
        if isinstance(v, str) and v.lower() == "tv":
            return MediaType.SERIES
        return v

    @field_validator("media_id")
    def check_media_id(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("media_id must not be empty")
        return v

    @model_validator(mode="after")
    def check_episode_fields(self):
        if self.media_type == MediaType.SERIES:
            if not self.season or not self.episode:
                raise ValueError("season and episode are required for series")
            if self.season < 1 or self.episode < 1:
                raise ValueError("season and episode must be positive")
        elif self.season is not None or self.episode is not None:
            raise ValueError("season and episode are only valid for series")
        return self

    @property
    def is_series(self):
        return self.media_type == MediaType.SERIES

    @property
    def upstream_type(self):
        """Type segment used by the upstream player APIs."""
        return "tv" if self.is_series else "movie"

    @property
    def identifier(self):
        if self.is_series:
            return f"TV {self.media_id} S{self.season}E{self.episode}"
        return f"Movie {self.media_id}"


class StreamCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    media_format: str = "hls"
    relevance_score: int
    discovered_at: float


class SubtitleTrack(BaseModel):
    url: str
    language: str = "unknown"
    label: str = "Unknown"


class ProviderResult(BaseModel):
    provider: str
    success: bool
    variant: Variant
    stream_url: Optional[str] = None
    subtitles: List[SubtitleTrack] = []
    error: Optional[str] = None
    elapsed_ms: int = 0
    cached: bool = False
    extras: dict = {}

    @model_validator(mode="after")
    def check_populated(self):
        if self.success:
            if not self.stream_url or self.error is not None:
                raise ValueError("successful result needs a stream_url and no error")
        elif self.stream_url is not None or self.subtitles or not self.error:
            raise ValueError("failed result carries only an error")
        return self

    @classmethod
    def ok(
        cls,
        provider: str,
        variant: Variant,
        stream_url: str,
        subtitles: Optional[List[SubtitleTrack]] = None,
        elapsed_ms: int = 0,
        **extras,
    ):
        return cls(
            provider=provider,
            success=True,
            variant=variant,
            stream_url=stream_url,
            subtitles=subtitles or [],
            elapsed_ms=elapsed_ms,
            extras=extras,
        )

    @classmethod
    def failed(
        cls,
        provider: str,
        variant: Variant,
        error: str,
        elapsed_ms: int = 0,
        cached: bool = False,
    ):
        return cls(
            provider=provider,
            success=False,
            variant=variant,
            error=error,
            elapsed_ms=elapsed_ms,
            cached=cached,
        )

    def to_source(self):
        source = {
            "streamUrl": self.stream_url,
            "subtitles": [subtitle.model_dump() for subtitle in self.subtitles],
            "provider": self.provider,
            "extractionTimeMs": self.elapsed_ms,
        }
        source.update(self.extras)
        return source


class CacheEntry(BaseModel):
    key: str
    payload: Union[dict, Literal["unavailable"]]
    cached_at: float
    expires_at: float

    @property
    def is_negative(self):
        return self.payload == UNAVAILABLE

    def is_expired(self, now: Optional[float] = None):
        return (now if now is not None else time.time()) > self.expires_at


class AnimeClassification(BaseModel):
    is_anime: bool = False
    canonical_title: Optional[str] = None
    search_title: Optional[str] = None
    season_air_year: Optional[int] = None


class MergedSources(BaseModel):
    original: Optional[ProviderResult] = None
    latino: Optional[ProviderResult] = None
    english_dub: Optional[ProviderResult] = Field(default=None)

    def place(self, result: ProviderResult):
        """Fill the slot of the result's variant unless it is already taken."""
        if not result.success:
            return False

        field_name = {
            Variant.ORIGINAL: "original",
            Variant.LATINO: "latino",
            Variant.DUB: "english_dub",
        }[result.variant]
        if getattr(self, field_name) is not None:
            return False

        setattr(self, field_name, result)
        return True

    def slots(self):
        return {
            "original": self.original,
            "latino": self.latino,
            "englishDub": self.english_dub,
        }

    @property
    def success_count(self):
        return sum(1 for result in self.slots().values() if result is not None)

    def as_response(self):
        return {
            name: result.to_source() if result is not None else None
            for name, result in self.slots().items()
        }

    def cached_flags(self):
        return {
            name: bool(result is not None and result.cached)
            for name, result in self.slots().items()
        }


def elapsed_ms_since(start: float):
    return int((time.monotonic() - start) * 1000)


