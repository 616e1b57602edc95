from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

import aiohttp

from meteor.core.models import ExtractionRequest, ProviderResult, Variant


class ProviderKind(str, Enum):
    VIDLINK = "vidlink"
    CUEVANA = "cuevana"
    VIDIFY = "vidify"
    HIANIME = "hianime"
    KAIDO = "kaido"
    ANIMEPAHE = "animepahe"
    ALLANIME = "allanime"


@dataclass(frozen=True)
class CatalogDescriptor:
    """Endpoint templates of an anime catalog behind the Kenjitsu API."""

    kind: ProviderKind
    display_name: str
    search_path: str
    episodes_path: str
    sources_path: str
    sources_params: dict = field(default_factory=dict)

    def episodes_url(self, base_url: str, anime_id: str):
        return base_url + self.episodes_path.format(anime_id=anime_id)

    def sources_url(self, base_url: str, episode_id: str):
        return base_url + self.sources_path.format(episode_id=episode_id)


def kenjitsu_descriptor(kind: ProviderKind, display_name: str, **sources_params):
    name = kind.value
    return CatalogDescriptor(
        kind=kind,
        display_name=display_name,
        search_path=f"/api/{name}/anime/search",
        episodes_path=f"/api/{name}/anime/{{anime_id}}/episodes",
        sources_path=f"/api/{name}/sources/{{episode_id}}",
        sources_params=sources_params,
    )


# priority order, first successful catalog wins per variant
ANIME_CATALOGS = (
    kenjitsu_descriptor(
        ProviderKind.HIANIME, "HiAnime", version="dub", server="hd-2"
    ),
    kenjitsu_descriptor(ProviderKind.KAIDO, "Kaido"),
    kenjitsu_descriptor(ProviderKind.ANIMEPAHE, "Animepahe"),
    kenjitsu_descriptor(ProviderKind.ALLANIME, "AllAnime"),
)


LANGUAGE_NAMES = {
    "eng": "English",
    "spa": "Spanish",
    "fre": "French",
    "fra": "French",
    "ger": "German",
    "deu": "German",
    "ita": "Italian",
    "por": "Portuguese",
    "jpn": "Japanese",
    "kor": "Korean",
    "chi": "Chinese",
    "zho": "Chinese",
    "ara": "Arabic",
    "rus": "Russian",
    "hin": "Hindi",
    "dut": "Dutch",
    "nld": "Dutch",
    "pol": "Polish",
    "tur": "Turkish",
}


def language_code_for(label: str):
    if not label:
        return "unknown"

    lowered = label.strip().lower()
    if lowered in LANGUAGE_NAMES:
        return lowered

    for code, name in LANGUAGE_NAMES.items():
        if lowered.startswith(name.lower()):
            return code

    return "unknown"


class BaseProvider(ABC):
    """A source of streams for a single response slot.

    `fetch` returns a successful ProviderResult or raises a ProviderError.
    """

    kind: ProviderKind
    variant: Variant

    def __init__(self, session: aiohttp.ClientSession):
        self.session = session

    @property
    def name(self):
        return self.kind.value

    @abstractmethod
    async def fetch(self, request: ExtractionRequest) -> ProviderResult:
        pass

    async def verify(self, result: ProviderResult):
        """Confirm that a cached positive result still plays."""
        return True
