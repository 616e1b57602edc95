import asyncio

import pytest

from meteor.core.exceptions import NoStreamFound, UpstreamUnreachable
from meteor.core.models import ExtractionRequest, Variant
from meteor.providers.base import ANIME_CATALOGS, ProviderKind
from meteor.providers.kenjitsu import (
    CatalogProvider,
    find_episode,
    parse_subtitles,
    pick_catalog_match,
    release_year,
)
from fakes import FakeResponse, FakeSession, routes

BASE_URL = "https://kenjitsu.example"
REQUEST = ExtractionRequest(media_type="tv", media_id="240411", season=1, episode=2)

SEARCH_RESULTS = [
    {"id": "show-2019", "releaseDate": "2019-04-06"},
    {"id": "show-2023", "releaseDate": "2023-10-01"},
    {"id": "show-movie", "releaseDate": None},
]


def test_release_year_parses_leading_digits():
    assert release_year("2023-10-01") == 2023
    assert release_year("2023") == 2023
    assert release_year(2021) == 2021
    assert release_year("Oct 2023") is None
    assert release_year(None) is None


def test_year_match_prefers_exact_release_year():
    assert pick_catalog_match(SEARCH_RESULTS, 2023)["id"] == "show-2023"


def test_year_match_falls_back_to_first_result():
    assert pick_catalog_match(SEARCH_RESULTS, 2011)["id"] == "show-2019"
    assert pick_catalog_match(SEARCH_RESULTS, None)["id"] == "show-2019"
    assert pick_catalog_match(SEARCH_RESULTS[1:2], 1999)["id"] == "show-2023"
    assert pick_catalog_match([], 2023) is None


def test_episode_lookup_by_number_then_position():
    numbered = [{"id": "a", "number": 3}, {"id": "b", "episodeNumber": 1}, {"id": "c"}]
    assert find_episode(numbered, 1)["id"] == "b"
    assert find_episode(numbered, 3)["id"] == "a"
    assert find_episode(numbered, 2)["id"] == "b"
    assert find_episode(numbered, 4) is None
    assert find_episode([], 1) is None


def test_subtitles_are_normalized():
    subtitles = parse_subtitles(
        [
            {"url": "https://s.example/en.vtt", "lang": "English"},
            {"file": "https://s.example/es.vtt", "label": "Spanish - Latin"},
            {"url": "https://s.example/x.vtt", "lang": "Klingon"},
            {"lang": "English"},
        ]
    )
    assert [(track.language, track.label) for track in subtitles] == [
        ("eng", "English"),
        ("spa", "Spanish"),
        ("unknown", "Klingon"),
    ]


def test_catalog_descriptors_are_in_priority_order():
    assert [descriptor.kind for descriptor in ANIME_CATALOGS] == [
        ProviderKind.HIANIME,
        ProviderKind.KAIDO,
        ProviderKind.ANIMEPAHE,
        ProviderKind.ALLANIME,
    ]
    hianime = ANIME_CATALOGS[0]
    assert hianime.sources_params == {"version": "dub", "server": "hd-2"}
    assert hianime.episodes_url(BASE_URL, "abc") == f"{BASE_URL}/api/hianime/anime/abc/episodes"
    assert hianime.sources_url(BASE_URL, "ep-1") == f"{BASE_URL}/api/hianime/sources/ep-1"


def _catalog(table):
    session = FakeSession(routes(table))
    return CatalogProvider(session, ANIME_CATALOGS[0], BASE_URL), session


def test_fetch_walks_search_episodes_and_sources():
    table = {
        f"{BASE_URL}/api/hianime/anime/search": FakeResponse({"data": SEARCH_RESULTS}),
        f"{BASE_URL}/api/hianime/anime/show-2023/episodes": FakeResponse(
            {"data": {"episodes": [{"episodeId": "ep-1", "number": 1}, {"episodeId": "ep-2", "number": 2}]}}
        ),
        f"{BASE_URL}/api/hianime/sources/ep-2": FakeResponse(
            {
                "data": {
                    "sources": [
                        {"url": "https://cdn.example.net/1080.m3u8", "quality": "1080p"},
                        {"url": "https://cdn.example.net/720.m3u8", "quality": "720p"},
                    ],
                    "subtitles": [{"url": "https://s.example/en.vtt", "lang": "English"}],
                }
            }
        ),
    }

    async def scenario():
        provider, session = _catalog(table)
        result = await provider.fetch(
            REQUEST, search_title="Frieren Season 2", season_year=2023, version="dub"
        )

        assert result.provider == "hianime"
        assert result.variant == Variant.DUB
        assert result.stream_url == "https://cdn.example.net/1080.m3u8"
        assert result.extras == {"quality": "1080p, 720p"}
        assert result.subtitles[0].language == "eng"

        assert session.calls[0][2]["params"] == {"q": "Frieren Season 2", "page": 1}
        assert session.calls[2][2]["params"] == {"version": "dub", "server": "hd-2"}

    asyncio.run(scenario())


def test_fetch_sub_version_overrides_catalog_params():
    table = {
        f"{BASE_URL}/api/hianime/anime/search": FakeResponse({"data": SEARCH_RESULTS[:1]}),
        f"{BASE_URL}/api/hianime/anime/show-2019/episodes": FakeResponse(
            {"data": [{"id": "ep-a"}, {"id": "ep-b"}]}
        ),
        f"{BASE_URL}/api/hianime/sources/ep-b": FakeResponse(
            {"data": {"sources": [{"url": "https://cdn.example.net/sub.m3u8"}]}}
        ),
    }

    async def scenario():
        provider, session = _catalog(table)
        result = await provider.fetch(REQUEST, search_title="Frieren", version="sub")

        assert result.variant == Variant.ORIGINAL
        assert result.extras == {"quality": "auto"}
        assert session.calls[2][2]["params"]["version"] == "sub"

    asyncio.run(scenario())


def test_fetch_failures():
    async def scenario():
        provider, _ = _catalog({f"{BASE_URL}/api/hianime/anime/search": FakeResponse({"data": []})})
        with pytest.raises(NoStreamFound):
            await provider.fetch(REQUEST, search_title="Nothing")

        with pytest.raises(NoStreamFound):
            await provider.fetch(REQUEST, search_title=None)

        provider, _ = _catalog(
            {f"{BASE_URL}/api/hianime/anime/search": FakeResponse(status=500, reason="Server Error")}
        )
        with pytest.raises(UpstreamUnreachable):
            await provider.fetch(REQUEST, search_title="Frieren")

        provider, _ = _catalog(
            {
                f"{BASE_URL}/api/hianime/anime/search": FakeResponse({"data": SEARCH_RESULTS[:1]}),
                f"{BASE_URL}/api/hianime/anime/show-2019/episodes": FakeResponse({"data": [{"id": "ep-a"}]}),
            }
        )
        with pytest.raises(NoStreamFound):
            await provider.fetch(REQUEST, search_title="Frieren")

    asyncio.run(scenario())
