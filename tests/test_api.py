import asyncio
import os
import tempfile

from fastapi.testclient import TestClient

from meteor.api import app as app_module
from meteor.api.app import create_app
from meteor.core.models import AppSettings, MediaType


class FakePool:
    def __init__(self, **overrides):
        self.reconciled = 0
        self.snapshot = {
            "running": True,
            "maxPages": 10,
            "activePages": 2,
            "trackedPages": 2,
            "pendingPages": 0,
            "countersMatch": True,
            "availableSlots": 8,
            "totalPagesCreated": 42,
            "uptimeSeconds": 100,
        }
        self.snapshot.update(overrides)

    def stats(self):
        return dict(self.snapshot)

    async def reconcile(self):
        self.reconciled += 1
        return 3


class FakeCacheAdmin:
    def __init__(self):
        self.invalidated = []

    async def stats(self):
        return {"total": 5, "valid": 4, "expired": 1, "negative": 2, "byProvider": {"vidlink": 3}}

    async def invalidate(self, media_type, media_id, season=None, episode=None):
        self.invalidated.append((media_type, media_id, season, episode))
        return 4


class FakeOrchestrator:
    def __init__(self, error=None):
        self.error = error
        self.requests = []

    async def extract(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return {"success": True, "sources": {}, "metadata": {"identifier": request.identifier}}


def make_client(pool=None, orchestrator=None, cache=None):
    app = create_app()
    app.state.pool = pool or FakePool()
    app.state.cache = cache or FakeCacheAdmin()
    app.state.orchestrator = orchestrator or FakeOrchestrator()
    return TestClient(app), app


def test_extract_get_accepts_tv_alias():
    client, app = make_client()
    response = client.get("/api/streams/extract/tv/1399?season=1&episode=2")

    assert response.status_code == 200
    assert response.json()["metadata"]["identifier"] == "TV 1399 S1E2"
    request = app.state.orchestrator.requests[0]
    assert request.media_type == MediaType.SERIES
    assert (request.season, request.episode) == (1, 2)


def test_extract_post_reads_json_body():
    client, app = make_client()
    response = client.post("/api/streams/extract", json={"type": "movie", "tmdbId": 603})

    assert response.status_code == 200
    assert app.state.orchestrator.requests[0].media_id == "603"


def test_invalid_requests_are_rejected():
    client, app = make_client()

    missing_episode = client.get("/api/streams/extract/series/1399?season=1")
    assert missing_episode.status_code == 400
    assert "error" in missing_episode.json()

    bad_type = client.post("/api/streams/extract", json={"type": "anime", "tmdbId": "1"})
    assert bad_type.status_code == 400

    missing_id = client.post("/api/streams/extract", json={"type": "movie"})
    assert missing_id.status_code == 400

    assert app.state.orchestrator.requests == []


def test_unexpected_failure_returns_500():
    client, _ = make_client(orchestrator=FakeOrchestrator(error=OSError("disk I/O error")))
    response = client.get("/api/streams/extract/movie/603")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error", "message": "disk I/O error"}


def test_health_reports_pool_and_warnings():
    client, _ = make_client()
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["browser"]["activePages"] == 2
    assert body["warnings"] == []

    client, _ = make_client(pool=FakePool(countersMatch=False, availableSlots=0))
    warnings = client.get("/health").json()["warnings"]
    assert len(warnings) == 2
    assert "/api/browser/cleanup" in warnings[0]


def test_browser_cleanup():
    pool = FakePool()
    client, _ = make_client(pool=pool)
    body = client.post("/api/browser/cleanup").json()

    assert body["success"]
    assert body["cleaned"] == 3
    assert body["stats"]["maxPages"] == 10
    assert pool.reconciled == 1


def test_cache_stats_and_invalidation():
    cache = FakeCacheAdmin()
    client, _ = make_client(cache=cache)

    assert client.get("/api/cache/stats").json()["negative"] == 2

    response = client.delete("/api/cache/tv/1399?season=1&episode=1")
    assert response.json() == {"success": True, "invalidated": 4}
    assert cache.invalidated == [(MediaType.SERIES, "1399", 1, 1)]

    assert client.delete("/api/cache/anime/1").status_code == 400


def test_lifespan_applies_configured_log_level():
    levels = []
    original = app_module.setupLogger
    app_module.setupLogger = levels.append
    try:
        with tempfile.TemporaryDirectory() as directory:
            app_settings = AppSettings(
                LOG_LEVEL="WARNING",
                DATABASE_PATH=os.path.join(directory, "meteor.db"),
            )
            app = create_app(app_settings)

            async def scenario():
                async with app.router.lifespan_context(app):
                    assert app.state.orchestrator is not None

            asyncio.run(scenario())
    finally:
        app_module.setupLogger = original

    assert levels == ["WARNING"]
