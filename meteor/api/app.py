import asyncio
import time
from contextlib import asynccontextmanager

from databases import Database
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from meteor.api.endpoints import admin, base
from meteor.api.endpoints import stream as streams_router
from meteor.core.database import setup_database, teardown_database
from meteor.core.logger import logger, setupLogger
from meteor.core.models import AppSettings, build_database_url, settings
from meteor.services.browser import BrowserPool, PlaywrightEngine
from meteor.services.cache import CacheStore
from meteor.services.orchestration import build_orchestrator
from meteor.utils.concurrency import shutdown_crypto_executor
from meteor.utils.http_client import HttpClientManager


class LoguruMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(f"Exception during request processing: {e}")
            raise
        finally:
            process_time = time.time() - start_time
            logger.log(
                "API",
                f"{request.method} {request.url.path} - {response.status_code if 'response' in locals() else '500'} - {process_time:.2f}s",
            )
        return response


async def shutdown(app: FastAPI):
    await app.state.pool.close()
    await app.state.http_client.close()
    await teardown_database(app.state.database)
    shutdown_crypto_executor()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app_settings: AppSettings = app.state.settings
    setupLogger(app_settings.LOG_LEVEL)

    database = Database(build_database_url(app_settings))
    await setup_database(
        database, app_settings.DATABASE_TYPE, app_settings.DATABASE_PATH
    )

    http_client = HttpClientManager(app_settings)
    session = await http_client.init()

    pool = BrowserPool(
        lambda: PlaywrightEngine(
            headless=app_settings.BROWSER_HEADLESS,
            user_agent=app_settings.BROWSER_USER_AGENT,
        ),
        max_pages=app_settings.BROWSER_MAX_PAGES,
        acquire_timeout=app_settings.BROWSER_ACQUIRE_TIMEOUT,
        page_ttl=app_settings.BROWSER_PAGE_TTL,
        release_timeout=app_settings.BROWSER_RELEASE_TIMEOUT,
        restart_interval=app_settings.BROWSER_RESTART_INTERVAL,
        reconcile_interval=app_settings.BROWSER_RECONCILE_INTERVAL,
        popup_allowlist=app_settings.BROWSER_POPUP_ALLOWLIST,
    )
    cache = CacheStore(database, default_ttl=app_settings.CACHE_TTL)

    app.state.database = database
    app.state.http_client = http_client
    app.state.pool = pool
    app.state.cache = cache
    app.state.orchestrator = build_orchestrator(app_settings, session, pool, cache)

    # Start background maintenance tasks
    pool.start_maintenance()
    cleanup_cache_task = asyncio.create_task(
        cache.run_cleanup_loop(app_settings.CACHE_CLEANUP_INTERVAL)
    )

    try:
        yield
    finally:
        cleanup_cache_task.cancel()
        try:
            await cleanup_cache_task
        except asyncio.CancelledError:
            pass

        try:
            await asyncio.wait_for(shutdown(app), app_settings.SHUTDOWN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.error(
                f"Shutdown did not finish within {app_settings.SHUTDOWN_TIMEOUT}s, forcing exit"
            )


def create_app(app_settings: AppSettings = settings):
    app = FastAPI(
        title="Meteor",
        summary="Multi-provider stream extraction API.",
        lifespan=lifespan,
        redoc_url=None,
    )
    app.state.settings = app_settings
    app.state.started_at = time.time()

    app.add_middleware(LoguruMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(base.router)
    app.include_router(admin.router)
    app.include_router(streams_router.streams)
    return app


app = create_app()
