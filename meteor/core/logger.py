import sys

from loguru import logger

from meteor.core.log_levels import CUSTOM_LOG_LEVELS, STANDARD_LOG_LEVELS


def setupLogger(level: str):
    # Configure custom log levels
    for level_name, level_config in CUSTOM_LOG_LEVELS.items():
        logger.level(
            level_name,
            no=level_config["no"],
            icon=level_config["icon"],
            color=level_config["loguru_color"],
        )

    # Configure standard log levels (override defaults)
    for level_name, level_config in STANDARD_LOG_LEVELS.items():
        logger.level(
            level_name, icon=level_config["icon"], color=level_config["loguru_color"]
        )

    log_format = (
        "<white>{time:YYYY-MM-DD}</white> <magenta>{time:HH:mm:ss}</magenta> | "
        "<level>{level.icon}</level> <level>{level}</level> | "
        "<cyan>{module}</cyan>.<cyan>{function}</cyan> - <level>{message}</level>"
    )

    logger.configure(
        handlers=[
            {
                "sink": sys.stderr,
                "level": level,
                "format": log_format,
                "backtrace": False,
                "diagnose": False,
                "enqueue": True,
            }
        ]
    )


setupLogger("DEBUG")


def log_provider_error(provider: str, identifier: str, error: Exception):
    logger.log(
        "PROVIDER",
        f"❌ {provider} failed for {identifier}: {type(error).__name__}: {error}",
    )


def log_startup_info(settings):
    logger.log(
        "METEOR",
        f"Server started on http://{settings.FASTAPI_HOST}:{settings.FASTAPI_PORT} - {settings.FASTAPI_WORKERS} workers",
    )
    logger.log(
        "METEOR",
        f"Database ({settings.DATABASE_TYPE}): {settings.DATABASE_PATH if settings.DATABASE_TYPE == 'sqlite' else settings.DATABASE_URL} - Cache TTL: {settings.CACHE_TTL}s - Cleanup Interval: {settings.CACHE_CLEANUP_INTERVAL}s",
    )
    logger.log(
        "METEOR",
        f"Browser Pool: {settings.BROWSER_MAX_PAGES} pages - Acquire Timeout: {settings.BROWSER_ACQUIRE_TIMEOUT}s - Page TTL: {settings.BROWSER_PAGE_TTL}s - Restart: {settings.BROWSER_RESTART_INTERVAL}s - Reconcile: {settings.BROWSER_RECONCILE_INTERVAL}s",
    )
    logger.log(
        "METEOR",
        f"Vidlink: {settings.VIDLINK_URL} - Navigation Timeout: {settings.VIDLINK_NAVIGATION_TIMEOUT}s",
    )
    logger.log(
        "METEOR",
        f"Cuevana: {settings.CUEVANA_API_URL} - Timeout: {settings.CUEVANA_TIMEOUT}s",
    )
    logger.log(
        "METEOR",
        f"Vidify: {settings.VIDIFY_API_URL} - Timeout: {settings.VIDIFY_TIMEOUT}s",
    )
    logger.log("METEOR", f"Kenjitsu: {settings.KENJITSU_API_URL}")
    logger.log(
        "METEOR",
        f"TMDB Classification: {bool(settings.TMDB_READ_ACCESS_TOKEN)} - Verify Cached Streams: {bool(settings.VERIFY_CACHED_STREAMS)}",
    )
