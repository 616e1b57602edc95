import traceback

import uvicorn

from meteor.api.app import app
from meteor.core.logger import log_startup_info, logger, setupLogger
from meteor.core.models import settings


def run_with_uvicorn():
    """Run the server with uvicorn, the browser pool lives in this single process"""
    if settings.FASTAPI_WORKERS != 1:
        logger.warning(
            f"FASTAPI_WORKERS={settings.FASTAPI_WORKERS} ignored, the browser pool is per process"
        )

    config = uvicorn.Config(
        app,
        host=settings.FASTAPI_HOST,
        port=settings.FASTAPI_PORT,
        proxy_headers=True,
        forwarded_allow_ips="*",
        timeout_graceful_shutdown=settings.SHUTDOWN_TIMEOUT,
        log_config=None,
    )
    server = uvicorn.Server(config=config)

    log_startup_info(settings)
    try:
        server.run()
    except KeyboardInterrupt:
        logger.log("METEOR", "Server stopped by user")
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        logger.exception(traceback.format_exc())
    finally:
        logger.log("METEOR", "Server Shutdown")


if __name__ == "__main__":
    setupLogger(settings.LOG_LEVEL)
    run_with_uvicorn()
