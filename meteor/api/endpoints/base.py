import time

from fastapi import APIRouter, Request

router = APIRouter()


@router.get(
    "/health",
    tags=["General"],
    summary="Health Check",
    description="Returns the health status of the application and browser pool counters.",
)
async def health(request: Request):
    pool_stats = request.app.state.pool.stats()

    warnings = []
    if not pool_stats["countersMatch"]:
        warnings.append(
            "Active page count does not match tracked pages, run POST /api/browser/cleanup"
        )
    if pool_stats["availableSlots"] == 0:
        warnings.append("Browser pool is saturated")

    return {
        "status": "ok",
        "uptime": int(time.time() - request.app.state.started_at),
        "browser": pool_stats,
        "warnings": warnings,
    }
