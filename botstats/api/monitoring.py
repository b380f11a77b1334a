"""Dashboard, health check and monitoring endpoints."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

router = APIRouter()


@router.get("/health")
async def health() -> dict:
    """Liveness of the collector process itself."""
    from botstats.main import get_process_stats

    snapshot = get_process_stats().snapshot()
    return {
        "status": "healthy",
        "version": "1.3.0",
        "uptime": snapshot["uptime_seconds"],
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "process": snapshot,
    }


@router.get("/api/stats")
async def stats() -> dict:
    """Aggregate fleet statistics.

    Instances and users are reclassified against the current time, so a
    bot that went silent without disconnecting drops out of
    ``activeInstances`` once the concurrent window has passed.
    """
    from botstats.main import get_processor

    return await get_processor().stats_view()


@router.get("/api/instances")
async def instances() -> dict:
    """All instances, most recently active first."""
    from botstats.main import get_processor

    return await get_processor().instances_view()


@router.get("/api/users")
async def users() -> dict:
    from botstats.main import get_processor

    return await get_processor().users_view()


@router.get("/api/instance-health/{instance_id}")
async def instance_health(instance_id: str) -> JSONResponse:
    from botstats.main import get_processor

    view = await get_processor().instance_health(instance_id)
    if view is None:
        return JSONResponse(content={"error": "Instance not found"}, status_code=404)
    return JSONResponse(content=view)


@router.get("/api/health-summary")
async def health_summary() -> dict:
    """Fleet health: quality metrics, degraded instances and recent disconnects."""
    from botstats.main import get_processor

    return await get_processor().health_summary()


@router.get("/api/errors")
async def errors() -> dict:
    from botstats.main import get_processor

    return await get_processor().error_feed()
