"""Health check endpoints.

Provides:
- Basic liveness probe (/health/)
- Detailed executor status (/health/status)
"""

import platform
import sys
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends

from api.websockets.connection_manager import manager
from app.config import get_settings
from app.dependencies import get_jobs, get_registry
from tasks.registry import TaskRegistry
from worker.jobs import JobService

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()
_start_datetime = datetime.now(timezone.utc).isoformat()


@router.get("/", response_model=dict[str, Any])
async def root() -> dict[str, Any]:
    """
    Get API root information and version.
    Used as a simple liveness probe.
    """
    settings = get_settings()
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "ok",
    }


@router.get("/status", response_model=dict[str, Any])
async def status(
    jobs: JobService = Depends(get_jobs),
    registry: TaskRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """Executor status: uptime, job counts, supported task kinds."""
    settings = get_settings()
    counts: dict[str, int] = {}
    for job in jobs.jobs.values():
        counts[job.execution.status] = counts.get(job.execution.status, 0) + 1

    return {
        "status": "ok",
        "environment": settings.ENVIRONMENT,
        "started_at": _start_datetime,
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "python": sys.version.split()[0],
        "platform": platform.platform(),
        "jobs": counts,
        "max_concurrent_jobs": settings.MAX_CONCURRENT_JOBS,
        "websocket_connections": len(manager.active_connections),
        "task_types": registry.available_types,
    }
