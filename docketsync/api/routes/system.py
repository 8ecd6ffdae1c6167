"""
System health API routes.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from docketsync.api.dependencies import get_scheduler
from docketsync.db import DatabaseConnection
from docketsync.models.api import SystemHealth
from docketsync.tracking.scheduler import TrackingScheduler

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/system/health", response_model=SystemHealth)
async def system_health(
    limit: int = Query(default=5, ge=1, le=50, description="Recent activity entries"),
    scheduler: TrackingScheduler = Depends(get_scheduler),
) -> SystemHealth:
    """
    Report tracking health.

    Returns the number of orders awaiting courier updates, how many of them
    are stale, the most recent status changes and the scheduler state.

    Raises:
        503: Database not available
    """
    if not DatabaseConnection.is_initialized():
        raise HTTPException(status_code=503, detail="Database not available")

    try:
        return scheduler.health(limit=limit)
    except Exception as e:
        logger.exception("Health query failed")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to query tracking health: {str(e)}",
        )
