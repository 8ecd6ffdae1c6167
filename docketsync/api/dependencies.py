"""
Request dependencies for API routes.

The reconciler and scheduler are built once at startup and kept on
app.state; routes receive them through these dependencies.
"""

from fastapi import HTTPException, Request, status

from docketsync.tracking.reconciler import TrackingReconciler
from docketsync.tracking.scheduler import TrackingScheduler


def get_scheduler(request: Request) -> TrackingScheduler:
    """
    Tracking scheduler for this process.

    Raises:
        HTTPException: 503 if the service started without one
    """
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Tracking scheduler not available",
        )
    return scheduler


def get_reconciler(request: Request) -> TrackingReconciler:
    """
    Tracking reconciler for this process.

    Raises:
        HTTPException: 503 if the service started without one
    """
    reconciler = getattr(request.app.state, "reconciler", None)
    if reconciler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Tracking reconciler not available",
        )
    return reconciler
