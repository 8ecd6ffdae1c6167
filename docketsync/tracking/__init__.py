"""
Tracking reconciliation and scheduling.
"""

from docketsync.tracking.reconciler import (
    OrderOutcome,
    OutcomeKind,
    TrackingReconciler,
    merge_courier_events,
)
from docketsync.tracking.scheduler import TrackingScheduler

__all__ = [
    "OrderOutcome",
    "OutcomeKind",
    "TrackingReconciler",
    "TrackingScheduler",
    "merge_courier_events",
]
