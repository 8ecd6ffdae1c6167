"""
Recurring tracking cycles.

Wraps an APScheduler BackgroundScheduler that runs the reconciler on a fixed
interval. Scheduled and manual cycles share one in-process lock: an
overlapping request returns immediately instead of queuing.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from docketsync.config import Settings
from docketsync.db import UnitOfWork
from docketsync.models.api import (
    CycleSummary,
    ManualUpdateResponse,
    SchedulerState,
    SystemHealth,
)
from docketsync.tracking.reconciler import TrackingReconciler

logger = logging.getLogger(__name__)

JOB_ID = "tracking-reconcile"

# Pending orders not polled within this many intervals count as stale
STALE_AFTER_INTERVALS = 2


class TrackingScheduler:
    """
    Runs reconcile cycles on an interval and on demand.

    Usage:
        scheduler = TrackingScheduler(reconciler, UnitOfWork, settings)
        scheduler.start()
        ...
        scheduler.trigger_manual()
        scheduler.shutdown()
    """

    def __init__(
        self,
        reconciler: TrackingReconciler,
        unit_of_work_factory: Callable[[], UnitOfWork],
        settings: Settings,
        scheduler: BackgroundScheduler | None = None,
    ):
        self.reconciler = reconciler
        self.unit_of_work_factory = unit_of_work_factory
        self.settings = settings
        self._scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self._cycle_lock = threading.Lock()
        self._last_cycle: CycleSummary | None = None

    @property
    def is_running(self) -> bool:
        """Whether the interval timer is active."""
        return bool(self._scheduler.running)

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_lock.locked()

    @property
    def last_cycle(self) -> CycleSummary | None:
        return self._last_cycle

    def start(self):
        """Register the interval job and start the timer thread."""
        if self.is_running:
            return

        interval = self.settings.poll_interval_minutes
        self._scheduler.add_job(
            self.run_cycle,
            trigger=IntervalTrigger(minutes=interval),
            kwargs={"trigger": "scheduled"},
            id=JOB_ID,
            name="Reconcile pending tracking orders",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Tracking scheduler started (every %d minutes)", interval)

    def shutdown(self, wait: bool = False):
        """Stop the timer. A cycle already running finishes on its own thread."""
        if not self.is_running:
            return
        self._scheduler.shutdown(wait=wait)
        logger.info("Tracking scheduler stopped")

    def run_cycle(self, trigger: str = "scheduled") -> ManualUpdateResponse:
        """
        Run one reconcile cycle unless one is already in progress.

        Args:
            trigger: Label for logs and the summary

        Returns:
            ManualUpdateResponse; already_running=True if the lock was held
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Tracking cycle already running, ignoring %s trigger", trigger)
            return ManualUpdateResponse(
                success=False,
                already_running=True,
                message="Tracking update already in progress",
            )

        try:
            summary = self.reconciler.reconcile_pending(trigger=trigger)
        except Exception as e:
            logger.exception("Tracking cycle (%s) aborted", trigger)
            return ManualUpdateResponse(
                success=False,
                message=f"Tracking update failed: {e}",
            )
        finally:
            self._cycle_lock.release()

        self._last_cycle = summary
        return ManualUpdateResponse(
            success=True,
            message=summary.message,
            summary=summary,
        )

    def trigger_manual(self) -> ManualUpdateResponse:
        """Operator-initiated cycle."""
        return self.run_cycle(trigger="manual")

    def state(self) -> SchedulerState:
        return SchedulerState(
            running=self.is_running,
            cycle_in_progress=self.cycle_in_progress,
            interval_minutes=self.settings.poll_interval_minutes,
            last_cycle=self._last_cycle,
        )

    def health(self, limit: int = 5) -> SystemHealth:
        """
        Summarize tracking health.

        Args:
            limit: Number of recent activity entries

        Returns:
            SystemHealth with pending/stale counts, recent activity and
            scheduler state
        """
        stale_cutoff = datetime.now(timezone.utc) - timedelta(
            minutes=self.settings.poll_interval_minutes * STALE_AFTER_INTERVALS
        )

        with self.unit_of_work_factory() as uow:
            orders_to_update = uow.tracking_orders.count_pending()
            stale_orders = uow.tracking_orders.count_stale(stale_cutoff)
            recent = uow.tracking_orders.recent_activity(limit=limit)

        return SystemHealth(
            status="degraded" if stale_orders else "healthy",
            orders_to_update=orders_to_update,
            stale_orders=stale_orders,
            recent_activity=recent,
            scheduler=self.state(),
        )
