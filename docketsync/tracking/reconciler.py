"""
Tracking reconciler.

Polls the courier for each eligible order, turns courier events into
lifecycle history entries and persists the result with a version-checked
update. Per-order failures are isolated: they are logged and counted, never
raised out of a cycle.
"""

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from enum import StrEnum
from typing import Callable, Optional

from pydantic import BaseModel, Field

from docketsync.config import Settings
from docketsync.courier.gateway import CourierGateway
from docketsync.courier.normalizer import StatusNormalizer
from docketsync.db import UnitOfWork
from docketsync.exceptions import (
    AuthError,
    NotFoundError,
    TrackingError,
    ValidationError,
)
from docketsync.models.api import CycleSummary
from docketsync.models.courier import CourierTracking
from docketsync.models.tracking import (
    LifecycleStage,
    TrackingEvent,
    TrackingOrder,
    can_transition,
)

logger = logging.getLogger(__name__)


class OutcomeKind(StrEnum):
    """Result of reconciling one order"""

    UPDATED = "updated"  # New lifecycle stage recorded
    UNCHANGED = "unchanged"  # Polled, nothing new
    SKIPPED = "skipped"  # Terminal, docketless or missing
    FLAGGED = "flagged"  # Flagged for manual review
    FAILED = "failed"  # Error; left untouched until next cycle


class OrderOutcome(BaseModel):
    """Outcome of one reconcile_order call"""

    order_number: str
    kind: OutcomeKind
    previous_status: Optional[LifecycleStage] = None
    status: Optional[LifecycleStage] = None
    error_kind: Optional[str] = Field(
        default=None, description="TrackingError.kind for failed/flagged orders"
    )
    message: Optional[str] = None


def merge_courier_events(
    order: TrackingOrder,
    tracking: CourierTracking,
    normalizer: StatusNormalizer,
    polled_at: datetime,
) -> TrackingOrder:
    """
    Apply courier events to an order without touching storage.

    Events are taken oldest first. An event is appended only when its stage
    is a legal move from the current stage, so history never moves backwards
    (CANCELLED aside) and nothing follows a terminal stage. An appended event
    older than the last entry is recorded at that entry's timestamp. A
    successful fetch clears any review flag.

    Args:
        order: Stored order
        tracking: Courier response for the order's docket
        normalizer: Stage classifier
        polled_at: Poll time to record

    Returns:
        Copy of the order with new history, status and poll fields
    """
    history = list(order.history)
    current = order.status
    last_timestamp = history[-1].timestamp if history else None

    for event in sorted(tracking.events, key=lambda e: e.timestamp):
        if current.is_terminal:
            break

        stage = normalizer.normalize(event, previous=current)
        if not can_transition(current, stage):
            continue

        timestamp = event.timestamp
        if last_timestamp is not None and timestamp < last_timestamp:
            timestamp = last_timestamp

        history.append(
            TrackingEvent(
                stage=stage,
                code=event.code,
                description=event.description,
                location=event.location,
                timestamp=timestamp,
            )
        )
        current = stage
        last_timestamp = timestamp

    return order.model_copy(
        update={
            "history": history,
            "status": current,
            "last_polled_at": polled_at,
            "estimated_delivery": tracking.estimated_delivery or order.estimated_delivery,
            # Docket found: clear any not-found flag
            "needs_review": False,
            "review_reason": None,
        }
    )


class TrackingReconciler:
    """
    Reconciles stored tracking orders against the courier.

    Usage:
        reconciler = TrackingReconciler(Sequel247Gateway(settings.courier), settings)
        outcome = reconciler.reconcile_order("JW-20240101-0001")
        summary = reconciler.reconcile_pending()
    """

    def __init__(
        self,
        gateway: CourierGateway,
        settings: Settings,
        normalizer: StatusNormalizer | None = None,
        unit_of_work_factory: Callable[[], UnitOfWork] = UnitOfWork,
    ):
        self.gateway = gateway
        self.settings = settings
        self.normalizer = normalizer or StatusNormalizer()
        self.unit_of_work_factory = unit_of_work_factory

    def reconcile_order(self, order_number: str) -> OrderOutcome:
        """
        Poll the courier for one order and persist any progress.

        Never raises for TrackingError subclasses; they are reported in the
        outcome.
        """
        try:
            with self.unit_of_work_factory() as uow:
                order = uow.tracking_orders.get_by_order_number(order_number)
        except TrackingError as e:
            return self._failed(order_number, e)

        if order is None:
            logger.warning("Tracking order %s not found, skipping", order_number)
            return OrderOutcome(
                order_number=order_number,
                kind=OutcomeKind.SKIPPED,
                message="Order not found",
            )

        if not order.is_pollable:
            return OrderOutcome(
                order_number=order.order_number,
                kind=OutcomeKind.SKIPPED,
                previous_status=order.status,
                status=order.status,
            )

        try:
            tracking = self.gateway.fetch_tracking(order.docket_number)
        except NotFoundError as e:
            return self._flag(order, e)
        except TrackingError as e:
            return self._failed(order.order_number, e, previous_status=order.status)

        merged = merge_courier_events(
            order, tracking, self.normalizer, datetime.now(timezone.utc)
        )

        try:
            with self.unit_of_work_factory() as uow:
                stored = uow.tracking_orders.apply_update(
                    merged, expected_version=order.version
                )
                uow.commit()
        except TrackingError as e:
            return self._failed(order.order_number, e, previous_status=order.status)

        if stored.status == order.status:
            return OrderOutcome(
                order_number=stored.order_number,
                kind=OutcomeKind.UNCHANGED,
                previous_status=order.status,
                status=stored.status,
            )

        logger.info(
            "Order %s moved %s -> %s",
            stored.order_number,
            order.status.value,
            stored.status.value,
            extra={
                "json_fields": {
                    "order_number": stored.order_number,
                    "docket_number": stored.docket_number,
                    "previous_status": order.status.value,
                    "status": stored.status.value,
                    "new_events": len(stored.history) - len(order.history),
                }
            },
        )
        return OrderOutcome(
            order_number=stored.order_number,
            kind=OutcomeKind.UPDATED,
            previous_status=order.status,
            status=stored.status,
        )

    def reconcile_pending(self, trigger: str = "scheduled") -> CycleSummary:
        """
        Reconcile every eligible order once.

        Orders are processed on a thread pool bounded by
        settings.max_workers. Only a failure to list the pending orders
        propagates; per-order failures are counted in the summary.

        Args:
            trigger: Label recorded in the summary ("scheduled", "manual")

        Returns:
            CycleSummary with per-outcome counts
        """
        started_at = datetime.now(timezone.utc)

        with self.unit_of_work_factory() as uow:
            order_numbers = uow.tracking_orders.list_pending_order_numbers()

        logger.info(
            "Reconciling %d pending orders (%s)", len(order_numbers), trigger
        )

        outcomes: list[OrderOutcome] = []
        if order_numbers:
            workers = min(self.settings.max_workers, len(order_numbers))
            with ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="reconcile"
            ) as pool:
                outcomes = list(pool.map(self._reconcile_isolated, order_numbers))

        kinds = Counter(outcome.kind for outcome in outcomes)
        errors_by_kind = Counter(
            outcome.error_kind for outcome in outcomes if outcome.kind == OutcomeKind.FAILED
        )

        summary = CycleSummary(
            trigger=trigger,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            total_orders=len(order_numbers),
            updated=kinds[OutcomeKind.UPDATED],
            unchanged=kinds[OutcomeKind.UNCHANGED],
            skipped=kinds[OutcomeKind.SKIPPED],
            flagged=kinds[OutcomeKind.FLAGGED],
            failed=kinds[OutcomeKind.FAILED],
            errors_by_kind=dict(errors_by_kind),
        )

        logger.info(
            "Tracking cycle finished: %s",
            summary.message,
            extra={"json_fields": summary.model_dump(mode="json")},
        )
        return summary

    def cancel_order(self, order: TrackingOrder, reason: str) -> TrackingOrder:
        """
        Cancel an order's shipment with the courier and record CANCELLED.

        Args:
            order: Stored, non-terminal order with a docket number
            reason: Cancellation reason sent to the courier

        Returns:
            The stored order after the update

        Raises:
            ValidationError: Order is terminal or has no docket
            GatewayError / AuthError / NotFoundError: Courier refused the cancellation
            ConcurrentUpdateError: Order changed while cancelling
        """
        if not order.is_pollable:
            raise ValidationError(
                f"Order {order.order_number} cannot be cancelled in status {order.status.value}",
                order_number=order.order_number,
            )

        self.gateway.cancel_shipment(order.docket_number, reason)

        now = datetime.now(timezone.utc)
        last = order.last_event
        timestamp = max(now, last.timestamp) if last else now
        cancelled = order.model_copy(
            update={
                "status": LifecycleStage.CANCELLED,
                "history": order.history
                + [
                    TrackingEvent(
                        stage=LifecycleStage.CANCELLED,
                        code="CANCELLED",
                        description=reason,
                        timestamp=timestamp,
                    )
                ],
            }
        )

        with self.unit_of_work_factory() as uow:
            stored = uow.tracking_orders.apply_update(
                cancelled, expected_version=order.version
            )
            uow.commit()

        logger.info(
            "Order %s cancelled from %s",
            stored.order_number,
            order.status.value,
            extra={
                "json_fields": {
                    "order_number": stored.order_number,
                    "docket_number": stored.docket_number,
                    "previous_status": order.status.value,
                    "reason": reason,
                }
            },
        )
        return stored

    def _reconcile_isolated(self, order_number: str) -> OrderOutcome:
        """reconcile_order for pool workers: unexpected errors become failures."""
        try:
            return self.reconcile_order(order_number)
        except Exception as e:
            logger.exception("Unexpected error reconciling order %s", order_number)
            return OrderOutcome(
                order_number=order_number,
                kind=OutcomeKind.FAILED,
                error_kind="error",
                message=str(e),
            )

    def _flag(self, order: TrackingOrder, error: NotFoundError) -> OrderOutcome:
        reason = f"Docket {order.docket_number} not found at courier"
        logger.warning(
            "Flagging order %s for review: %s",
            order.order_number,
            error.message,
            extra={
                "json_fields": {
                    "order_number": order.order_number,
                    "docket_number": order.docket_number,
                    "error_kind": error.kind,
                }
            },
        )
        try:
            with self.unit_of_work_factory() as uow:
                uow.tracking_orders.flag_for_review(order.order_number, reason)
                uow.commit()
        except TrackingError as e:
            return self._failed(order.order_number, e, previous_status=order.status)

        return OrderOutcome(
            order_number=order.order_number,
            kind=OutcomeKind.FLAGGED,
            previous_status=order.status,
            status=order.status,
            error_kind=error.kind,
            message=reason,
        )

    def _failed(
        self,
        order_number: str,
        error: TrackingError,
        previous_status: LifecycleStage | None = None,
    ) -> OrderOutcome:
        log = logger.error if isinstance(error, AuthError) else logger.warning
        log(
            "Skipping order %s (%s): %s",
            order_number,
            error.kind,
            error.message,
            extra={
                "json_fields": {
                    "order_number": order_number,
                    "error_kind": error.kind,
                    "error": error.message,
                }
            },
        )
        return OrderOutcome(
            order_number=order_number,
            kind=OutcomeKind.FAILED,
            previous_status=previous_status,
            status=previous_status,
            error_kind=error.kind,
            message=error.message,
        )
