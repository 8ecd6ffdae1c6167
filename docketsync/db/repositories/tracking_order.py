"""
Tracking order repository for database operations.

Handles tracking order persistence with JSONB history and the
version-checked update used by the reconciler.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Table, func, select, update

from docketsync.db.repositories.base import (
    BaseRepository,
    jsonb_to_models,
    models_to_jsonb,
)
from docketsync.db.tables import tracking_orders
from docketsync.exceptions import ConcurrentUpdateError
from docketsync.models.api import RecentActivity
from docketsync.models.tracking import (
    TERMINAL_STAGES,
    LifecycleStage,
    TrackingEvent,
    TrackingOrder,
)

_TERMINAL_VALUES = [stage.value for stage in TERMINAL_STAGES]


class TrackingOrderRepository(BaseRepository[TrackingOrder]):
    """Repository for TrackingOrder operations."""

    @property
    def table(self) -> Table:
        return tracking_orders

    def _row_to_model(self, row: Any) -> TrackingOrder:
        """Convert database row to TrackingOrder model."""
        return TrackingOrder(
            id=str(row.id),
            order_number=row.order_number,
            docket_number=row.docket_number,
            customer_email=row.customer_email,
            status=LifecycleStage(row.status),
            estimated_delivery=row.estimated_delivery,
            history=jsonb_to_models(row.history, TrackingEvent),
            last_polled_at=row.last_polled_at,
            needs_review=bool(row.needs_review),
            review_reason=row.review_reason,
            version=row.version,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _model_to_dict(self, model: TrackingOrder) -> dict:
        """Convert TrackingOrder model to database dict."""
        return {
            "id": UUID(model.id) if model.id else uuid4(),
            "order_number": model.order_number,
            "docket_number": model.docket_number,
            "customer_email": model.customer_email,
            "status": model.status.value,
            "estimated_delivery": model.estimated_delivery,
            "history": models_to_jsonb(model.history),
            "last_polled_at": model.last_polled_at,
            "needs_review": model.needs_review,
            "review_reason": model.review_reason,
            "version": model.version,
            "created_at": model.created_at,
            "updated_at": model.updated_at,
        }

    def _pending_clause(self):
        """Orders the poll cycle should visit: docket present, not terminal."""
        return (self.table.c.docket_number.isnot(None)) & (
            self.table.c.status.notin_(_TERMINAL_VALUES)
        )

    def get_by_order_number(self, order_number: str) -> TrackingOrder | None:
        """
        Get tracking order by storefront order number.

        Args:
            order_number: Order number (case-insensitive)

        Returns:
            TrackingOrder or None
        """
        stmt = select(self.table).where(
            self.table.c.order_number == order_number.strip().upper()
        )
        row = self.session.execute(stmt).fetchone()

        if row is None:
            return None

        return self._to_model(row)

    def get_by_order_number_and_email(
        self, order_number: str, email: str
    ) -> TrackingOrder | None:
        """
        Get tracking order by order number, only if it belongs to the customer.

        Args:
            order_number: Order number (case-insensitive)
            email: Customer email (case-insensitive)

        Returns:
            TrackingOrder or None if the order is unknown or the email differs
        """
        stmt = (
            select(self.table)
            .where(self.table.c.order_number == order_number.strip().upper())
            .where(self.table.c.customer_email == email.strip().lower())
        )
        row = self.session.execute(stmt).fetchone()

        if row is None:
            return None

        return self._to_model(row)

    def list_by_customer_email(self, email: str, limit: int = 10) -> list[TrackingOrder]:
        """
        List a customer's orders, newest first.

        Args:
            email: Customer email (case-insensitive)
            limit: Maximum orders
        """
        stmt = (
            select(self.table)
            .where(self.table.c.customer_email == email.strip().lower())
            .order_by(self.table.c.created_at.desc())
            .limit(limit)
        )
        return [self._to_model(row) for row in self.session.execute(stmt).fetchall()]

    def get_by_docket_number(self, docket_number: str) -> TrackingOrder | None:
        """Get tracking order by courier docket number."""
        stmt = select(self.table).where(
            self.table.c.docket_number == docket_number.strip()
        )
        row = self.session.execute(stmt).fetchone()

        if row is None:
            return None

        return self._to_model(row)

    def list_pending_order_numbers(self) -> list[str]:
        """
        List order numbers eligible for polling.

        Least recently polled first; never-polled orders lead.
        """
        stmt = (
            select(self.table.c.order_number)
            .where(self._pending_clause())
            .order_by(
                self.table.c.last_polled_at.asc().nulls_first(),
                self.table.c.created_at.asc(),
            )
        )
        return [row.order_number for row in self.session.execute(stmt).fetchall()]

    def count_pending(self) -> int:
        """Count non-terminal orders with a docket number."""
        stmt = select(func.count()).select_from(self.table).where(self._pending_clause())
        return self.session.execute(stmt).scalar() or 0

    def count_stale(self, polled_before: datetime) -> int:
        """
        Count pending orders not polled since a cutoff.

        Args:
            polled_before: Orders last polled before this time (or never) count
        """
        stmt = (
            select(func.count())
            .select_from(self.table)
            .where(self._pending_clause())
            .where(
                (self.table.c.last_polled_at.is_(None))
                | (self.table.c.last_polled_at < polled_before)
            )
        )
        return self.session.execute(stmt).scalar() or 0

    def recent_activity(self, limit: int = 5) -> list[RecentActivity]:
        """
        Most recently updated orders that have moved past ORDER_PLACED.

        Args:
            limit: Maximum entries

        Returns:
            Activity entries, newest first
        """
        stmt = (
            select(
                self.table.c.order_number,
                self.table.c.status,
                self.table.c.updated_at,
            )
            .where(self.table.c.status != LifecycleStage.ORDER_PLACED.value)
            .order_by(self.table.c.updated_at.desc())
            .limit(limit)
        )
        return [
            RecentActivity(
                order_number=row.order_number,
                status=LifecycleStage(row.status),
                updated_at=row.updated_at,
            )
            for row in self.session.execute(stmt).fetchall()
        ]

    def count_by_status(self) -> dict[LifecycleStage, int]:
        """Count orders per lifecycle stage (every stage present, zero if none)."""
        stmt = select(self.table.c.status, func.count()).group_by(self.table.c.status)
        counts = {stage: 0 for stage in LifecycleStage}
        for status, count in self.session.execute(stmt).fetchall():
            counts[LifecycleStage(status)] = count
        return counts

    def apply_update(self, order: TrackingOrder, expected_version: int) -> TrackingOrder:
        """
        Persist reconciled state with a single version-checked UPDATE.

        Args:
            order: Order carrying the new status, history and poll fields
            expected_version: Version the caller read

        Returns:
            The stored order with its new version

        Raises:
            ConcurrentUpdateError: The row changed (or vanished) since it was read
        """
        now = datetime.now(timezone.utc)
        stmt = (
            update(self.table)
            .where(self.table.c.order_number == order.order_number)
            .where(self.table.c.version == expected_version)
            .values(
                status=order.status.value,
                history=models_to_jsonb(order.history),
                estimated_delivery=order.estimated_delivery,
                last_polled_at=order.last_polled_at,
                needs_review=order.needs_review,
                review_reason=order.review_reason,
                version=expected_version + 1,
                updated_at=now,
            )
            .returning(self.table)
        )
        row = self.session.execute(stmt).fetchone()

        if row is None:
            raise ConcurrentUpdateError(
                f"Order {order.order_number} changed since version {expected_version}",
                order_number=order.order_number,
            )

        return self._to_model(row)

    def flag_for_review(self, order_number: str, reason: str) -> bool:
        """
        Mark an order for operator review.

        Status, history and poll time are left untouched.

        Returns:
            True if the order was flagged
        """
        stmt = (
            update(self.table)
            .where(self.table.c.order_number == order_number.strip().upper())
            .values(
                needs_review=True,
                review_reason=reason,
                version=self.table.c.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
        )
        result = self.session.execute(stmt)
        return result.rowcount > 0
