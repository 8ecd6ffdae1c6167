"""
Unit of Work pattern for transaction coordination.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from docketsync.db.connection import DatabaseConnection
from docketsync.db.repositories.tracking_order import TrackingOrderRepository

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


class UnitOfWork:
    """
    Unit of Work for managing database transactions.

    Usage:
        with UnitOfWork() as uow:
            order = uow.tracking_orders.get_by_order_number("JW-20240101-0001")
            uow.tracking_orders.apply_update(order, expected_version=order.version)
            uow.commit()  # Explicit commit

    Leaving the block without commit() discards the transaction; an
    exception rolls it back.
    """

    def __init__(self):
        self._session: Session | None = None
        self._tracking_orders: TrackingOrderRepository | None = None

    def __enter__(self) -> UnitOfWork:
        self._session = DatabaseConnection.get_session()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.rollback()
        self._close()
        return False  # Don't suppress exceptions

    @property
    def session(self) -> Session:
        """Get current session (raises if not in context)."""
        if self._session is None:
            raise RuntimeError("UnitOfWork must be used within a context manager")
        return self._session

    @property
    def tracking_orders(self) -> TrackingOrderRepository:
        """Tracking order repository for this unit of work."""
        if self._tracking_orders is None:
            self._tracking_orders = TrackingOrderRepository(self.session)
        return self._tracking_orders

    def commit(self):
        """Commit the current transaction."""
        self.session.commit()

    def rollback(self):
        """Rollback the current transaction."""
        self.session.rollback()

    def _close(self):
        if self._session is not None:
            self._session.close()
            self._session = None
            self._tracking_orders = None
