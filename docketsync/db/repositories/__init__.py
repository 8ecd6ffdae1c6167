"""
Repository implementations for the tracking database.

Repositories provide a clean interface for database operations,
encapsulating SQLAlchemy queries and Pydantic model conversions.
"""

from docketsync.db.repositories.tracking_order import TrackingOrderRepository

__all__ = ["TrackingOrderRepository"]
