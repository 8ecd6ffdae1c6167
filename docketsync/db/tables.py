"""
SQLAlchemy Table definitions for the tracking database.

These Table objects mirror the schema defined in migrations/*.sql.
Uses SQLAlchemy Core (not ORM) so rows map straight onto Pydantic models.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID

metadata = MetaData()

# =============================================================================
# TABLE: tracking_orders
# =============================================================================

tracking_orders = Table(
    "tracking_orders",
    metadata,
    Column("id", UUID, primary_key=True),
    Column("order_number", String(30), unique=True, nullable=False),
    Column("docket_number", String(20)),
    Column("customer_email", String(254)),
    Column("status", String(20), nullable=False, default="ORDER_PLACED"),
    Column("estimated_delivery", DateTime(timezone=True)),
    # Append-only stage history (JSONB array of TrackingEvent)
    Column("history", JSONB, nullable=False, default=[]),
    Column("last_polled_at", DateTime(timezone=True)),
    # Manual review
    Column("needs_review", Boolean, nullable=False, default=False),
    Column("review_reason", Text),
    # Optimistic concurrency token
    Column("version", Integer, nullable=False, default=1),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)
