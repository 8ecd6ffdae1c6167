import re
from datetime import datetime, timezone
from enum import StrEnum
from typing import NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_email(value: str) -> str:
    """
    Lower-case and check a customer email address.

    Raises:
        ValueError: If the address is malformed
    """
    email = (value or "").strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValueError(f"Invalid email address: {value!r}")
    return email


class LifecycleStage(StrEnum):
    """Internal order lifecycle stage"""

    ORDER_PLACED = "ORDER_PLACED"  # Docket assigned, courier not yet moving
    PROCESSING = "PROCESSING"  # Checked in at courier hub
    PACKAGING = "PACKAGING"  # Packed / picked up
    ON_THE_ROAD = "ON_THE_ROAD"  # In transit or out for delivery
    DELIVERED = "DELIVERED"  # Delivered to consignee
    CANCELLED = "CANCELLED"  # Shipment cancelled

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STAGES

    @property
    def rank(self) -> int:
        """Position in the forward lifecycle; CANCELLED sits outside it."""
        if self is LifecycleStage.CANCELLED:
            return -1
        return STAGE_PROGRESSION.index(self)


# Forward lifecycle - higher index = later stage
STAGE_PROGRESSION = [
    LifecycleStage.ORDER_PLACED,
    LifecycleStage.PROCESSING,
    LifecycleStage.PACKAGING,
    LifecycleStage.ON_THE_ROAD,
    LifecycleStage.DELIVERED,
]

TERMINAL_STAGES = frozenset({LifecycleStage.DELIVERED, LifecycleStage.CANCELLED})


def can_transition(current: LifecycleStage, new: LifecycleStage) -> bool:
    """
    Check whether a stored order may move from `current` to `new`.

    Terminal stages never move. CANCELLED is reachable from any
    non-terminal stage; otherwise the stage must strictly advance.
    """
    if current.is_terminal or new == current:
        return False
    if new is LifecycleStage.CANCELLED:
        return True
    return new.rank > current.rank


class StageInfo(NamedTuple):
    title: str
    description: str
    progress: int


STAGE_INFO: dict[LifecycleStage, StageInfo] = {
    LifecycleStage.ORDER_PLACED: StageInfo(
        "Order Placed", "Your order has been successfully placed", 20
    ),
    LifecycleStage.PROCESSING: StageInfo(
        "Processing", "Your order is being processed", 40
    ),
    LifecycleStage.PACKAGING: StageInfo(
        "Packaging", "Your order is being carefully packaged", 60
    ),
    LifecycleStage.ON_THE_ROAD: StageInfo(
        "On The Road", "Your order is on its way to you", 80
    ),
    LifecycleStage.DELIVERED: StageInfo(
        "Delivered", "Your order has been delivered", 100
    ),
    LifecycleStage.CANCELLED: StageInfo(
        "Cancelled", "Your order has been cancelled", 0
    ),
}


class CourierEvent(BaseModel):
    """Courier scan event, already parsed out of the vendor payload"""

    model_config = ConfigDict(frozen=True)

    code: str = Field(description="Courier status code")
    description: str = Field(default="", description="Free-text courier status")
    location: Optional[str] = Field(default=None, description="Scan location")
    timestamp: datetime = Field(description="Event time (UTC)")


class TrackingEvent(BaseModel):
    """Entry in an order's tracking history"""

    stage: LifecycleStage = Field(description="Normalized lifecycle stage")
    code: str = Field(description="Courier status code that produced this entry")
    description: str = Field(default="", description="Event description")
    location: Optional[str] = Field(default=None, description="Event location")
    timestamp: datetime = Field(description="Event timestamp")


class TrackingOrder(BaseModel):
    """
    Shipment tracking state for one storefront order.

    `status` mirrors the stage of the newest `history` entry. History is
    append-only and kept in ascending timestamp order; only the reconciler
    (and operator cancellation) appends to it. Validation rejects records
    that break either rule, so corrupt rows never load.
    """

    # Identity
    id: str = Field(description="Internal record identifier (UUID)")
    order_number: str = Field(description="Storefront order number")
    docket_number: Optional[str] = Field(
        default=None, description="Courier-assigned docket number"
    )
    customer_email: Optional[str] = Field(
        default=None, description="Customer email, required to look the order up"
    )

    # Lifecycle
    status: LifecycleStage = Field(
        default=LifecycleStage.ORDER_PLACED, description="Current lifecycle stage"
    )
    estimated_delivery: Optional[datetime] = Field(
        default=None, description="Courier estimated delivery"
    )
    history: list[TrackingEvent] = Field(
        default_factory=list, description="Tracking history, oldest first"
    )
    last_polled_at: Optional[datetime] = Field(
        default=None, description="Last successful courier poll"
    )

    # Manual review
    needs_review: bool = Field(
        default=False, description="Flagged for operator review"
    )
    review_reason: Optional[str] = Field(
        default=None, description="Why the order was flagged"
    )

    # Concurrency
    version: int = Field(default=1, description="Optimistic concurrency token")

    # Timestamps
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Record creation time",
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Last update time",
    )

    @field_validator("order_number")
    @classmethod
    def _normalize_order_number(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("order_number must not be empty")
        return value

    @field_validator("customer_email")
    @classmethod
    def _normalize_customer_email(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else normalize_email(value)

    @model_validator(mode="after")
    def _check_history(self) -> "TrackingOrder":
        if not self.history:
            raise ValueError("history must contain at least one entry")
        if self.history[-1].stage != self.status:
            raise ValueError(
                f"status {self.status.value} does not match latest history stage "
                f"{self.history[-1].stage.value}"
            )
        for earlier, later in zip(self.history, self.history[1:]):
            if later.timestamp < earlier.timestamp:
                raise ValueError("history must be in ascending timestamp order")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_pollable(self) -> bool:
        return bool(self.docket_number) and not self.is_terminal

    @property
    def last_event(self) -> TrackingEvent | None:
        return self.history[-1] if self.history else None
