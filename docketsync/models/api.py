"""
Request and response payloads for the tracking HTTP API.

Field names are camelCase on the wire and snake_case in Python.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from docketsync.models.tracking import LifecycleStage, TrackingEvent, normalize_email


class ApiModel(BaseModel):
    """Base model serializing to camelCase JSON"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CycleSummary(ApiModel):
    """Outcome counts for one reconcile cycle"""

    trigger: str = Field(description="What started the cycle (scheduled/manual)")
    started_at: datetime = Field(description="Cycle start time")
    finished_at: Optional[datetime] = Field(
        default=None, description="Cycle finish time"
    )
    total_orders: int = Field(default=0, description="Eligible orders examined")
    updated: int = Field(default=0, description="Orders whose state changed")
    unchanged: int = Field(default=0, description="Orders polled with no new stage")
    skipped: int = Field(default=0, description="Terminal or docketless orders")
    flagged: int = Field(default=0, description="Orders flagged for manual review")
    failed: int = Field(default=0, description="Orders that failed this cycle")
    errors_by_kind: dict[str, int] = Field(
        default_factory=dict, description="Failure counts keyed by error kind"
    )

    @property
    def message(self) -> str:
        return f"Updated {self.updated} orders, {self.failed} errors"


class ManualUpdateResponse(ApiModel):
    """Response for POST /tracking/manual-update"""

    success: bool = Field(description="Whether the cycle ran to completion")
    already_running: bool = Field(
        default=False, description="A cycle was already in progress"
    )
    message: str = Field(description="Human readable result")
    summary: Optional[CycleSummary] = Field(
        default=None, description="Cycle summary (absent when already running)"
    )


class RecentActivity(ApiModel):
    """One recently updated order"""

    order_number: str
    status: LifecycleStage
    updated_at: datetime


class SchedulerState(ApiModel):
    """Scheduler state reported by the health check"""

    running: bool = Field(description="Whether the interval timer is active")
    cycle_in_progress: bool = Field(description="Whether a cycle is running now")
    interval_minutes: int = Field(description="Poll interval")
    last_cycle: Optional[CycleSummary] = Field(
        default=None, description="Most recent completed cycle"
    )


class SystemHealth(ApiModel):
    """Response for GET /system/health"""

    status: str = Field(default="healthy", description="Overall status")
    orders_to_update: int = Field(description="Non-terminal orders with a docket")
    stale_orders: int = Field(
        default=0,
        description="Pending orders not polled within two poll intervals",
    )
    recent_activity: list[RecentActivity] = Field(
        default_factory=list, description="Most recently updated orders"
    )
    scheduler: Optional[SchedulerState] = Field(
        default=None, description="Scheduler state"
    )


class TrackingStep(ApiModel):
    """One lifecycle step in a tracking view"""

    status: LifecycleStage
    title: str
    description: str
    completed: bool
    active: bool
    timestamp: Optional[datetime] = None
    location: Optional[str] = None


class TrackingView(ApiModel):
    """Customer-facing tracking summary for one order"""

    order_number: str
    docket_number: Optional[str] = None
    status: LifecycleStage
    progress: int = Field(description="Progress percentage (0-100)")
    estimated_delivery: Optional[datetime] = None
    steps: list[TrackingStep] = Field(default_factory=list)
    history: list[TrackingEvent] = Field(default_factory=list)
    needs_review: bool = False
    updated_at: datetime


class TrackingStats(ApiModel):
    """Response for GET /tracking/stats"""

    total_orders: int
    orders_by_status: dict[LifecycleStage, int]


class TrackingOrderCreateRequest(ApiModel):
    """Request to register a shipped order"""

    order_number: str = Field(description="Storefront order number")
    docket_number: str = Field(description="Courier docket number")
    customer_email: str = Field(description="Customer email used to look the order up")
    estimated_delivery: Optional[datetime] = Field(
        default=None, description="Estimated delivery, if known"
    )

    @field_validator("order_number")
    @classmethod
    def _check_order_number(cls, value: str) -> str:
        value = value.strip().upper()
        if not 8 <= len(value) <= 30:
            raise ValueError("order number must be 8-30 characters")
        if not all(ch.isalnum() or ch == "-" for ch in value):
            raise ValueError("order number may contain only letters, digits and '-'")
        return value

    @field_validator("customer_email")
    @classmethod
    def _check_customer_email(cls, value: str) -> str:
        return normalize_email(value)


class OrderHistoryResponse(ApiModel):
    """Response for GET /tracking/history"""

    email: str
    orders: list[TrackingView] = Field(default_factory=list)


class CancelShipmentRequest(ApiModel):
    """Request to cancel a shipment"""

    reason: str = Field(
        default="Cancelled by merchant", description="Cancellation reason"
    )
