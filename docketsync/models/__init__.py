"""
Docketsync data models.

This package contains all Pydantic models for the shipment tracking service.
"""

# API payloads
from docketsync.models.api import (
    CancelShipmentRequest,
    CycleSummary,
    ManualUpdateResponse,
    RecentActivity,
    SchedulerState,
    SystemHealth,
    TrackingOrderCreateRequest,
    TrackingStats,
    TrackingStep,
    TrackingView,
)

# Courier payloads
from docketsync.models.courier import (
    CourierTracking,
    SequelResponse,
    SequelTrackingData,
    SequelTrackingEvent,
)

# Tracking models
from docketsync.models.tracking import (
    STAGE_INFO,
    STAGE_PROGRESSION,
    CourierEvent,
    LifecycleStage,
    TrackingEvent,
    TrackingOrder,
    can_transition,
)

__all__ = [
    # Tracking models
    "STAGE_INFO",
    "STAGE_PROGRESSION",
    "CourierEvent",
    "LifecycleStage",
    "TrackingEvent",
    "TrackingOrder",
    "can_transition",
    # Courier payloads
    "CourierTracking",
    "SequelResponse",
    "SequelTrackingData",
    "SequelTrackingEvent",
    # API payloads
    "CancelShipmentRequest",
    "CycleSummary",
    "ManualUpdateResponse",
    "RecentActivity",
    "SchedulerState",
    "SystemHealth",
    "TrackingOrderCreateRequest",
    "TrackingStats",
    "TrackingStep",
    "TrackingView",
]
