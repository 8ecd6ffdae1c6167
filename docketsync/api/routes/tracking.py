"""
Tracking API routes.

Manual reconcile trigger, order registration, customer lookup and history,
shipment cancellation and per-stage statistics.
"""

import logging
from datetime import datetime, timezone
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import IntegrityError

from docketsync.api.dependencies import get_reconciler, get_scheduler
from docketsync.courier.gateway import validate_docket_number
from docketsync.db import DatabaseConnection, UnitOfWork
from docketsync.exceptions import ConcurrentUpdateError, TrackingError, ValidationError
from docketsync.models.api import (
    CancelShipmentRequest,
    ManualUpdateResponse,
    OrderHistoryResponse,
    TrackingOrderCreateRequest,
    TrackingStats,
    TrackingStep,
    TrackingView,
)
from docketsync.models.tracking import (
    STAGE_INFO,
    STAGE_PROGRESSION,
    LifecycleStage,
    TrackingEvent,
    TrackingOrder,
    normalize_email,
)
from docketsync.tracking.reconciler import TrackingReconciler
from docketsync.tracking.scheduler import TrackingScheduler

logger = logging.getLogger(__name__)

router = APIRouter()


def _check_db_available():
    """Check if database is available, raise 503 if not."""
    if not DatabaseConnection.is_initialized():
        raise HTTPException(
            status_code=503,
            detail="Database not available",
        )


def _validated_email(email: str) -> str:
    try:
        return normalize_email(email)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


def _step(stage: LifecycleStage, order: TrackingOrder, completed: bool) -> TrackingStep:
    info = STAGE_INFO[stage]
    entry = next((e for e in order.history if e.stage == stage), None)
    return TrackingStep(
        status=stage,
        title=info.title,
        description=info.description,
        completed=completed,
        active=stage == order.status,
        timestamp=entry.timestamp if entry else None,
        location=entry.location if entry else None,
    )


def build_tracking_view(order: TrackingOrder) -> TrackingView:
    """
    Customer-facing view of an order's progress.

    Forward stages are listed in lifecycle order. A cancelled order shows
    the forward stages it actually reached, followed by CANCELLED.
    """
    if order.status == LifecycleStage.CANCELLED:
        reached = {entry.stage for entry in order.history}
        steps = [_step(stage, order, True) for stage in STAGE_PROGRESSION if stage in reached]
        steps.append(_step(LifecycleStage.CANCELLED, order, True))
    else:
        current_rank = order.status.rank
        steps = [
            _step(stage, order, stage.rank <= current_rank) for stage in STAGE_PROGRESSION
        ]

    return TrackingView(
        order_number=order.order_number,
        docket_number=order.docket_number,
        status=order.status,
        progress=STAGE_INFO[order.status].progress,
        estimated_delivery=order.estimated_delivery,
        steps=steps,
        history=order.history,
        needs_review=order.needs_review,
        updated_at=order.updated_at,
    )


@router.post("/tracking/manual-update", response_model=ManualUpdateResponse)
def manual_update(
    scheduler: TrackingScheduler = Depends(get_scheduler),
) -> ManualUpdateResponse:
    """
    Run one reconcile cycle now.

    Returns 200 with alreadyRunning=true, without queuing, if a cycle is
    already in progress.

    Raises:
        503: Database not available
    """
    _check_db_available()

    result = scheduler.trigger_manual()
    logger.info("Manual tracking update: %s", result.message)
    return result


@router.post(
    "/tracking/orders",
    response_model=TrackingView,
    status_code=status.HTTP_201_CREATED,
)
async def register_order(request: TrackingOrderCreateRequest) -> TrackingView:
    """
    Register a shipped order for tracking.

    The order starts at ORDER_PLACED with a single history entry.

    Raises:
        409: Order number already registered
        422: Invalid docket number
    """
    _check_db_available()

    try:
        docket_number = validate_docket_number(request.docket_number)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.message)

    try:
        with UnitOfWork() as uow:
            existing = uow.tracking_orders.get_by_order_number(request.order_number)
            if existing is not None:
                raise HTTPException(
                    status_code=409,
                    detail=f"Order already registered: {request.order_number}",
                )

            now = datetime.now(timezone.utc)
            order = TrackingOrder(
                id=str(uuid4()),
                order_number=request.order_number,
                docket_number=docket_number,
                customer_email=request.customer_email,
                status=LifecycleStage.ORDER_PLACED,
                estimated_delivery=request.estimated_delivery,
                history=[
                    TrackingEvent(
                        stage=LifecycleStage.ORDER_PLACED,
                        code="CREATED",
                        description=STAGE_INFO[LifecycleStage.ORDER_PLACED].description,
                        timestamp=now,
                    )
                ],
                created_at=now,
                updated_at=now,
            )

            created = uow.tracking_orders.create(order)
            uow.commit()

        logger.info(
            "Registered order %s with docket %s",
            created.order_number,
            created.docket_number,
        )
        return build_tracking_view(created)

    except HTTPException:
        raise
    except IntegrityError:
        raise HTTPException(
            status_code=409,
            detail=f"Order already registered: {request.order_number}",
        )
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to register order: {str(e)}",
        )


@router.get("/tracking/orders/{order_number}", response_model=TrackingView)
async def get_tracking(
    order_number: str,
    email: str = Query(..., description="Customer email the order was registered with"),
) -> TrackingView:
    """
    Get tracking progress for an order.

    The order is only returned when the email matches the one it was
    registered with; a mismatch is reported as not found.

    Raises:
        404: Order not found for this email
        422: Malformed email
    """
    _check_db_available()
    email = _validated_email(email)

    try:
        with UnitOfWork() as uow:
            order = uow.tracking_orders.get_by_order_number_and_email(order_number, email)

        if order is None:
            raise HTTPException(
                status_code=404,
                detail=f"Order not found: {order_number}",
            )

        return build_tracking_view(order)

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get tracking: {str(e)}",
        )


@router.get("/tracking/history", response_model=OrderHistoryResponse)
async def get_order_history(
    email: str = Query(..., description="Customer email"),
    limit: int = Query(default=10, ge=1, le=50, description="Maximum orders"),
) -> OrderHistoryResponse:
    """
    List a customer's tracked orders, newest first.

    Raises:
        422: Malformed email
    """
    _check_db_available()
    email = _validated_email(email)

    try:
        with UnitOfWork() as uow:
            orders = uow.tracking_orders.list_by_customer_email(email, limit=limit)

        return OrderHistoryResponse(
            email=email,
            orders=[build_tracking_view(order) for order in orders],
        )

    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get order history: {str(e)}",
        )


@router.post("/tracking/orders/{order_number}/cancel", response_model=TrackingView)
def cancel_shipment(
    order_number: str,
    request: CancelShipmentRequest | None = None,
    reconciler: TrackingReconciler = Depends(get_reconciler),
) -> TrackingView:
    """
    Cancel an order's shipment with the courier.

    Raises:
        404: Order not found
        409: Order already delivered/cancelled, or changed concurrently
        502: Courier refused or failed the cancellation
    """
    _check_db_available()
    reason = (request or CancelShipmentRequest()).reason

    try:
        with UnitOfWork() as uow:
            order = uow.tracking_orders.get_by_order_number(order_number)

        if order is None:
            raise HTTPException(
                status_code=404,
                detail=f"Order not found: {order_number}",
            )

        if not order.is_pollable:
            raise HTTPException(
                status_code=409,
                detail=f"Order {order.order_number} cannot be cancelled in status {order.status.value}",
            )

        cancelled = reconciler.cancel_order(order, reason)
        return build_tracking_view(cancelled)

    except HTTPException:
        raise
    except ConcurrentUpdateError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except TrackingError as e:
        logger.warning("Courier cancellation failed for %s: %s", order_number, e.message)
        raise HTTPException(
            status_code=502,
            detail=f"Courier cancellation failed: {e.message}",
        )
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to cancel shipment: {str(e)}",
        )


@router.get("/tracking/stats", response_model=TrackingStats)
async def tracking_stats() -> TrackingStats:
    """Count tracking orders per lifecycle stage."""
    _check_db_available()

    try:
        with UnitOfWork() as uow:
            counts = uow.tracking_orders.count_by_status()

        return TrackingStats(total_orders=sum(counts.values()), orders_by_status=counts)

    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get tracking stats: {str(e)}",
        )
