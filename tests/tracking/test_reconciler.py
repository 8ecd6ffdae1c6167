"""
Tests for the tracking reconciler.

The courier gateway and unit of work are mocked; orders are plain models.
"""

import logging
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from docketsync.courier.normalizer import StatusNormalizer
from docketsync.db.repositories import TrackingOrderRepository
from docketsync.exceptions import (
    AuthError,
    ConcurrentUpdateError,
    GatewayError,
    NotFoundError,
    ValidationError,
)
from docketsync.models.courier import CourierTracking
from docketsync.models.tracking import (
    STAGE_PROGRESSION,
    CourierEvent,
    LifecycleStage,
    TrackingOrder,
)
from docketsync.tracking.reconciler import (
    OutcomeKind,
    TrackingReconciler,
    merge_courier_events,
)

# make_order histories start at 2024-03-01 09:00 UTC, one hour per stage
T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
POLLED_AT = datetime(2024, 3, 2, 12, 0, tzinfo=timezone.utc)


def courier_event(code: str, description: str, at: datetime) -> CourierEvent:
    return CourierEvent(code=code, description=description, timestamp=at)


def tracking(*events: CourierEvent, estimated_delivery=None) -> CourierTracking:
    return CourierTracking(
        docket_number="1234567890",
        estimated_delivery=estimated_delivery,
        events=list(events),
    )


def bump_version(order: TrackingOrder, expected_version: int) -> TrackingOrder:
    """apply_update stand-in: store succeeds and the version advances."""
    return order.model_copy(update={"version": expected_version + 1})


@pytest.fixture
def gateway() -> MagicMock:
    return MagicMock()


@pytest.fixture
def reconciler(gateway, settings, uow_factory) -> TrackingReconciler:
    return TrackingReconciler(gateway, settings, unit_of_work_factory=uow_factory)


@pytest.fixture
def repo(mock_uow: MagicMock) -> MagicMock:
    repo = mock_uow.tracking_orders
    repo.apply_update.side_effect = bump_version
    return repo


class TestMergeCourierEvents:
    """Tests for merge_courier_events (no storage involved)."""

    def test_packed_then_shipped(self, order_factory):
        order = order_factory(status=LifecycleStage.PROCESSING)
        t1 = T0 + timedelta(hours=5)
        t2 = T0 + timedelta(hours=8)

        merged = merge_courier_events(
            order,
            tracking(
                courier_event("PKG", "Packed and ready", t1),
                courier_event("SHP", "Shipped, on the road", t2),
            ),
            StatusNormalizer(),
            POLLED_AT,
        )

        new_entries = merged.history[len(order.history):]
        assert [(e.stage, e.timestamp) for e in new_entries] == [
            (LifecycleStage.PACKAGING, t1),
            (LifecycleStage.ON_THE_ROAD, t2),
        ]
        assert merged.status == LifecycleStage.ON_THE_ROAD
        assert merged.last_polled_at == POLLED_AT
        assert order.status == LifecycleStage.PROCESSING

    def test_events_applied_chronologically(self, order_factory):
        order = order_factory(status=LifecycleStage.PROCESSING)
        t1 = T0 + timedelta(hours=5)
        t2 = T0 + timedelta(hours=8)

        merged = merge_courier_events(
            order,
            tracking(
                courier_event("SLINORIN", "In transit", t2),
                courier_event("SPU", "Picked up", t1),
            ),
            StatusNormalizer(),
            POLLED_AT,
        )

        assert [e.stage for e in merged.history[-2:]] == [
            LifecycleStage.PACKAGING,
            LifecycleStage.ON_THE_ROAD,
        ]

    def test_backward_event_discarded(self, order_factory):
        order = order_factory(status=LifecycleStage.ON_THE_ROAD)

        merged = merge_courier_events(
            order,
            tracking(courier_event("SPU", "Picked up", T0 + timedelta(hours=9))),
            StatusNormalizer(),
            POLLED_AT,
        )

        assert merged.history == order.history
        assert merged.status == LifecycleStage.ON_THE_ROAD
        assert merged.last_polled_at == POLLED_AT

    def test_repeated_stage_not_appended(self, order_factory):
        order = order_factory(status=LifecycleStage.PACKAGING)

        merged = merge_courier_events(
            order,
            tracking(courier_event("SPU", "Picked up", T0 + timedelta(hours=9))),
            StatusNormalizer(),
            POLLED_AT,
        )

        assert len(merged.history) == len(order.history)

    def test_unknown_status_keeps_stage(self, order_factory):
        order = order_factory(status=LifecycleStage.PROCESSING)

        merged = merge_courier_events(
            order,
            tracking(courier_event("ZZ", "XYZZY-99", T0 + timedelta(hours=9))),
            StatusNormalizer(),
            POLLED_AT,
        )

        assert merged.status == LifecycleStage.PROCESSING
        assert len(merged.history) == len(order.history)

    def test_cancel_from_open_stage(self, order_factory):
        order = order_factory(status=LifecycleStage.ON_THE_ROAD)

        merged = merge_courier_events(
            order,
            tracking(courier_event("SCANCELLED", "Cancelled", T0 + timedelta(hours=9))),
            StatusNormalizer(),
            POLLED_AT,
        )

        assert merged.status == LifecycleStage.CANCELLED
        assert merged.history[-1].stage == LifecycleStage.CANCELLED

    def test_nothing_after_terminal(self, order_factory):
        order = order_factory(status=LifecycleStage.ON_THE_ROAD)

        merged = merge_courier_events(
            order,
            tracking(
                courier_event("SDELVD", "Delivered", T0 + timedelta(hours=9)),
                courier_event("SCANCELLED", "Cancelled", T0 + timedelta(hours=10)),
            ),
            StatusNormalizer(),
            POLLED_AT,
        )

        assert merged.status == LifecycleStage.DELIVERED
        assert merged.history[-1].stage == LifecycleStage.DELIVERED

    def test_older_event_clamped_to_last_entry(self, order_factory):
        order = order_factory(status=LifecycleStage.PROCESSING)
        last_timestamp = order.history[-1].timestamp

        merged = merge_courier_events(
            order,
            tracking(courier_event("SPU", "Picked up", last_timestamp - timedelta(hours=3))),
            StatusNormalizer(),
            POLLED_AT,
        )

        assert merged.history[-1].stage == LifecycleStage.PACKAGING
        assert merged.history[-1].timestamp == last_timestamp

    def test_history_stays_monotonic(self, order_factory):
        order = order_factory(status=LifecycleStage.ORDER_PLACED)
        descriptions = [
            "Shipment created",
            "In transit",
            "Checked in at hub",
            "Picked up",
            "Out for delivery",
            "XYZZY-99",
            "Packed",
            "Delivered",
            "Cancelled",
        ]
        events = [
            courier_event("ZZ", text, T0 + timedelta(hours=i + 1))
            for i, text in enumerate(descriptions)
        ]

        merged = merge_courier_events(order, tracking(*events), StatusNormalizer(), POLLED_AT)

        ranks = [STAGE_PROGRESSION.index(e.stage) for e in merged.history]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == len(ranks)
        timestamps = [e.timestamp for e in merged.history]
        assert timestamps == sorted(timestamps)
        assert merged.status == merged.history[-1].stage == LifecycleStage.DELIVERED

    def test_estimated_delivery(self, order_factory):
        eta = datetime(2024, 3, 5, tzinfo=timezone.utc)
        order = order_factory(estimated_delivery=eta)

        kept = merge_courier_events(order, tracking(), StatusNormalizer(), POLLED_AT)
        assert kept.estimated_delivery == eta

        new_eta = eta + timedelta(days=1)
        updated = merge_courier_events(
            order, tracking(estimated_delivery=new_eta), StatusNormalizer(), POLLED_AT
        )
        assert updated.estimated_delivery == new_eta

    def test_successful_fetch_clears_review_flag(self, order_factory):
        order = order_factory(
            status=LifecycleStage.PROCESSING,
            needs_review=True,
            review_reason="Docket 1234567890 not found at courier",
        )

        merged = merge_courier_events(
            order,
            tracking(courier_event("SPU", "Picked up", T0 + timedelta(hours=5))),
            StatusNormalizer(),
            POLLED_AT,
        )

        assert merged.status == LifecycleStage.PACKAGING
        assert merged.needs_review is False
        assert merged.review_reason is None


class TestReconcileOrder:
    """Tests for TrackingReconciler.reconcile_order."""

    def test_updates_order(self, reconciler, gateway, repo, mock_uow, order_factory):
        order = order_factory(status=LifecycleStage.PROCESSING, version=3)
        repo.get_by_order_number.return_value = order
        gateway.fetch_tracking.return_value = tracking(
            courier_event("PKG", "Packed and ready", T0 + timedelta(hours=5)),
            courier_event("SHP", "Shipped, on the road", T0 + timedelta(hours=6)),
        )

        outcome = reconciler.reconcile_order(order.order_number)

        assert outcome.kind == OutcomeKind.UPDATED
        assert outcome.previous_status == LifecycleStage.PROCESSING
        assert outcome.status == LifecycleStage.ON_THE_ROAD
        gateway.fetch_tracking.assert_called_once_with("1234567890")

        stored, kwargs = repo.apply_update.call_args.args[0], repo.apply_update.call_args.kwargs
        assert kwargs == {"expected_version": 3}
        assert stored.status == LifecycleStage.ON_THE_ROAD
        assert stored.last_polled_at is not None
        mock_uow.commit.assert_called_once()

    def test_stage_change_logged(self, reconciler, gateway, repo, order_factory, caplog):
        order = order_factory(status=LifecycleStage.PROCESSING)
        repo.get_by_order_number.return_value = order
        gateway.fetch_tracking.return_value = tracking(
            courier_event("SPU", "Picked up", T0 + timedelta(hours=5))
        )

        with caplog.at_level(logging.INFO, logger="docketsync.tracking.reconciler"):
            reconciler.reconcile_order(order.order_number)

        fields = [getattr(r, "json_fields", None) for r in caplog.records]
        assert {
            "order_number": order.order_number,
            "docket_number": "1234567890",
            "previous_status": "PROCESSING",
            "status": "PACKAGING",
            "new_events": 1,
        } in fields

    def test_unchanged_still_records_poll(self, reconciler, gateway, repo, order_factory):
        order = order_factory(status=LifecycleStage.PACKAGING)
        repo.get_by_order_number.return_value = order
        gateway.fetch_tracking.return_value = tracking(
            courier_event("SPU", "Picked up", T0 + timedelta(hours=5))
        )

        outcome = reconciler.reconcile_order(order.order_number)

        assert outcome.kind == OutcomeKind.UNCHANGED
        stored = repo.apply_update.call_args.args[0]
        assert stored.history == order.history
        assert stored.last_polled_at is not None

    @pytest.mark.parametrize("status", [LifecycleStage.DELIVERED, LifecycleStage.CANCELLED])
    def test_terminal_order_untouched(self, reconciler, gateway, repo, order_factory, status):
        order = order_factory(status=status)
        repo.get_by_order_number.return_value = order

        outcome = reconciler.reconcile_order(order.order_number)

        assert outcome.kind == OutcomeKind.SKIPPED
        gateway.fetch_tracking.assert_not_called()
        repo.apply_update.assert_not_called()
        repo.flag_for_review.assert_not_called()

    def test_docketless_order_skipped(self, reconciler, gateway, repo, order_factory):
        repo.get_by_order_number.return_value = order_factory(docket_number=None)

        outcome = reconciler.reconcile_order("JW-20240301-0001")

        assert outcome.kind == OutcomeKind.SKIPPED
        gateway.fetch_tracking.assert_not_called()

    def test_missing_order_skipped(self, reconciler, gateway, repo):
        repo.get_by_order_number.return_value = None

        outcome = reconciler.reconcile_order("JW-MISSING-0001")

        assert outcome.kind == OutcomeKind.SKIPPED
        gateway.fetch_tracking.assert_not_called()

    def test_gateway_error_leaves_order(self, reconciler, gateway, repo, order_factory):
        order = order_factory(status=LifecycleStage.PROCESSING)
        repo.get_by_order_number.return_value = order
        gateway.fetch_tracking.side_effect = GatewayError("Courier server error")

        outcome = reconciler.reconcile_order(order.order_number)

        assert outcome.kind == OutcomeKind.FAILED
        assert outcome.error_kind == "gateway"
        assert outcome.status == LifecycleStage.PROCESSING
        repo.apply_update.assert_not_called()

    def test_auth_error_logged_as_error(self, reconciler, gateway, repo, order_factory, caplog):
        order = order_factory()
        repo.get_by_order_number.return_value = order
        gateway.fetch_tracking.side_effect = AuthError("Invalid token")

        with caplog.at_level(logging.WARNING, logger="docketsync.tracking.reconciler"):
            outcome = reconciler.reconcile_order(order.order_number)

        assert outcome.error_kind == "auth"
        assert any(r.levelno == logging.ERROR for r in caplog.records)

    def test_not_found_flags_order(self, reconciler, gateway, repo, mock_uow, order_factory):
        order = order_factory(status=LifecycleStage.PROCESSING)
        repo.get_by_order_number.return_value = order
        gateway.fetch_tracking.side_effect = NotFoundError("Docket not found")

        outcome = reconciler.reconcile_order(order.order_number)

        assert outcome.kind == OutcomeKind.FLAGGED
        assert outcome.status == LifecycleStage.PROCESSING
        repo.flag_for_review.assert_called_once()
        assert repo.flag_for_review.call_args.args[0] == order.order_number
        repo.apply_update.assert_not_called()
        mock_uow.commit.assert_called_once()

    def test_version_conflict(self, reconciler, gateway, repo, order_factory):
        order = order_factory(status=LifecycleStage.PROCESSING)
        repo.get_by_order_number.return_value = order
        gateway.fetch_tracking.return_value = tracking(
            courier_event("SPU", "Picked up", T0 + timedelta(hours=5))
        )
        repo.apply_update.side_effect = ConcurrentUpdateError(
            "changed", order_number=order.order_number
        )

        outcome = reconciler.reconcile_order(order.order_number)

        assert outcome.kind == OutcomeKind.FAILED
        assert outcome.error_kind == "conflict"

    def test_flagged_order_cleared_once_docket_found(
        self, reconciler, gateway, repo, order_factory
    ):
        order = order_factory(
            status=LifecycleStage.PROCESSING,
            needs_review=True,
            review_reason="Docket 1234567890 not found at courier",
        )
        repo.get_by_order_number.return_value = order
        gateway.fetch_tracking.return_value = tracking(
            courier_event("SPU", "Picked up", T0 + timedelta(hours=5))
        )

        outcome = reconciler.reconcile_order(order.order_number)

        assert outcome.kind == OutcomeKind.UPDATED
        stored = repo.apply_update.call_args.args[0]
        assert stored.needs_review is False
        assert stored.review_reason is None

    def test_inconsistent_stored_row_fails_without_polling(self, reconciler, gateway, mock_uow):
        session = MagicMock()
        session.execute.return_value.fetchone.return_value = SimpleNamespace(
            id=uuid4(),
            order_number="JW-20240301-0001",
            docket_number="1234567890",
            customer_email=None,
            status="PACKAGING",
            estimated_delivery=None,
            history=[],
            last_polled_at=None,
            needs_review=False,
            review_reason=None,
            version=1,
            created_at=T0,
            updated_at=T0,
        )
        mock_uow.tracking_orders = TrackingOrderRepository(session)

        outcome = reconciler.reconcile_order("JW-20240301-0001")

        assert outcome.kind == OutcomeKind.FAILED
        assert outcome.error_kind == "validation"
        gateway.fetch_tracking.assert_not_called()
        session.execute.assert_called_once()

    def test_corrupt_stored_order(self, reconciler, gateway, repo):
        repo.get_by_order_number.side_effect = ValidationError("bad history")

        outcome = reconciler.reconcile_order("JW-20240301-0001")

        assert outcome.kind == OutcomeKind.FAILED
        assert outcome.error_kind == "validation"
        gateway.fetch_tracking.assert_not_called()


class TestReconcilePending:
    """Tests for TrackingReconciler.reconcile_pending."""

    def _orders(self, order_factory, count: int) -> dict[str, TrackingOrder]:
        return {
            f"JW-20240301-{i:04d}": order_factory(
                order_number=f"JW-20240301-{i:04d}",
                docket_number=f"{1000000000 + i}",
            )
            for i in range(count)
        }

    def test_one_failure_among_ten(self, reconciler, gateway, repo, order_factory):
        orders = self._orders(order_factory, 10)
        failing = orders["JW-20240301-0004"]
        repo.list_pending_order_numbers.return_value = list(orders)
        repo.get_by_order_number.side_effect = lambda number: orders[number]

        def fetch(docket_number):
            if docket_number == failing.docket_number:
                raise GatewayError("Courier server error", status_code=502)
            return tracking(courier_event("SPU", "Picked up", T0 + timedelta(hours=2)))

        gateway.fetch_tracking.side_effect = fetch

        summary = reconciler.reconcile_pending(trigger="scheduled")

        assert summary.total_orders == 10
        assert summary.updated == 9
        assert summary.failed == 1
        assert summary.errors_by_kind == {"gateway": 1}
        assert summary.message == "Updated 9 orders, 1 errors"
        assert summary.finished_at >= summary.started_at

        stored_numbers = {c.args[0].order_number for c in repo.apply_update.call_args_list}
        assert len(stored_numbers) == 9
        assert failing.order_number not in stored_numbers

    def test_mixed_outcomes(self, reconciler, gateway, repo, order_factory):
        orders = self._orders(order_factory, 3)
        numbers = list(orders)
        repo.list_pending_order_numbers.return_value = numbers
        repo.get_by_order_number.side_effect = lambda number: orders[number]

        def fetch(docket_number):
            if docket_number == orders[numbers[0]].docket_number:
                raise NotFoundError("Docket not found")
            if docket_number == orders[numbers[1]].docket_number:
                raise AuthError("Invalid token")
            return tracking()

        gateway.fetch_tracking.side_effect = fetch

        summary = reconciler.reconcile_pending()

        assert summary.flagged == 1
        assert summary.failed == 1
        assert summary.unchanged == 1
        assert summary.errors_by_kind == {"auth": 1}

    def test_unexpected_error_isolated(self, reconciler, gateway, repo, order_factory):
        orders = self._orders(order_factory, 2)
        repo.list_pending_order_numbers.return_value = list(orders)
        repo.get_by_order_number.side_effect = lambda number: orders[number]
        gateway.fetch_tracking.side_effect = RuntimeError("boom")

        summary = reconciler.reconcile_pending()

        assert summary.failed == 2
        assert summary.errors_by_kind == {"error": 2}

    def test_no_pending_orders(self, reconciler, gateway, repo):
        repo.list_pending_order_numbers.return_value = []

        summary = reconciler.reconcile_pending(trigger="manual")

        assert summary.trigger == "manual"
        assert summary.total_orders == 0
        gateway.fetch_tracking.assert_not_called()

    def test_listing_failure_propagates(self, reconciler, repo):
        repo.list_pending_order_numbers.side_effect = RuntimeError("connection lost")

        with pytest.raises(RuntimeError):
            reconciler.reconcile_pending()


class TestCancelOrder:
    """Tests for TrackingReconciler.cancel_order."""

    def test_cancel(self, reconciler, gateway, repo, mock_uow, order_factory):
        order = order_factory(status=LifecycleStage.PACKAGING, version=2)

        stored = reconciler.cancel_order(order, "Customer request")

        gateway.cancel_shipment.assert_called_once_with("1234567890", "Customer request")
        assert stored.status == LifecycleStage.CANCELLED
        assert stored.history[-1].stage == LifecycleStage.CANCELLED
        assert stored.history[-1].description == "Customer request"
        assert repo.apply_update.call_args.kwargs == {"expected_version": 2}
        mock_uow.commit.assert_called_once()

    def test_terminal_order_rejected(self, reconciler, gateway, order_factory):
        order = order_factory(status=LifecycleStage.DELIVERED)

        with pytest.raises(ValidationError):
            reconciler.cancel_order(order, "Too late")

        gateway.cancel_shipment.assert_not_called()

    def test_courier_refusal_propagates(self, reconciler, gateway, repo, order_factory):
        gateway.cancel_shipment.side_effect = GatewayError("Already dispatched")

        with pytest.raises(GatewayError):
            reconciler.cancel_order(order_factory(), "Customer request")

        repo.apply_update.assert_not_called()
