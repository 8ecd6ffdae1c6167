"""
pytest configuration and shared fixtures.

Loads environment variables from .env file for all tests.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from dotenv import load_dotenv

from docketsync.config import CourierConfig, Settings
from docketsync.models.tracking import LifecycleStage, TrackingEvent, TrackingOrder

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Load .env file before running tests"""
    env_file = Path(__file__).parent.parent / ".env"
    if env_file.exists():
        load_dotenv(env_file)


def make_order(
    order_number: str = "JW-20240301-0001",
    status: LifecycleStage = LifecycleStage.ORDER_PLACED,
    docket_number: str | None = "1234567890",
    version: int = 1,
    **kwargs,
) -> TrackingOrder:
    """Build a tracking order whose history walks forward to `status`."""
    if "history" not in kwargs:
        if status == LifecycleStage.CANCELLED:
            stages = [LifecycleStage.ORDER_PLACED, LifecycleStage.CANCELLED]
        else:
            stages = [s for s in LifecycleStage if 0 <= s.rank <= status.rank]
        kwargs["history"] = [
            TrackingEvent(stage=stage, code=stage.value, timestamp=T0 + timedelta(hours=i))
            for i, stage in enumerate(stages)
        ]
    return TrackingOrder(
        id=str(uuid4()),
        order_number=order_number,
        docket_number=docket_number,
        status=status,
        version=version,
        **kwargs,
    )


@pytest.fixture
def settings() -> Settings:
    """Settings pointing at a fake courier endpoint."""
    return Settings(
        courier=CourierConfig(
            endpoint="https://courier.test",
            token="test-token",
            store_code="BLRAK",
            timeout_seconds=5,
        ),
        poll_interval_minutes=30,
        max_workers=4,
    )


@pytest.fixture
def mock_uow() -> MagicMock:
    """Unit of work whose repository is a MagicMock."""
    return MagicMock()


@pytest.fixture
def uow_factory(mock_uow: MagicMock) -> MagicMock:
    """Callable returning a context manager that yields mock_uow."""
    factory = MagicMock()
    factory.return_value.__enter__.return_value = mock_uow
    factory.return_value.__exit__.return_value = False
    return factory


@pytest.fixture
def order_factory():
    """Factory for TrackingOrder instances (see make_order)."""
    return make_order
