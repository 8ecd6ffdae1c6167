import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from docketsync.models.tracking import CourierEvent

logger = logging.getLogger(__name__)

# Sequel247 reports wall-clock times in India Standard Time without an offset
COURIER_TIMEZONE = timezone(timedelta(hours=5, minutes=30), name="IST")

_COURIER_DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%d-%m-%Y %H:%M:%S",
    "%d-%m-%Y %H:%M",
    "%Y-%m-%d",
    "%d-%m-%Y",
)


def parse_courier_datetime(value: Any) -> datetime | None:
    """
    Parse a courier timestamp into an aware UTC datetime.

    Accepts the formats Sequel247 emits ("YYYY-MM-DD HH:MM:SS",
    "DD-MM-YYYY HH:MM") as well as ISO 8601. Naive values are taken to be
    courier-local time.

    Raises:
        ValueError: If the value matches no known format
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        parsed = None
        for fmt in _COURIER_DATETIME_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=COURIER_TIMEZONE)
    return parsed.astimezone(timezone.utc)


def _parse_status_flag(value: Any) -> bool:
    # The API sends both JSON booleans and the strings "true"/"false"
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


class SequelTrackingEvent(BaseModel):
    """Raw tracking scan as returned by Sequel247"""

    model_config = ConfigDict(extra="ignore")

    code: str = Field(description="Status code, e.g. SPU or SDELVD")
    description: str = Field(default="", description="Free-text status")
    location: Optional[str] = Field(default=None, description="Scan location")
    date_time: datetime = Field(description="Scan time")

    @field_validator("date_time", mode="before")
    @classmethod
    def _parse_date_time(cls, value: Any) -> datetime:
        parsed = parse_courier_datetime(value)
        if parsed is None:
            raise ValueError("date_time is required")
        return parsed

    @field_validator("description", mode="before")
    @classmethod
    def _coerce_description(cls, value: Any) -> str:
        return "" if value is None else str(value)

    def to_event(self) -> CourierEvent:
        return CourierEvent(
            code=self.code.strip().upper(),
            description=self.description.strip(),
            location=self.location or None,
            timestamp=self.date_time,
        )


class SequelTrackingData(BaseModel):
    """`data` block of a track response"""

    model_config = ConfigDict(extra="ignore")

    docket_no: str = Field(description="Docket number")
    shipment_status: Optional[str] = Field(
        default=None, description="Latest status code"
    )
    estimated_delivery: Optional[datetime] = Field(
        default=None, description="Courier estimated delivery"
    )
    tracking: list[SequelTrackingEvent] = Field(
        default_factory=list, description="Scan history"
    )

    @field_validator("docket_no", mode="before")
    @classmethod
    def _coerce_docket(cls, value: Any) -> str:
        return str(value).strip()

    @field_validator("estimated_delivery", mode="before")
    @classmethod
    def _parse_estimated_delivery(cls, value: Any) -> datetime | None:
        # An unreadable ETA becomes None; the scan events still parse
        try:
            return parse_courier_datetime(value)
        except ValueError:
            logger.warning("Ignoring unparseable estimated delivery %r", value)
            return None

    @field_validator("tracking", mode="before")
    @classmethod
    def _default_tracking(cls, value: Any) -> Any:
        return [] if value is None else value


class SequelResponse(BaseModel):
    """Response envelope shared by every Sequel247 endpoint"""

    model_config = ConfigDict(extra="ignore")

    status: bool = Field(description="Whether the request succeeded")
    message: Optional[str] = Field(default=None, description="Error or info message")
    data: Optional[Any] = Field(default=None, description="Endpoint-specific payload")

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> bool:
        return _parse_status_flag(value)


class CourierTracking(BaseModel):
    """Parsed result of one track call"""

    docket_number: str = Field(description="Docket number")
    shipment_status: Optional[str] = Field(
        default=None, description="Latest courier status code"
    )
    estimated_delivery: Optional[datetime] = Field(
        default=None, description="Courier estimated delivery"
    )
    events: list[CourierEvent] = Field(
        default_factory=list, description="Events, oldest first"
    )
