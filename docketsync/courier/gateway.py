"""
Sequel247 courier gateway.

Translates tracking requests into Sequel247 HTTP calls and parses the
vendor JSON into typed courier events. Each call makes exactly one HTTP
attempt; retrying is left to the next poll cycle.
"""

import logging
import re
from typing import Any, Protocol

import requests
from pydantic import ValidationError as PydanticValidationError

from docketsync.config import SERVICE_NAME, SERVICE_VERSION, CourierConfig
from docketsync.exceptions import (
    AuthError,
    GatewayError,
    NotFoundError,
    ValidationError,
)
from docketsync.models.courier import (
    CourierTracking,
    SequelResponse,
    SequelTrackingData,
)
from docketsync.models.tracking import CourierEvent

logger = logging.getLogger(__name__)

TRACK_PATH = "/api/track"
CHECK_SERVICEABILITY_PATH = "/api/checkServiceability"
CANCEL_PATH = "/api/cancel"

DOCKET_PATTERN = re.compile(r"^\d{10}$")
PIN_CODE_PATTERN = re.compile(r"^\d{6}$")

# Error-body phrases the courier uses for a bad token / unknown docket.
# Auth hints are checked first: any message about the token is an auth error.
_AUTH_HINTS = ("token", "unauthorized", "unauthorised", "forbidden", "api key")
_NOT_FOUND_HINTS = ("not found", "invalid docket", "no record", "does not exist")


def validate_docket_number(docket_number: str) -> str:
    """
    Check docket number format (10 digits).

    Returns:
        The stripped docket number

    Raises:
        ValidationError: If the docket number is malformed
    """
    docket = (docket_number or "").strip()
    if not DOCKET_PATTERN.match(docket):
        raise ValidationError(f"Invalid docket number: {docket_number!r}")
    return docket


class CourierGateway(Protocol):
    """What the reconciler needs from a courier integration."""

    def fetch_events(self, docket_number: str) -> list[CourierEvent]: ...

    def fetch_tracking(self, docket_number: str) -> CourierTracking: ...

    def cancel_shipment(self, docket_number: str, reason: str) -> None: ...


class Sequel247Gateway:
    """
    HTTP client for the Sequel247 courier API.

    Usage:
        gateway = Sequel247Gateway(settings.courier)
        events = gateway.fetch_events("1234567890")
    """

    def __init__(self, config: CourierConfig, session: requests.Session | None = None):
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Content-Type": "application/json",
                "User-Agent": f"{SERVICE_NAME}/{SERVICE_VERSION}",
            }
        )

    def fetch_events(self, docket_number: str) -> list[CourierEvent]:
        """
        Fetch the courier's event history for a docket.

        Args:
            docket_number: 10-digit docket number

        Returns:
            Courier events ordered oldest first (newest last)

        Raises:
            GatewayError: Network failure, timeout, 5xx or unparseable body
            AuthError: Token rejected
            NotFoundError: Docket unknown to the courier
            ValidationError: Docket number malformed
        """
        return self.fetch_tracking(docket_number).events

    def fetch_tracking(self, docket_number: str) -> CourierTracking:
        """
        Fetch tracking for a docket, including estimated delivery.

        Raises:
            Same as fetch_events
        """
        docket = validate_docket_number(docket_number)
        body = self._post(TRACK_PATH, {"docket": docket})
        envelope = self._parse_envelope(body, docket)

        if not envelope.status:
            raise self._error_from_message(envelope.message, docket)
        if not envelope.data:
            raise NotFoundError(f"No tracking data for docket {docket}")

        data = envelope.data
        # trackMultiple-style responses wrap the record in a list
        if isinstance(data, list):
            data = next(
                (d for d in data if str(d.get("docket_no", "")).strip() == docket),
                None,
            )
            if data is None:
                raise NotFoundError(f"No tracking data for docket {docket}")

        try:
            parsed = SequelTrackingData.model_validate(data)
        except PydanticValidationError as e:
            raise GatewayError(f"Malformed tracking data for docket {docket}: {e}")

        events = [raw.to_event() for raw in parsed.tracking]
        events.sort(key=lambda event: event.timestamp)

        return CourierTracking(
            docket_number=parsed.docket_no or docket,
            shipment_status=parsed.shipment_status,
            estimated_delivery=parsed.estimated_delivery,
            events=events,
        )

    def check_serviceability(self, pin_code: str) -> bool:
        """
        Check whether the courier delivers to a pincode.

        Args:
            pin_code: 6-digit Indian postal code

        Returns:
            True if serviceable

        Raises:
            ValidationError: Pin code malformed
            GatewayError / AuthError: As for fetch_events
        """
        pin = (pin_code or "").strip()
        if not PIN_CODE_PATTERN.match(pin):
            raise ValidationError(f"Invalid pin code: {pin_code!r}")

        body = self._post(CHECK_SERVICEABILITY_PATH, {"pin_code": pin})
        envelope = self._parse_envelope(body, pin)
        if not envelope.status and _matches(envelope.message, _AUTH_HINTS):
            raise AuthError(envelope.message or "Courier rejected API token")
        return envelope.status

    def cancel_shipment(self, docket_number: str, reason: str) -> None:
        """
        Cancel a shipment with the courier.

        Raises:
            GatewayError: Courier refused or failed the cancellation
            AuthError / NotFoundError / ValidationError: As for fetch_events
        """
        docket = validate_docket_number(docket_number)
        body = self._post(CANCEL_PATH, {"docket": docket, "cancelReason": reason})
        envelope = self._parse_envelope(body, docket)
        if not envelope.status:
            raise self._error_from_message(envelope.message, docket)
        logger.info("Cancelled docket %s with courier", docket)

    def _post(self, path: str, payload: dict[str, Any]) -> Any:
        """POST to the courier once and return the decoded JSON body."""
        url = f"{self.config.endpoint}{path}"
        body = {"token": self.config.token, "store_code": self.config.store_code}
        body.update(payload)

        logger.debug("POST %s", url)
        try:
            response = self.session.post(
                url, json=body, timeout=self.config.timeout_seconds
            )
        except requests.Timeout as e:
            raise GatewayError(f"Timed out calling {path}: {e}")
        except requests.RequestException as e:
            raise GatewayError(f"Unable to reach courier at {path}: {e}")

        status = response.status_code
        if status in (401, 403):
            raise AuthError(f"Courier rejected API token (HTTP {status})")
        if status == 404:
            raise NotFoundError(f"Courier returned 404 for {path}")
        if status == 429:
            raise GatewayError("Courier rate limit exceeded", status_code=status)
        if status >= 500:
            raise GatewayError(f"Courier server error (HTTP {status})", status_code=status)
        if status >= 400:
            raise GatewayError(
                f"Courier rejected request (HTTP {status}): {response.text[:200]}",
                status_code=status,
            )

        try:
            return response.json()
        except ValueError as e:
            raise GatewayError(f"Courier returned non-JSON body for {path}: {e}")

    def _parse_envelope(self, body: Any, reference: str) -> SequelResponse:
        if not isinstance(body, dict):
            raise GatewayError(f"Unexpected courier response for {reference}")
        try:
            return SequelResponse.model_validate(body)
        except PydanticValidationError as e:
            raise GatewayError(f"Malformed courier response for {reference}: {e}")

    def _error_from_message(self, message: str | None, docket: str) -> Exception:
        text = message or "Tracking request failed"
        if _matches(text, _AUTH_HINTS):
            return AuthError(text)
        if _matches(text, _NOT_FOUND_HINTS):
            return NotFoundError(f"Docket {docket} unknown to courier: {text}")
        return GatewayError(f"Courier request failed for docket {docket}: {text}")


def _matches(message: str | None, hints: tuple[str, ...]) -> bool:
    if not message:
        return False
    lowered = message.lower()
    return any(hint in lowered for hint in hints)
