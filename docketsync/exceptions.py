"""
Error taxonomy for the tracking pipeline.

Every per-order failure is one of these. `kind` is the short label used in
log records and cycle summaries.
"""


class TrackingError(Exception):
    """Base class for tracking pipeline errors."""

    kind = "error"

    def __init__(self, message: str, order_number: str | None = None):
        super().__init__(message)
        self.message = message
        self.order_number = order_number


class GatewayError(TrackingError):
    """Courier unreachable, timed out, or answered with a server error."""

    kind = "gateway"

    def __init__(
        self,
        message: str,
        order_number: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, order_number)
        self.status_code = status_code


class AuthError(TrackingError):
    """Courier rejected our API token."""

    kind = "auth"


class NotFoundError(TrackingError):
    """Docket number unknown to the courier."""

    kind = "not_found"


class ValidationError(TrackingError):
    """Malformed docket number or stored order record."""

    kind = "validation"


class ConcurrentUpdateError(TrackingError):
    """Stored order changed between read and conditional update."""

    kind = "conflict"


class ConfigError(RuntimeError):
    """Raised when required configuration is missing or invalid."""
