"""
Sequel247 courier integration: HTTP gateway and status normalization.
"""

from docketsync.courier.gateway import (
    CourierGateway,
    Sequel247Gateway,
    validate_docket_number,
)
from docketsync.courier.normalizer import StatusNormalizer, match_description

__all__ = [
    "CourierGateway",
    "Sequel247Gateway",
    "StatusNormalizer",
    "match_description",
    "validate_docket_number",
]
