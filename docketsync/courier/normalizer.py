"""
Courier status normalization.

Maps courier status codes and free-text descriptions onto the internal
lifecycle. The normalizer only classifies single events; ordering rules
(no regression, terminal stages) are applied by the reconciler.
"""

from docketsync.models.tracking import CourierEvent, LifecycleStage

# Sequel247 documented status codes, matched exactly (case-insensitive)
SEQUEL_CODE_MAP: dict[str, LifecycleStage] = {
    "SCREATED": LifecycleStage.ORDER_PLACED,
    "SCHECKIN": LifecycleStage.PROCESSING,
    "SPU": LifecycleStage.PACKAGING,
    "SLINORIN": LifecycleStage.ON_THE_ROAD,
    "SLINDEST": LifecycleStage.ON_THE_ROAD,
    "SDELASN": LifecycleStage.ON_THE_ROAD,
    "SDELVD": LifecycleStage.DELIVERED,
    "SCANCELLED": LifecycleStage.CANCELLED,
}

# Substrings of the courier's free-text status. Longest match wins;
# equal lengths resolve to the entry listed first.
DESCRIPTION_TABLE: tuple[tuple[str, LifecycleStage], ...] = (
    # placed
    ("order placed", LifecycleStage.ORDER_PLACED),
    ("shipment created", LifecycleStage.ORDER_PLACED),
    ("booked", LifecycleStage.ORDER_PLACED),
    ("created", LifecycleStage.ORDER_PLACED),
    # processing
    ("checked in", LifecycleStage.PROCESSING),
    ("check-in", LifecycleStage.PROCESSING),
    ("processing", LifecycleStage.PROCESSING),
    # packaging
    ("picked up", LifecycleStage.PACKAGING),
    ("pickup done", LifecycleStage.PACKAGING),
    ("packed", LifecycleStage.PACKAGING),
    ("packaging", LifecycleStage.PACKAGING),
    ("packing", LifecycleStage.PACKAGING),
    # on the road
    ("shipped", LifecycleStage.ON_THE_ROAD),
    ("dispatched", LifecycleStage.ON_THE_ROAD),
    ("in transit", LifecycleStage.ON_THE_ROAD),
    ("on the way", LifecycleStage.ON_THE_ROAD),
    ("on the road", LifecycleStage.ON_THE_ROAD),
    ("left origin", LifecycleStage.ON_THE_ROAD),
    ("reached destination", LifecycleStage.ON_THE_ROAD),
    ("out for delivery", LifecycleStage.ON_THE_ROAD),
    ("delivery attempted", LifecycleStage.ON_THE_ROAD),
    ("undelivered", LifecycleStage.ON_THE_ROAD),
    ("not delivered", LifecycleStage.ON_THE_ROAD),
    # delivered
    ("delivered", LifecycleStage.DELIVERED),
    # cancelled
    ("cancelled", LifecycleStage.CANCELLED),
    ("canceled", LifecycleStage.CANCELLED),
)


def match_description(
    description: str,
    table: tuple[tuple[str, LifecycleStage], ...] = DESCRIPTION_TABLE,
) -> LifecycleStage | None:
    """
    Find the stage for a free-text status using a substring table.

    Args:
        description: Courier status text
        table: (substring, stage) pairs, lower-case

    Returns:
        Stage of the longest matching table entry, or None if nothing matches
    """
    text = (description or "").lower()
    if not text:
        return None

    best: tuple[str, LifecycleStage] | None = None
    for needle, stage in table:
        if needle in text and (best is None or len(needle) > len(best[0])):
            best = (needle, stage)

    return best[1] if best else None


class StatusNormalizer:
    """
    Classify courier events into lifecycle stages.

    Lookup order: exact courier code, then description substrings. When
    neither matches, the previous known stage is returned unchanged
    (ORDER_PLACED if there is none).
    """

    def __init__(
        self,
        code_map: dict[str, LifecycleStage] | None = None,
        description_table: tuple[tuple[str, LifecycleStage], ...] | None = None,
    ):
        self.code_map = {
            code.upper(): stage
            for code, stage in (SEQUEL_CODE_MAP if code_map is None else code_map).items()
        }
        self.description_table = (
            DESCRIPTION_TABLE if description_table is None else description_table
        )

    def normalize(
        self, event: CourierEvent, previous: LifecycleStage | None = None
    ) -> LifecycleStage:
        stage = self.code_map.get((event.code or "").strip().upper())
        if stage is not None:
            return stage

        stage = match_description(event.description, self.description_table)
        if stage is not None:
            return stage

        return previous or LifecycleStage.ORDER_PLACED

