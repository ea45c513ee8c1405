"""
Audience Resolver

Selects the customers of a store that belong to every segment a campaign
targets.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from .models import Customer, Segment
from .segment_matcher import matches

logger = logging.getLogger(__name__)

CATCH_ALL_SEGMENT_NAME = "all"


def is_catch_all(segment: Segment) -> bool:
    """A segment flagged catch-all, named "all", or with an empty filter tree"""
    if segment.definition_error:
        return False
    return (
        segment.is_catch_all
        or segment.name.strip().lower() == CATCH_ALL_SEGMENT_NAME
        or segment.filters.is_empty
    )


def in_segment(customer: Customer, segment: Segment, now: Optional[datetime] = None) -> bool:
    """Membership test for one (customer, segment) pair; errors count as non-member"""
    if segment.definition_error:
        return False
    if is_catch_all(segment):
        return True
    try:
        return matches(customer, segment.filters, now=now)
    except Exception as e:
        logger.debug(
            f"Segment {segment.segment_id} evaluation failed for customer "
            f"{customer.get('id')}: {e}"
        )
        return False


def resolve(
    customers: Iterable[Customer],
    segments: Sequence[Segment],
    now: Optional[datetime] = None,
) -> List[Customer]:
    """
    Intersect the selected segments over the customer list.

    Input order is preserved. With no segments selected every customer is
    included.
    """
    customers = list(customers)
    if not segments:
        return customers

    for segment in segments:
        if segment.definition_error:
            logger.warning(
                f"Segment {segment.segment_id} has an invalid definition and matches nobody: "
                f"{segment.definition_error}"
            )

    now = now or datetime.now(timezone.utc)
    audience = [
        customer for customer in customers
        if all(in_segment(customer, segment, now) for segment in segments)
    ]

    logger.info(f"Resolved audience of {len(audience)} out of {len(customers)} customers")
    return audience


__all__ = ["CATCH_ALL_SEGMENT_NAME", "is_catch_all", "in_segment", "resolve"]
