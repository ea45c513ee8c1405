"""
Segment Matcher

Evaluates a filter tree (nested AND/OR condition groups) against a customer
record, and loads stored filter JSON into the typed tree.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .conditions import evaluate
from .models import Combinator, ConditionGroup, Customer
from .protocols import SegmentDefinitionError

logger = logging.getLogger(__name__)

# Groups nested deeper than this fail closed
MAX_GROUP_DEPTH = 32


def matches(
    customer: Customer,
    group: ConditionGroup,
    depth: int = 0,
    now: Optional[datetime] = None,
) -> bool:
    """Evaluate a condition group; an empty group matches everyone"""
    if depth > MAX_GROUP_DEPTH:
        logger.warning(f"Filter tree deeper than {MAX_GROUP_DEPTH} levels, treating as non-matching")
        return False

    if group.is_empty:
        return True

    if group.combinator == Combinator.OR:
        return any(evaluate(customer, c, now) for c in group.conditions) or any(
            matches(customer, g, depth + 1, now) for g in group.groups
        )
    return all(evaluate(customer, c, now) for c in group.conditions) and all(
        matches(customer, g, depth + 1, now) for g in group.groups
    )


# ====================
# Filter tree loading
# ====================


def _legacy_to_native(raw: Dict[str, Any]) -> Dict[str, Any]:
    legacy_groups = raw.get("conditionGroups") or []
    if not isinstance(legacy_groups, list):
        raise SegmentDefinitionError(
            f"conditionGroups must be a list, got {type(legacy_groups).__name__}",
            field="conditionGroups",
        )

    groups = []
    for index, legacy in enumerate(legacy_groups):
        if not isinstance(legacy, dict):
            raise SegmentDefinitionError(
                f"Condition group must be an object, got {type(legacy).__name__}",
                field=f"conditionGroups.{index}",
            )
        groups.append({
            "combinator": str(legacy.get("groupOperator") or "AND").upper(),
            "conditions": legacy.get("conditions") or [],
        })
    return {"combinator": "AND", "conditions": [], "groups": groups}


def load_filter_tree(raw: Any) -> ConditionGroup:
    """
    Convert stored filter JSON into a ConditionGroup.

    Accepts the native {combinator, conditions, groups} shape and the older
    {"conditionGroups": [{"groupOperator", "conditions"}]} shape, whose
    groups are ANDed together. Operators are validated here so evaluation
    never sees an unknown one.

    Raises:
        SegmentDefinitionError: If the filter JSON is not a valid tree
    """
    if raw is None:
        return ConditionGroup()
    if isinstance(raw, list):
        raw = {"conditionGroups": raw}
    if not isinstance(raw, dict):
        raise SegmentDefinitionError(f"Filter tree must be an object, got {type(raw).__name__}")

    if "conditionGroups" in raw:
        raw = _legacy_to_native(raw)

    try:
        return ConditionGroup.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise SegmentDefinitionError(
            f"Invalid filter tree: {first.get('msg', str(e))}",
            field=location or None,
        ) from e


__all__ = ["MAX_GROUP_DEPTH", "matches", "load_filter_tree"]
