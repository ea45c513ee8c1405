"""
Condition Evaluator

Evaluates one Condition against a customer record. Pure and synchronous:
never performs I/O and never raises for data problems. An operator that does
not apply to the field's type, or a value that cannot be coerced, evaluates
to False.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from .models import Condition, ConditionOperator, Customer, FieldType

logger = logging.getLogger(__name__)

Op = ConditionOperator

# Epoch values above this are taken as milliseconds
EPOCH_MILLIS_THRESHOLD = 1e11

# Reported for customers with no recorded activity
NO_ACTIVITY_DAYS = 999


# ====================
# Field registry
# ====================


@dataclass(frozen=True)
class FieldSpec:
    """Declared type and comparison rules of a known customer field"""
    field_type: FieldType
    case_insensitive: bool = True


FIELD_SPECS: Dict[str, FieldSpec] = {
    # Raw Shopify customer fields
    "email": FieldSpec(FieldType.TEXT),
    "phone": FieldSpec(FieldType.TEXT),
    "first_name": FieldSpec(FieldType.TEXT),
    "last_name": FieldSpec(FieldType.TEXT),
    "state": FieldSpec(FieldType.TEXT),
    "currency": FieldSpec(FieldType.TEXT),
    "tags": FieldSpec(FieldType.ARRAY),
    "orders_count": FieldSpec(FieldType.NUMBER),
    "total_spent": FieldSpec(FieldType.NUMBER),
    "created_at": FieldSpec(FieldType.DATE),
    "updated_at": FieldSpec(FieldType.DATE),
    "verified_email": FieldSpec(FieldType.BOOLEAN),
    "accepts_marketing": FieldSpec(FieldType.BOOLEAN),
    "tax_exempt": FieldSpec(FieldType.BOOLEAN),
    "default_address.country": FieldSpec(FieldType.TEXT),
    "default_address.city": FieldSpec(FieldType.TEXT),
    "default_address.province": FieldSpec(FieldType.TEXT),
    "default_address.zip": FieldSpec(FieldType.TEXT),
    # Derived fields
    "customer_name": FieldSpec(FieldType.TEXT),
    "customer_email": FieldSpec(FieldType.TEXT),
    "customer_phone": FieldSpec(FieldType.TEXT),
    "customer_tags": FieldSpec(FieldType.ARRAY),
    "location_country": FieldSpec(FieldType.TEXT),
    "location_city": FieldSpec(FieldType.TEXT),
    "location_state": FieldSpec(FieldType.TEXT),
    "location_postal_code": FieldSpec(FieldType.TEXT),
    "location_address": FieldSpec(FieldType.TEXT),
    "customer_since": FieldSpec(FieldType.DATE),
    "marketing_opt_in": FieldSpec(FieldType.BOOLEAN),
    "email_opt_in": FieldSpec(FieldType.BOOLEAN),
    "total_orders": FieldSpec(FieldType.NUMBER),
    "average_order_value": FieldSpec(FieldType.NUMBER),
    "last_order_date": FieldSpec(FieldType.DATE),
    "days_since_last_order": FieldSpec(FieldType.NUMBER),
    "never_ordered": FieldSpec(FieldType.BOOLEAN),
}


OPERATORS_BY_TYPE: Dict[FieldType, FrozenSet[ConditionOperator]] = {
    FieldType.TEXT: frozenset({
        Op.EQUALS, Op.NOT_EQUALS, Op.CONTAINS, Op.NOT_CONTAINS,
        Op.STARTS_WITH, Op.ENDS_WITH, Op.IS_SET, Op.IS_NOT_SET,
    }),
    FieldType.NUMBER: frozenset({
        Op.EQUALS, Op.NOT_EQUALS, Op.GREATER_THAN, Op.LESS_THAN,
        Op.GREATER_THAN_OR_EQUAL, Op.LESS_THAN_OR_EQUAL, Op.BETWEEN,
        Op.IS_SET, Op.IS_NOT_SET,
    }),
    FieldType.DATE: frozenset({
        Op.EQUALS, Op.GREATER_THAN, Op.LESS_THAN, Op.BETWEEN,
        Op.IN_LAST_DAYS, Op.IS_SET, Op.IS_NOT_SET,
    }),
    FieldType.ARRAY: frozenset({
        Op.CONTAINS, Op.NOT_CONTAINS, Op.IN_LIST, Op.IS_SET, Op.IS_NOT_SET,
    }),
    FieldType.BOOLEAN: frozenset({
        Op.IS_TRUE, Op.IS_FALSE, Op.EQUALS, Op.IS_SET, Op.IS_NOT_SET,
    }),
}

# Operators that hold for a customer who has no value for the field
_ABSENT_MATCHING = frozenset({Op.NOT_EQUALS, Op.NOT_CONTAINS, Op.IS_NOT_SET})


# ====================
# Field resolution
# ====================


def _primary_address(customer: Customer) -> Optional[Dict[str, Any]]:
    addresses = customer.get("addresses") or []
    for address in addresses:
        if isinstance(address, dict) and address.get("default"):
            return address
    if addresses and isinstance(addresses[0], dict):
        return addresses[0]
    default = customer.get("default_address")
    return default if isinstance(default, dict) else None


def _address_part(key: str) -> Callable[[Customer, datetime], Any]:
    def extract(customer: Customer, now: datetime) -> Any:
        address = _primary_address(customer)
        return address.get(key) if address else None
    return extract


def _full_name(customer: Customer, now: datetime) -> Optional[str]:
    name = f"{customer.get('first_name') or ''} {customer.get('last_name') or ''}".strip()
    return name or None


def _street_address(customer: Customer, now: datetime) -> Optional[str]:
    address = _primary_address(customer)
    if not address:
        return None
    street = f"{address.get('address1') or ''} {address.get('address2') or ''}".strip()
    return street or None


def _opted_in(customer: Customer, now: datetime) -> Optional[bool]:
    flags = [customer.get("accepts_marketing"), customer.get("verified_email")]
    if all(flag is None for flag in flags):
        return None
    return any(bool(flag) for flag in flags)


def _stored_number(customer: Customer, key: str) -> Optional[float]:
    raw = customer.get(key)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    try:
        return to_number(raw)
    except (TypeError, ValueError):
        return None


def _order_count(customer: Customer) -> float:
    return _stored_number(customer, "orders_count") or 0.0


def _amount_spent(customer: Customer) -> float:
    return _stored_number(customer, "total_spent") or 0.0


def _average_order_value(customer: Customer, now: datetime) -> float:
    orders = _order_count(customer)
    return _amount_spent(customer) / orders if orders > 0 else 0.0


def _days_since_last_order(customer: Customer, now: datetime) -> int:
    # updated_at stands in for last activity; order history is not fetched
    try:
        last = to_datetime(customer.get("updated_at"))
    except (TypeError, ValueError, OSError):
        return NO_ACTIVITY_DAYS
    return max(0, (now - last).days)


DERIVED_FIELDS: Dict[str, Callable[[Customer, datetime], Any]] = {
    "customer_name": _full_name,
    "customer_email": lambda c, now: c.get("email"),
    "customer_phone": lambda c, now: c.get("phone"),
    "customer_tags": lambda c, now: c.get("tags"),
    "location_country": _address_part("country"),
    "location_city": _address_part("city"),
    "location_state": _address_part("province"),
    "location_postal_code": _address_part("zip"),
    "location_address": _street_address,
    "customer_since": lambda c, now: c.get("created_at"),
    "accepts_marketing": _opted_in,
    "marketing_opt_in": _opted_in,
    "email_opt_in": _opted_in,
    "total_orders": lambda c, now: _stored_number(c, "orders_count"),
    "total_spent": lambda c, now: _stored_number(c, "total_spent"),
    "average_order_value": _average_order_value,
    "last_order_date": lambda c, now: c.get("updated_at"),
    "days_since_last_order": _days_since_last_order,
    "never_ordered": lambda c, now: _order_count(c) == 0,
}


def _walk(record: Any, parts: List[str]) -> Any:
    current = record
    for part in parts:
        if isinstance(current, dict):
            if part not in current:
                return None
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
    return current


def resolve_field(customer: Customer, field: str, now: Optional[datetime] = None) -> Any:
    """
    Resolve a field of a customer record.

    A registered derived field wins; otherwise the dotted path is walked
    against the record. A leading "customer." segment the record does not
    have is dropped. Missing keys resolve to None.
    """
    now = now or datetime.now(timezone.utc)
    derived = DERIVED_FIELDS.get(field)
    if derived is not None:
        return derived(customer, now)

    parts = field.split(".")
    if parts[0] == "customer" and "customer" not in customer and len(parts) > 1:
        parts = parts[1:]
    return _walk(customer, parts)


def infer_field_type(value: Any) -> FieldType:
    if isinstance(value, (list, tuple, set)):
        return FieldType.ARRAY
    if isinstance(value, bool):
        return FieldType.BOOLEAN
    if isinstance(value, (int, float, Decimal)):
        return FieldType.NUMBER
    if isinstance(value, (datetime, date)):
        return FieldType.DATE
    return FieldType.TEXT


# ====================
# Coercion
# ====================


def is_set(value: Any) -> bool:
    """False for None, blank strings and empty collections"""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


def to_number(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("boolean is not a number")
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        number = float(value.strip())
    else:
        raise TypeError(f"cannot convert {type(value).__name__} to number")
    if not math.isfinite(number):
        raise ValueError("number must be finite")
    return number


def to_datetime(value: Any) -> datetime:
    """Coerce ISO-8601 strings, dates and epoch seconds/millis to aware UTC"""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, bool):
        raise TypeError("boolean is not a date")
    elif isinstance(value, (int, float)) or (
        isinstance(value, str) and value.strip().lstrip("-").isdigit()
    ):
        epoch = float(value)
        if abs(epoch) > EPOCH_MILLIS_THRESHOLD:
            epoch = epoch / 1000.0
        return datetime.fromtimestamp(epoch, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise TypeError(f"cannot convert {type(value).__name__} to date")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    if isinstance(value, str):
        # Shopify stores tags as one comma-separated string
        return [part.strip() for part in value.split(",") if part.strip()]
    return [value]


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
        raise ValueError(f"not a boolean: {value!r}")
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    raise TypeError(f"cannot convert {type(value).__name__} to boolean")


# ====================
# Per-type comparison
# ====================


def _compare_text(value: Any, condition: Condition, case_insensitive: bool) -> bool:
    if condition.value is None:
        raise ValueError("text comparison needs a value")
    actual, expected = str(value), str(condition.value)
    if case_insensitive:
        actual, expected = actual.lower(), expected.lower()

    op = condition.operator
    if op == Op.EQUALS:
        return actual == expected
    if op == Op.NOT_EQUALS:
        return actual != expected
    if op == Op.CONTAINS:
        return expected in actual
    if op == Op.NOT_CONTAINS:
        return expected not in actual
    if op == Op.STARTS_WITH:
        return actual.startswith(expected)
    if op == Op.ENDS_WITH:
        return actual.endswith(expected)
    return False


def _compare_number(value: Any, condition: Condition) -> bool:
    actual = to_number(value)
    op = condition.operator
    if op == Op.BETWEEN:
        low, high = to_number(condition.value), to_number(condition.value_to)
        return low <= actual <= high

    expected = to_number(condition.value)
    if op == Op.EQUALS:
        return actual == expected
    if op == Op.NOT_EQUALS:
        return actual != expected
    if op == Op.GREATER_THAN:
        return actual > expected
    if op == Op.LESS_THAN:
        return actual < expected
    if op == Op.GREATER_THAN_OR_EQUAL:
        return actual >= expected
    if op == Op.LESS_THAN_OR_EQUAL:
        return actual <= expected
    return False


def _compare_date(value: Any, condition: Condition, now: datetime) -> bool:
    actual = to_datetime(value)
    op = condition.operator
    if op == Op.IN_LAST_DAYS:
        days = to_number(condition.value)
        return now - timedelta(days=days) <= actual <= now
    if op == Op.BETWEEN:
        low, high = to_datetime(condition.value), to_datetime(condition.value_to)
        return low <= actual <= high

    expected = to_datetime(condition.value)
    if op == Op.EQUALS:
        return actual.date() == expected.date()
    if op == Op.GREATER_THAN:
        return actual > expected
    if op == Op.LESS_THAN:
        return actual < expected
    return False


def _compare_array(value: Any, condition: Condition, case_insensitive: bool) -> bool:
    actual = to_list(value)
    targets = to_list(condition.value) if condition.value is not None else []
    if not targets:
        raise ValueError("array comparison needs at least one value")
    if case_insensitive:
        actual = [str(item).lower() for item in actual]
        targets = [str(item).lower() for item in targets]

    op = condition.operator
    if op == Op.CONTAINS:
        return all(target in actual for target in targets)
    if op == Op.NOT_CONTAINS:
        return not any(target in actual for target in targets)
    if op == Op.IN_LIST:
        return any(target in actual for target in targets)
    return False


def _compare_boolean(value: Any, condition: Condition) -> bool:
    actual = to_bool(value)
    op = condition.operator
    if op == Op.IS_TRUE:
        return actual is True
    if op == Op.IS_FALSE:
        return actual is False
    if op == Op.EQUALS:
        return actual == to_bool(condition.value)
    return False


# ====================
# Public entry point
# ====================


def evaluate(customer: Customer, condition: Condition, now: Optional[datetime] = None) -> bool:
    """Evaluate a condition against a customer record; fails closed"""
    now = now or datetime.now(timezone.utc)
    try:
        value = resolve_field(customer, condition.field, now)
    except Exception as e:
        logger.debug(f"Could not resolve field {condition.field}: {e}")
        return False

    spec = FIELD_SPECS.get(condition.field)
    field_type = condition.field_type or (spec.field_type if spec else infer_field_type(value))
    if condition.case_insensitive is not None:
        case_insensitive = condition.case_insensitive
    elif spec is not None:
        case_insensitive = spec.case_insensitive
    else:
        case_insensitive = field_type == FieldType.TEXT

    op = condition.operator
    if op not in OPERATORS_BY_TYPE[field_type]:
        logger.debug(f"Operator {op.value} does not apply to {field_type.value} field {condition.field}")
        return False

    if op == Op.IS_SET:
        return is_set(value)
    if op == Op.IS_NOT_SET:
        return not is_set(value)
    if not is_set(value):
        return op in _ABSENT_MATCHING

    try:
        if field_type == FieldType.TEXT:
            return _compare_text(value, condition, case_insensitive)
        if field_type == FieldType.NUMBER:
            return _compare_number(value, condition)
        if field_type == FieldType.DATE:
            return _compare_date(value, condition, now)
        if field_type == FieldType.ARRAY:
            return _compare_array(value, condition, case_insensitive)
        return _compare_boolean(value, condition)
    except (TypeError, ValueError, ArithmeticError, OSError) as e:
        logger.debug(f"Condition on {condition.field} not evaluable: {e}")
        return False


__all__ = [
    "FieldSpec",
    "FIELD_SPECS",
    "OPERATORS_BY_TYPE",
    "DERIVED_FIELDS",
    "resolve_field",
    "infer_field_type",
    "is_set",
    "to_number",
    "to_datetime",
    "to_list",
    "to_bool",
    "evaluate",
]
