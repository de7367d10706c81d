"""Subscription matching and argument filters.

Filters map a field name to a condition. Field names refer to event
attributes (``contract_address``, ``event_name``, ``block_number``,
``transaction_hash``, ``log_index``) or, otherwise, to event arguments.
``args.`` prefixed names traverse nested arguments with dot notation.

Condition forms:
    - scalar: equality (``{"from": "0xabc..."}``)
    - list: membership (``{"to": ["0x1...", "0x2..."]}``)
    - expression: ``{"operator": "gt", "value": 1000}`` with operators
      eq, ne, gt, lt, in, contains

All conditions must hold. Addresses compare case-insensitively and numeric
strings compare as integers, so uint256 values encoded as strings work.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from hookrelay.exceptions import ValidationError

if TYPE_CHECKING:
    from hookrelay.models import ChainEvent, Subscription

OPERATORS = frozenset({"eq", "ne", "gt", "lt", "in", "contains"})

_ADDRESS = re.compile(r"^0x[a-fA-F0-9]{40}$")
_EVENT_FIELDS = {
    "contract_address": "contract_address",
    "contractAddress": "contract_address",
    "event_name": "event_name",
    "eventName": "event_name",
    "block_number": "block_number",
    "blockNumber": "block_number",
    "transaction_hash": "transaction_hash",
    "transactionHash": "transaction_hash",
    "log_index": "log_index",
    "logIndex": "log_index",
}
_MISSING = object()


def _is_address(value: object) -> bool:
    return isinstance(value, str) and bool(_ADDRESS.match(value))


def _as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text, 16) if text.lower().startswith("0x") else int(text)
        except ValueError:
            return None
    return None


def _equal(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is right
    if isinstance(left, str) and isinstance(right, str):
        if _is_address(left) or _is_address(right):
            return left.lower() == right.lower()
        if left == right:
            return True
    left_int, right_int = _as_int(left), _as_int(right)
    if left_int is not None and right_int is not None and not (
        isinstance(left, str) and isinstance(right, str)
    ):
        return left_int == right_int
    return bool(left == right)


def _compare(left: Any, right: Any) -> int | None:
    """Three-way comparison, None when the values are not comparable."""
    left_int, right_int = _as_int(left), _as_int(right)
    if left_int is not None and right_int is not None:
        return (left_int > right_int) - (left_int < right_int)
    if isinstance(left, int | float) and isinstance(right, int | float):
        return (left > right) - (left < right)
    if isinstance(left, str) and isinstance(right, str):
        return (left > right) - (left < right)
    return None


def _contains(haystack: Any, needle: Any) -> bool:
    if isinstance(haystack, str) and isinstance(needle, str):
        return needle.lower() in haystack.lower()
    if isinstance(haystack, list | tuple):
        return any(_equal(item, needle) for item in haystack)
    return False


def evaluate_operator(operator: str, actual: Any, expected: Any) -> bool:
    """Apply one filter operator. Unknown operators never match."""
    if actual is _MISSING:
        return operator == "ne"
    if operator == "eq":
        return _equal(actual, expected)
    if operator == "ne":
        return not _equal(actual, expected)
    if operator in ("gt", "lt"):
        result = _compare(actual, expected)
        if result is None:
            return False
        return result > 0 if operator == "gt" else result < 0
    if operator == "in":
        return isinstance(expected, list | tuple) and any(_equal(actual, v) for v in expected)
    if operator == "contains":
        return _contains(actual, expected)
    return False


def _lookup(event: ChainEvent, field: str) -> Any:
    if field in _EVENT_FIELDS:
        return getattr(event, _EVENT_FIELDS[field])
    path = field[len("args.") :] if field.startswith("args.") else field
    current: Any = event.args
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _is_expression(condition: Any) -> bool:
    return isinstance(condition, dict) and "operator" in condition and "value" in condition


def evaluate_filters(event: ChainEvent, filters: dict[str, Any]) -> bool:
    """Check that every filter condition holds for the event."""
    for field, condition in filters.items():
        actual = _lookup(event, field)
        if _is_expression(condition):
            matched = evaluate_operator(condition["operator"], actual, condition["value"])
        elif isinstance(condition, list | tuple):
            matched = evaluate_operator("in", actual, list(condition))
        else:
            matched = evaluate_operator("eq", actual, condition)
        if not matched:
            return False
    return True


def validate_filters(filters: dict[str, Any]) -> list[str]:
    """Return human-readable problems with a filter definition."""
    errors: list[str] = []
    for field, condition in filters.items():
        if not isinstance(field, str) or not field.strip():
            errors.append("Filter field names must be non-empty strings")
            continue
        if isinstance(condition, dict):
            if not _is_expression(condition):
                errors.append(f"{field}: expression needs 'operator' and 'value'")
            elif condition["operator"] not in OPERATORS:
                errors.append(
                    f"{field}: unknown operator '{condition['operator']}' "
                    f"(expected one of {', '.join(sorted(OPERATORS))})"
                )
            elif condition["operator"] == "in" and not isinstance(
                condition["value"], list | tuple
            ):
                errors.append(f"{field}: 'in' requires a list value")
    return errors


def matches_subscription(event: ChainEvent, subscription: Subscription) -> bool:
    """Check whether a subscription routes this event.

    Raises:
        ValidationError: If the subscription's filters are malformed.
    """
    if not subscription.active:
        return False

    if subscription.contract_addresses:
        address = event.contract_address.lower()
        if address not in {a.lower() for a in subscription.contract_addresses}:
            return False

    if subscription.event_names and event.event_name not in subscription.event_names:
        return False

    if subscription.filters:
        errors = validate_filters(subscription.filters)
        if errors:
            raise ValidationError(f"subscription {subscription.id} filters", "; ".join(errors))
        return evaluate_filters(event, subscription.filters)

    return True
