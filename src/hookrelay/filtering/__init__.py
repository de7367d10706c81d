"""Event-to-subscription matching."""

from .engine import (
    OPERATORS,
    evaluate_filters,
    evaluate_operator,
    matches_subscription,
    validate_filters,
)

__all__ = [
    "OPERATORS",
    "evaluate_filters",
    "evaluate_operator",
    "matches_subscription",
    "validate_filters",
]
