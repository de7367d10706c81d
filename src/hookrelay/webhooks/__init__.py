"""Webhook delivery: HTTP client, sender, retry scheduling and dispatch."""

from .circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitState, CircuitStats
from .dispatcher import Dispatcher, DispatcherStats
from .http_client import HttpClient
from .retry import (
    Clock,
    RetryAction,
    RetryDecision,
    RetryPolicy,
    RetryScheduler,
    SystemClock,
)
from .sender import FieldError, ValidationResult, WebhookSender

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitStats",
    "Clock",
    "Dispatcher",
    "DispatcherStats",
    "FieldError",
    "HttpClient",
    "RetryAction",
    "RetryDecision",
    "RetryPolicy",
    "RetryScheduler",
    "SystemClock",
    "ValidationResult",
    "WebhookSender",
]
