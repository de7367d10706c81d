"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Add tests directory to path so helpers can be imported
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from helpers import FakeClock, make_event, make_subscription, make_webhook  # noqa: E402

from hookrelay.logging import clear_context, reset_logging  # noqa: E402


@pytest.fixture(autouse=True)
def _clean_logging():
    """Keep structlog context and relay handlers from leaking between tests."""
    clear_context()
    yield
    clear_context()
    reset_logging()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def event():
    return make_event()


@pytest.fixture
def webhook():
    return make_webhook()


@pytest.fixture
def subscription(webhook):
    return make_subscription([webhook.id])
