"""Payload formatting for webhook destinations.

Example:
    ```python
    from hookrelay.formatting import format_payload, render_body

    payload = format_payload("zapier", event)
    body = render_body(payload)  # canonical JSON bytes
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .base import (
    FormatterRegistry,
    PayloadFormatter,
    flatten,
    format_timestamp,
    render_body,
    to_snake_case,
)
from .formatters import GenericFormatter, MakeFormatter, N8nFormatter, ZapierFormatter

if TYPE_CHECKING:
    from hookrelay.models import ChainEvent


def create_default_registry() -> FormatterRegistry:
    """Registry holding every built-in formatter."""
    return FormatterRegistry(
        [GenericFormatter(), ZapierFormatter(), MakeFormatter(), N8nFormatter()]
    )


default_registry = create_default_registry()


def format_payload(format_name: str, event: ChainEvent) -> dict[str, Any]:
    """Format an event with a built-in formatter.

    Raises:
        UnsupportedFormatError: For unknown format names.
    """
    return default_registry.format(format_name, event)


def supported_formats() -> list[str]:
    return default_registry.supported_formats()


__all__ = [
    "FormatterRegistry",
    "GenericFormatter",
    "MakeFormatter",
    "N8nFormatter",
    "PayloadFormatter",
    "ZapierFormatter",
    "create_default_registry",
    "default_registry",
    "flatten",
    "format_payload",
    "format_timestamp",
    "render_body",
    "supported_formats",
    "to_snake_case",
]
