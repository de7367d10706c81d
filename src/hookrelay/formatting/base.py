"""Formatter contract and registry.

Each payload format is a PayloadFormatter subclass registered under its
name. Formatting is pure: the same (format, event) always yields an equal
payload, and ``render_body`` turns it into byte-identical JSON.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from hookrelay.exceptions import UnsupportedFormatError

if TYPE_CHECKING:
    from hookrelay.models import ChainEvent

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def format_timestamp(timestamp: datetime) -> str:
    """Render a timestamp as ISO 8601 UTC with millisecond precision."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    rendered = timestamp.astimezone(UTC).isoformat(timespec="milliseconds")
    return rendered.replace("+00:00", "Z")


def to_snake_case(name: str) -> str:
    """Convert camelCase to snake_case ("fromAddress" -> "from_address")."""
    return _CAMEL_BOUNDARY.sub(r"_\1", name).lower()


def flatten(values: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested dicts, joining keys with underscores.

    Lists are kept as values; only mappings are expanded.
    """
    flat: dict[str, Any] = {}
    for key, value in values.items():
        name = f"{prefix}_{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(flatten(value, name))
        else:
            flat[name] = value
    return flat


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, bytes):
        return "0x" + value.hex()
    if isinstance(value, set | frozenset):
        return sorted(value, key=str)
    return str(value)


def render_body(payload: dict[str, Any]) -> bytes:
    """Serialize a payload to canonical JSON bytes."""
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    ).encode("utf-8")


class PayloadFormatter(ABC):
    """Converts a chain event into a destination-specific payload."""

    #: Registry key, matched against WebhookConfig.format
    name: str = ""

    @abstractmethod
    def format_payload(self, event: ChainEvent) -> dict[str, Any]:
        """Build the payload for one event."""


class FormatterRegistry:
    """Closed set of formatters, extended only by registration.

    Example:
        ```python
        registry = FormatterRegistry()
        registry.register(GenericFormatter())
        payload = registry.format("generic", event)
        ```
    """

    def __init__(self, formatters: list[PayloadFormatter] | None = None) -> None:
        self._formatters: dict[str, PayloadFormatter] = {}
        for formatter in formatters or []:
            self.register(formatter)

    def register(self, formatter: PayloadFormatter) -> None:
        """Register a formatter under its name, replacing any previous one."""
        if not formatter.name:
            raise ValueError(f"{type(formatter).__name__} has no format name")
        self._formatters[formatter.name] = formatter

    def get(self, format_name: str) -> PayloadFormatter:
        """Look up a formatter.

        Raises:
            UnsupportedFormatError: If no formatter is registered under the name.
        """
        formatter = self._formatters.get(format_name)
        if formatter is None:
            raise UnsupportedFormatError(format_name, self.supported_formats())
        return formatter

    def supports(self, format_name: str) -> bool:
        return format_name in self._formatters

    def supported_formats(self) -> list[str]:
        return sorted(self._formatters)

    def format(self, format_name: str, event: ChainEvent) -> dict[str, Any]:
        """Format an event with the named formatter."""
        return self.get(format_name).format_payload(event)
