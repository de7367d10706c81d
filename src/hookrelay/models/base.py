"""Shared helpers for hookrelay models."""

from __future__ import annotations

import hashlib
from uuid import uuid4


def generate_id(prefix: str) -> str:
    """Generate a unique ID with the given prefix.

    Examples:
        generate_id("whk") -> "whk_a1b2c3d4e5f6"
        generate_id("sub") -> "sub_a1b2c3d4e5f6"
    """
    return f"{prefix}_{uuid4().hex[:12]}"


def stable_id(prefix: str, *parts: object) -> str:
    """Derive a deterministic ID from its parts.

    The same parts always produce the same ID, which is what makes
    re-ingesting an event idempotent.

    Examples:
        stable_id("dlv", "0xabc", 3, "sub_1", "whk_1") -> "dlv_<24 hex chars>"
    """
    material = ":".join(str(part) for part in parts)
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
    return f"{prefix}_{digest[:24]}"
