"""Content fingerprints for change detection.

A fingerprint is a 32-bit rolling hash over a compact JSON serialisation of
the fields that decide whether a page must be regenerated. It only has to be
stable across runs, not collision-proof.
"""

from __future__ import annotations

import json
from collections.abc import Iterable

from .content import ContentItem

_MASK = 0xFFFFFFFF


def rolling_hash(text: str) -> str:
    """Hash ``text`` with ``h = h * 31 + codepoint`` modulo 2**32.

    Args:
        text: Any string.

    Returns:
        Eight lowercase hex digits.

    Examples:
        >>> rolling_hash("")
        '00000000'
        >>> rolling_hash("a")
        '00000061'
    """
    h = 0
    for char in text:
        h = (h * 31 + ord(char)) & _MASK
    return f"{h:08x}"


def _canonical(item: ContentItem) -> str:
    payload = {
        "title": item.title or "",
        "slug": item.key or "",
        "date": item.iso_date or "",
        "updatedAt": item.updated_at or "",
        "path": item.source_path.as_posix() if item.source_path else "",
    }
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def fingerprint(item: ContentItem) -> str:
    """Return the fingerprint of one content item."""
    return rolling_hash(_canonical(item))


def fingerprint_many(items: Iterable[ContentItem]) -> str:
    """Return an order-sensitive fingerprint over several items.

    Used for the aggregate index, which depends on every item.
    """
    return rolling_hash("\n".join(f"{item.kind}:{fingerprint(item)}" for item in items))
