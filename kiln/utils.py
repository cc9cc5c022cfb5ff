"""Utility functions for Kiln.

This module contains small helpers used throughout the Kiln codebase:
string handling for keys and titles, date normalisation for front matter
values, and directory housekeeping for the clean commands.

Key functions:
    slugify: Convert a title or filename to a URL slug.
    normalize_date: Turn a front-matter date value into an ISO string.
    format_display_date: Render an ISO date the way post pages show it.
    empty_dir: Remove a directory's contents but keep the directory.
    epoch_millis: Current time as integer milliseconds.
"""

from __future__ import annotations

import re
import shutil
import time
from datetime import date, datetime
from pathlib import Path
from typing import Any


def slugify(name: str) -> str:
    """Convert a title or filename stem to a URL-friendly slug.

    Args:
        name: Title or filename stem.

    Returns:
        Lowercase slug with runs of non-alphanumerics collapsed to hyphens.

    Examples:
        >>> slugify("Hello, World!")
        'hello-world'
    """
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", name)
    return cleaned.strip("-").lower()


def normalize_date(value: Any) -> str:
    """Normalize a front-matter date value to an ISO string.

    YAML already turns ``2024-01-01`` into a ``date``; quoted strings are
    kept as written (stripped). Missing values become the empty string.

    Args:
        value: Raw front-matter value.

    Returns:
        ISO formatted date/datetime, or the stripped string, or "".
    """
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def parse_iso_date(value: str) -> datetime | None:
    """Parse an ISO date or datetime string, returning None when it isn't one."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def format_display_date(value: str) -> str:
    """Format an ISO date for display on a page.

    Args:
        value: ISO date string.

    Returns:
        A string like ``Mon, Jan 1, 2024``; unparseable values are returned
        unchanged and empty input gives "".

    Examples:
        >>> format_display_date("2024-01-01")
        'Mon, Jan 1, 2024'
    """
    parsed = parse_iso_date(value)
    if parsed is None:
        return value
    return f"{parsed:%a}, {parsed:%b} {parsed.day}, {parsed.year}"


def empty_dir(path: Path) -> None:
    """Remove everything inside ``path`` but keep the directory itself.

    Creates the directory if it doesn't exist.

    Args:
        path: Directory to empty.
    """
    if not path.exists():
        path.mkdir(parents=True, exist_ok=True)
        return
    for entry in path.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry, ignore_errors=True)
        else:
            entry.unlink()


def epoch_millis() -> int:
    """Return the current time as integer milliseconds since the epoch."""
    return int(time.time() * 1000)


def is_within(path: Path, parent: Path) -> bool:
    """Check whether ``path`` is ``parent`` or lies underneath it."""
    return path == parent or parent in path.parents


def is_safe_segment(name: str) -> bool:
    """Check that ``name`` is a single path segment that stays in its parent.

    Examples:
        >>> is_safe_segment("hello-world")
        True
        >>> is_safe_segment("../src")
        False
    """
    if not name or name in (".", "..") or "\x00" in name:
        return False
    return "/" not in name and "\\" not in name
