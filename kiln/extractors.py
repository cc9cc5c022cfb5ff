"""Front-matter parsing and field extractors for Kiln.

A content file starts with a YAML block between ``---`` markers followed by
the markdown body. :func:`split_front_matter` separates the two; the
extractors then turn the raw mapping into the normalised fields of a
ContentItem. Each extractor handles a single field and applies that field's
default, and CompositeFieldExtractor merges their results.

Key classes:
- TitleExtractor: ``title`` with a per-kind placeholder default.
- KeyExtractor: ``slug`` if present, else the file's base name.
- DateExtractor: ``date`` and ``updatedAt`` as ISO strings.
- TagExtractor: ``tags`` as a tuple of strings.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from .utils import is_safe_segment, normalize_date

FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)


class FrontMatterError(ValueError):
    """Raised when a front-matter block exists but cannot be used."""


def split_front_matter(text: str) -> tuple[dict[str, Any], str]:
    """Split a content file into its front matter and body.

    Files without a leading ``---`` block have empty front matter.

    Args:
        text: Raw file content.

    Returns:
        Tuple of (front matter dict, remaining body).

    Raises:
        FrontMatterError: If the block is invalid YAML or not a mapping.
    """
    if text.startswith("\ufeff"):
        text = text[1:]
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        raise FrontMatterError(f"Invalid front matter: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise FrontMatterError(
            f"Front matter must be a mapping, got {type(data).__name__}"
        )
    return data, text[match.end() :]


class TitleExtractor:
    """Extracts the title, falling back to a placeholder.

    Attributes:
        placeholder: Title used when the field is missing or blank.
    """

    def __init__(self, placeholder: str = "Untitled Post"):
        self.placeholder = placeholder

    def extract(self, front_matter: Mapping[str, Any], path: Path) -> dict[str, Any]:
        title = front_matter.get("title")
        if title is None or not str(title).strip():
            return {"title": self.placeholder}
        return {"title": str(title).strip()}


class KeyExtractor:
    """Derives the content key from ``slug`` or the file's base name.

    The key names the page directory, so it must be a single path segment.
    """

    def extract(self, front_matter: Mapping[str, Any], path: Path) -> dict[str, Any]:
        slug = front_matter.get("slug")
        if slug is not None and str(slug).strip():
            key = str(slug).strip()
        else:
            key = path.stem
        if not is_safe_segment(key):
            raise FrontMatterError(f"slug {key!r} must be a single path segment")
        return {"key": key}


class DateExtractor:
    """Extracts ``date`` and ``updatedAt`` as ISO strings.

    A missing ``date`` becomes the empty string and a missing ``updatedAt``
    becomes None.
    """

    def extract(self, front_matter: Mapping[str, Any], path: Path) -> dict[str, Any]:
        updated = front_matter.get("updatedAt")
        return {
            "iso_date": normalize_date(front_matter.get("date")),
            "updated_at": normalize_date(updated) if updated is not None else None,
        }


class TagExtractor:
    """Extracts ``tags`` as a tuple, defaulting to empty."""

    def extract(self, front_matter: Mapping[str, Any], path: Path) -> dict[str, Any]:
        raw = front_matter.get("tags")
        if raw is None:
            return {"tags": ()}
        if isinstance(raw, str):
            raw = [raw]
        if not isinstance(raw, (list, tuple, set)):
            raise FrontMatterError(
                f"tags must be a list of strings, got {type(raw).__name__}"
            )
        seen: list[str] = []
        for tag in raw:
            text = str(tag).strip()
            if text and text not in seen:
                seen.append(text)
        return {"tags": tuple(seen)}


class CompositeFieldExtractor:
    """Combines field extractors, merging their results in order.

    Later extractors can override earlier ones.
    """

    def __init__(self, extractors: list | None = None):
        if extractors is None:
            self._extractors = [
                TitleExtractor(),
                KeyExtractor(),
                DateExtractor(),
                TagExtractor(),
            ]
        else:
            self._extractors = list(extractors)

    def add_extractor(self, extractor) -> None:
        self._extractors.append(extractor)

    def extract(self, front_matter: Mapping[str, Any], path: Path) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for extractor in self._extractors:
            result.update(extractor.extract(front_matter, path))
        return result


def field_extractor_for(kind_label: str) -> CompositeFieldExtractor:
    """Build the default extractor set for one content kind.

    Args:
        kind_label: Human label of the kind, e.g. "Article".

    Returns:
        CompositeFieldExtractor whose title placeholder names the kind.
    """
    return CompositeFieldExtractor(
        [
            TitleExtractor(f"Untitled {kind_label}"),
            KeyExtractor(),
            DateExtractor(),
            TagExtractor(),
        ]
    )
