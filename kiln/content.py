"""Content discovery for Kiln.

This module finds markdown posts under the configured content roots and turns
each one into an immutable ContentItem. Discovery has partial-failure
semantics: a file whose front matter cannot be parsed is logged and left out,
while a root that cannot be listed at all aborts the cycle.

Key classes:
- ContentKind: The kinds of content a site publishes.
- ContentItem: Metadata of one post for one discovery pass.
- FileContentSource: ContentSource implementation for markdown files on disk.
- Corpus: The discovered items, with key lookup by kind priority.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .errors import EnumerationError, ItemParseError
from .extractors import FrontMatterError, field_extractor_for, split_front_matter
from .protocols import FileStore

logger = logging.getLogger(__name__)

MARKDOWN_PATTERN = "*.md"


class ContentKind(str, Enum):
    """Kinds of content, declared in priority order."""

    ARTICLE = "article"
    PROJECT = "project"

    @property
    def label(self) -> str:
        return self.value.capitalize()


@dataclass(frozen=True)
class ContentItem:
    """One content file as seen by a single discovery pass.

    Attributes:
        key: Unique identifier used in the output path.
        kind: Kind of content; a ContentKind value or a configured kind name.
        title: Display title.
        iso_date: Publication date as an ISO string, "" when absent.
        updated_at: Last-updated date as an ISO string, None when absent.
        source_path: Path of the markdown file.
        raw_front_matter: The parsed front-matter mapping.
        tags: Tags attached to the item.
    """

    key: str
    kind: str
    title: str
    iso_date: str
    updated_at: str | None
    source_path: Path
    raw_front_matter: Mapping[str, Any] = field(default_factory=dict, compare=False)
    tags: tuple[str, ...] = ()

    def __post_init__(self):
        if isinstance(self.kind, ContentKind):
            object.__setattr__(self, "kind", self.kind.value)


def _kind_label(kind: str) -> str:
    try:
        return ContentKind(kind).label
    except ValueError:
        return str(kind).replace("_", " ").title()


def _is_hidden(path: Path, root: Path) -> bool:
    return any(part.startswith(".") for part in path.relative_to(root).parts)


class FileContentSource:
    """Discovers markdown content under one root per kind.

    Roots are visited in the order given, which is the kind priority order.

    Attributes:
        roots: Mapping of kind name to content root.
        store: FileStore used for every filesystem access.
    """

    def __init__(self, roots: Mapping[str, Path], store: FileStore):
        self.roots = dict(roots)
        self.store = store
        self._extractors = {kind: field_extractor_for(_kind_label(kind)) for kind in self.roots}

    def list_items(self) -> list[ContentItem]:
        """Enumerate content items across every configured root.

        Returns:
            Items in kind-priority order, sorted by path within a root.

        Raises:
            EnumerationError: If an existing root cannot be listed.
        """
        items: list[ContentItem] = []
        for kind, root in self.roots.items():
            items.extend(self._list_root(kind, root))
        return items

    def _list_root(self, kind: str, root: Path) -> list[ContentItem]:
        if not root.exists():
            logger.debug("Content root %s does not exist; no %s items", root, kind)
            return []
        try:
            paths = self.store.list(root, MARKDOWN_PATTERN)
        except OSError as exc:
            raise EnumerationError(root, f"Cannot list content root: {exc}", exc) from exc

        items: list[ContentItem] = []
        for path in paths:
            if _is_hidden(path, root):
                continue
            try:
                items.append(self._load_item(kind, path))
            except ItemParseError as exc:
                logger.warning("Skipping %s", exc)
        return items

    def _load_item(self, kind: str, path: Path) -> ContentItem:
        front_matter, _ = self._parse(path)
        try:
            fields = self._extractors[kind].extract(front_matter, path)
        except FrontMatterError as exc:
            raise ItemParseError(path, str(exc), exc) from exc
        return ContentItem(
            kind=kind,
            source_path=path,
            raw_front_matter=front_matter,
            **fields,
        )

    def _parse(self, path: Path) -> tuple[dict[str, Any], str]:
        try:
            text = self.store.read(path)
        except UnicodeDecodeError as exc:
            raise ItemParseError(path, "File is not valid UTF-8", exc) from exc
        except OSError as exc:
            raise ItemParseError(path, f"Cannot read file: {exc}", exc) from exc
        try:
            return split_front_matter(text)
        except FrontMatterError as exc:
            raise ItemParseError(path, str(exc), exc) from exc

    def read_body(self, item: ContentItem) -> str:
        """Re-read ``item`` from disk and return its markdown body.

        Raises:
            ItemParseError: If the file can no longer be read or parsed.
        """
        _, body = self._parse(item.source_path)
        return body


class Corpus:
    """The items of one discovery pass, indexed by key.

    Duplicate keys are kept in :attr:`items`; lookups resolve to the first
    item in kind-priority order and the shadowed ones are logged once.
    """

    def __init__(self, items: Iterable[ContentItem]):
        self.items = list(items)
        self._by_key: dict[str, ContentItem] = {}
        for item in self.items:
            winner = self._by_key.get(item.key)
            if winner is None:
                self._by_key[item.key] = item
            else:
                logger.warning(
                    "Duplicate key '%s': %s (%s) shadows %s (%s)",
                    item.key,
                    winner.source_path,
                    winner.kind,
                    item.source_path,
                    item.kind,
                )

    def resolve(self, key: str) -> ContentItem | None:
        """Return the item that owns ``key``, or None."""
        return self._by_key.get(key)

    def keys(self) -> list[str]:
        return list(self._by_key)

    def unique_items(self) -> list[ContentItem]:
        """Return one item per key in discovery order."""
        return list(self._by_key.values())

    def of_kind(self, kind: str) -> list[ContentItem]:
        return [item for item in self._by_key.values() if item.kind == kind]

    def __iter__(self) -> Iterator[ContentItem]:
        return iter(self._by_key.values())

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key
