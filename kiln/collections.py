"""Index collections for Kiln layouts.

The aggregate index page receives the corpus as collections of IndexEntry
objects: one per content kind plus tag groupings.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass

from .content import ContentItem, ContentKind, Corpus
from .utils import format_display_date, parse_iso_date


def page_url(key: str) -> str:
    """Return the URL path of the page for ``key``."""
    return f"/articles/{key}/"


@dataclass(frozen=True)
class IndexEntry:
    """What a layout needs to link to one page."""

    key: str
    kind: str
    title: str
    date: str
    display_date: str
    updated_at: str | None
    url: str
    tags: tuple[str, ...]

    @classmethod
    def from_item(cls, item: ContentItem) -> IndexEntry:
        return cls(
            key=item.key,
            kind=item.kind,
            title=item.title,
            date=item.iso_date,
            display_date=format_display_date(item.iso_date),
            updated_at=item.updated_at,
            url=page_url(item.key),
            tags=item.tags,
        )


def _sort_key(entry: IndexEntry) -> tuple[float, str]:
    parsed = parse_iso_date(entry.date)
    timestamp = parsed.replace(tzinfo=None).timestamp() if parsed else float("-inf")
    return (timestamp, entry.key)


class EntryCollection(Sequence[IndexEntry]):
    """Lightweight helper for working with lists of entries in templates."""

    def __init__(self, entries: Iterable[IndexEntry]):
        self._entries = list(entries)

    def __iter__(self) -> Iterator[IndexEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, item):
        return self._entries[item]

    def with_tag(self, tag: str) -> EntryCollection:
        return EntryCollection(e for e in self._entries if tag in e.tags)

    def sorted(self, reverse: bool = True) -> EntryCollection:
        """Sort entries by date, newest first by default.

        Entries without a parseable date sort after dated ones when newest
        comes first. Ties are broken by key.
        """
        return EntryCollection(sorted(self._entries, key=_sort_key, reverse=reverse))

    def latest(self, count: int = 5) -> EntryCollection:
        return EntryCollection(self.sorted()[:count])

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"EntryCollection({len(self._entries)} entries)"


def build_collections(corpus: Corpus) -> Mapping[str, object]:
    """Group the corpus for the index layout.

    Returns:
        Mapping with ``posts`` (articles), ``projects``, ``all``, ``by_kind``
        (kind name to collection) and ``tags`` (tag to collection). Every
        collection is sorted newest first.
    """
    entries = EntryCollection(IndexEntry.from_item(item) for item in corpus).sorted()
    by_kind: dict[str, EntryCollection] = {}
    for entry in entries:
        by_kind.setdefault(entry.kind, EntryCollection([]))
    for kind in by_kind:
        by_kind[kind] = EntryCollection(e for e in entries if e.kind == kind)
    tag_names = sorted({tag for entry in entries for tag in entry.tags})
    return {
        "posts": by_kind.get(ContentKind.ARTICLE.value, EntryCollection([])),
        "projects": by_kind.get(ContentKind.PROJECT.value, EntryCollection([])),
        "all": entries,
        "by_kind": by_kind,
        "tags": {tag: entries.with_tag(tag) for tag in tag_names},
    }
