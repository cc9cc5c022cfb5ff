"""Persisted build cache for Kiln.

The cache maps each content key to the fingerprint its page was last built
from. It lives in a single JSON document inside the output tree::

    {
      "pages": {"hello": "1a2b3c4d"},
      "lastBuild": 1700000000000,
      "builtAt": {"hello": 1700000000000},
      "layout": "9f8e7d6c",
      "index": "0badc0de"
    }

Only ``pages`` and ``lastBuild`` are required when reading; everything else
is optional and unknown keys are ignored, so older documents stay readable.

Key classes:
- CacheEntry: One key's fingerprint and build time.
- BuildCache: The in-memory cache owned by the orchestrator for one cycle.
- CacheDiff: Result of comparing the corpus against the cache.
- BuildCacheStore: Loads and saves the cache document through a FileStore.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .content import ContentItem
from .errors import CacheLoadError, CacheSaveError
from .hasher import fingerprint
from .protocols import FileStore
from .utils import epoch_millis

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Fingerprint of the last successful build of one key.

    Attributes:
        key: Content key.
        fingerprint: Fingerprint the page was built from.
        last_built_at: Epoch milliseconds of that build, 0 when unknown.
    """

    key: str
    fingerprint: str
    last_built_at: int = 0


@dataclass
class BuildCache:
    """In-memory build cache.

    Attributes:
        entries: CacheEntry per key.
        last_build: Epoch milliseconds of the last persisted cycle.
        layout: Layout signature the pages were rendered with.
        index: Corpus fingerprint the aggregate index was rendered from.
    """

    entries: dict[str, CacheEntry] = field(default_factory=dict)
    last_build: int = 0
    layout: str | None = None
    index: str | None = None

    def get(self, key: str) -> str | None:
        """Return the cached fingerprint for ``key``, or None."""
        entry = self.entries.get(key)
        return entry.fingerprint if entry else None

    def update(self, key: str, fp: str) -> None:
        """Record a successful build of ``key``.

        Only call this after the page's artefact was written.
        """
        self.entries[key] = CacheEntry(key, fp, epoch_millis())

    def forget(self, keys: Iterable[str]) -> None:
        """Drop the entries for ``keys``; unknown keys are ignored."""
        for key in keys:
            self.entries.pop(key, None)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, key: object) -> bool:
        return key in self.entries

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "pages": {key: entry.fingerprint for key, entry in self.entries.items()},
            "lastBuild": self.last_build,
            "builtAt": {key: entry.last_built_at for key, entry in self.entries.items()},
        }
        if self.layout is not None:
            doc["layout"] = self.layout
        if self.index is not None:
            doc["index"] = self.index
        return doc

    @classmethod
    def from_document(cls, doc: Any) -> BuildCache:
        """Build a cache from a decoded JSON document.

        Raises:
            CacheLoadError: If the document does not have the expected shape.
        """
        if not isinstance(doc, dict):
            raise CacheLoadError(f"expected an object, got {type(doc).__name__}")
        pages = doc.get("pages", {})
        if not isinstance(pages, dict):
            raise CacheLoadError("'pages' must be an object")
        built_at = doc.get("builtAt")
        if not isinstance(built_at, dict):
            built_at = {}

        cache = cls()
        for key, fp in pages.items():
            if not isinstance(fp, str):
                logger.debug("Dropping cache entry %s with non-string fingerprint", key)
                continue
            stamp = built_at.get(key)
            cache.entries[str(key)] = CacheEntry(
                str(key), fp, stamp if isinstance(stamp, int) else 0
            )
        last_build = doc.get("lastBuild")
        cache.last_build = last_build if isinstance(last_build, int) else 0
        layout = doc.get("layout")
        cache.layout = layout if isinstance(layout, str) else None
        index = doc.get("index")
        cache.index = index if isinstance(index, str) else None
        return cache


@dataclass
class CacheDiff:
    """Partition of the corpus into keys to regenerate and keys to keep.

    Attributes:
        stale: Keys that must be regenerated, in corpus order.
        fresh: Keys whose artefact is up to date.
        fingerprints: Current fingerprint of every diffed key.
        reasons: Why each stale key is stale.
    """

    stale: list[str] = field(default_factory=list)
    fresh: list[str] = field(default_factory=list)
    fingerprints: dict[str, str] = field(default_factory=dict)
    reasons: dict[str, str] = field(default_factory=dict)


def diff(
    cache: BuildCache,
    items: Iterable[ContentItem],
    output_path_for: Callable[[str], Path],
    exists: Callable[[Path], bool],
    force: bool = False,
    touched: Iterable[Path] = (),
) -> CacheDiff:
    """Compare ``items`` against ``cache``.

    An item is stale if it has no cache entry, its fingerprint differs, its
    artefact is missing, ``force`` is set, or its source file is in
    ``touched``. Otherwise it is fresh.

    Args:
        cache: Cache loaded at the start of the cycle.
        items: One item per key, in corpus order.
        output_path_for: Maps a key to its artefact path.
        exists: Existence check for artefacts.
        force: Treat everything as stale.
        touched: Source paths known to have changed this cycle.

    Returns:
        CacheDiff listing each key exactly once.
    """
    touched_paths = set(touched)
    result = CacheDiff()
    for item in items:
        fp = fingerprint(item)
        result.fingerprints[item.key] = fp
        cached = cache.get(item.key)
        if force:
            reason = "forced"
        elif cached is None:
            reason = "new"
        elif cached != fp:
            reason = "changed"
        elif item.source_path in touched_paths:
            reason = "touched"
        elif not exists(output_path_for(item.key)):
            reason = "missing artefact"
        else:
            result.fresh.append(item.key)
            continue
        result.stale.append(item.key)
        result.reasons[item.key] = reason
    return result


class BuildCacheStore:
    """Reads and writes the cache document.

    Attributes:
        path: Location of the cache document.
        store: FileStore used for I/O.
    """

    def __init__(self, path: Path, store: FileStore):
        self.path = path
        self.store = store

    def load(self) -> BuildCache:
        """Load the cache, falling back to an empty one.

        A missing document is a cold start. A malformed or unreadable one is
        logged as a warning. Neither case raises.
        """
        if not self.store.exists(self.path):
            logger.debug("No cache at %s; starting cold", self.path)
            return BuildCache()
        try:
            cache = BuildCache.from_document(json.loads(self.store.read(self.path)))
        except CacheLoadError as exc:
            logger.warning("Ignoring cache %s: %s", self.path, exc)
            return BuildCache()
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            error = CacheLoadError(f"unreadable cache document: {exc}", exc)
            logger.warning("Ignoring cache %s: %s", self.path, error)
            return BuildCache()
        logger.debug("Loaded %d cache entries from %s", len(cache), self.path)
        return cache

    def save(self, cache: BuildCache) -> bool:
        """Persist ``cache`` atomically.

        Returns:
            True on success, False if the write failed (logged as a warning).
        """
        try:
            self.store.write(self.path, json.dumps(cache.to_document(), indent=2))
        except OSError as exc:
            error = CacheSaveError(f"failed to write cache: {exc}", exc)
            logger.warning("%s (%s)", error, self.path)
            return False
        logger.debug("Saved %d cache entries to %s", len(cache), self.path)
        return True
