"""Asset mirroring and reconciliation for Kiln.

Static assets (images, fonts, scripts) live in source directories outside the
output tree. Each cycle AssetMirror copies the new or changed ones into
``<output>/assets``; unchanged files are not touched, so a repeated build
writes nothing.

After pages are written, :func:`reconcile_missing_assets` scans the emitted
HTML for ``/assets/`` references and copies any referenced file that is
still missing from the output. This is best effort: failures are logged and
never fail the build.

Key classes:
- AssetMirror: Copies asset source trees into the output with bounded concurrency.
- MirrorResult / ReconcileResult: What a pass copied and what it could not.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from .asset_processors import AssetProcessorRegistry, create_default_registry
from .asset_resolver import AssetMap
from .errors import AssetReconciliationError, format_error_message
from .html_utils import find_asset_references
from .protocols import FileStore
from .scheduler import Outcome, OutcomeStatus, run_batched
from .utils import is_within

logger = logging.getLogger(__name__)


@dataclass
class MirrorResult:
    """Result of one mirroring pass.

    Attributes:
        copied: URL paths written this pass.
        unchanged: Number of assets that were already current.
        failed: Outcomes of assets that could not be copied.
    """

    copied: list[str] = field(default_factory=list)
    unchanged: int = 0
    failed: list[Outcome] = field(default_factory=list)


class AssetMirror:
    """Mirrors every asset source root into the output tree.

    Attributes:
        asset_map: URL prefix to source root mapping.
        store: FileStore for listing, comparing and copying.
        concurrency: Maximum number of copies in flight.
        production: Run assets through the optimizing processors.
    """

    def __init__(
        self,
        asset_map: AssetMap,
        store: FileStore,
        concurrency: int = 20,
        production: bool = False,
        registry: AssetProcessorRegistry | None = None,
    ):
        self.asset_map = asset_map
        self.store = store
        self.concurrency = concurrency
        self.production = production
        self.registry = registry or create_default_registry(store, production)

    def collect(self) -> dict[str, Path]:
        """Return URL path to source file for every asset to mirror."""
        sources: dict[str, Path] = {}
        for prefix, root in self.asset_map.mirrored_roots():
            if not root.is_dir():
                logger.debug("Asset root %s does not exist; skipping", root)
                continue
            try:
                files = self.store.list(root)
            except OSError as exc:
                logger.warning("Cannot list asset root %s: %s", root, exc)
                continue
            for path in files:
                if any(part.startswith(".") for part in path.relative_to(root).parts):
                    continue
                sources.setdefault(self.asset_map.url_for(prefix, root, path), path)
        return sources

    async def mirror(self, stop: asyncio.Event | None = None) -> MirrorResult:
        """Copy new or changed assets into the output tree.

        Args:
            stop: Shutdown signal passed to the scheduler.

        Returns:
            MirrorResult for this pass.
        """
        sources = await asyncio.to_thread(self.collect)
        exact = not self.production

        async def worker(url: str) -> Outcome:
            source = sources[url]
            dest = self.asset_map.output_for(url)
            if await asyncio.to_thread(self.store.is_current, source, dest, exact):
                return Outcome(url, OutcomeStatus.SKIPPED_CACHED)
            await asyncio.to_thread(self.registry.process, source, dest)
            return Outcome(url, OutcomeStatus.GENERATED)

        outcomes = await run_batched(list(sources), worker, self.concurrency, stop)
        result = MirrorResult()
        for outcome in outcomes:
            if outcome.status is OutcomeStatus.GENERATED:
                result.copied.append(outcome.key)
            elif outcome.status is OutcomeStatus.SKIPPED_CACHED:
                result.unchanged += 1
            else:
                logger.warning("Failed to copy asset %s: %s", outcome.key, outcome.reason)
                result.failed.append(outcome)
        if result.copied:
            logger.info("Copied %d asset(s)", len(result.copied))
        return result


@dataclass
class ReconcileResult:
    """Result of the reconciliation post-pass.

    Attributes:
        copied: URL paths copied because a page referenced them.
        missing: URL paths referenced but not available anywhere.
    """

    copied: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


def reconcile_missing_assets(
    html_files: Iterable[Path],
    asset_map: AssetMap,
    store: FileStore,
) -> ReconcileResult:
    """Copy assets referenced by emitted HTML but absent from the output.

    Args:
        html_files: Output HTML documents to scan.
        asset_map: Mapping used to find each reference's source.
        store: FileStore for reading and copying.

    Returns:
        ReconcileResult listing what was copied and what is still missing.
    """
    result = ReconcileResult()
    checked: set[str] = set()
    for html_file in html_files:
        try:
            html = store.read(html_file)
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("Cannot scan %s for assets: %s", html_file, exc)
            continue
        for url in find_asset_references(html):
            if url in checked:
                continue
            checked.add(url)
            dest = asset_map.output_for(url)
            if store.exists(dest):
                continue
            source = asset_map.source_for(url)
            if source is not None and is_within(source, asset_map.output_dir.resolve()):
                logger.debug("%s is produced in the output tree and is not there yet", url)
                continue
            try:
                _copy_referenced(url, source, dest, store)
            except AssetReconciliationError as exc:
                logger.warning("Asset reconciliation: %s", exc)
                result.missing.append(url)
            else:
                result.copied.append(url)
    if result.copied:
        logger.info("Copied %d missing asset(s) referenced by pages", len(result.copied))
    return result


def _copy_referenced(url: str, source: Path | None, dest: Path, store: FileStore) -> None:
    if source is None or not store.exists(source):
        raise AssetReconciliationError(url, "referenced asset has no source file")
    try:
        store.copy(source, dest)
    except OSError as exc:
        raise AssetReconciliationError(url, format_error_message(exc), exc) from exc
