"""Incremental site building for Kiln.

BuildPipeline runs one build cycle at a time::

    IDLE -> COMPILING -> DISCOVERING -> DIFFING -> GENERATING -> PERSISTING -> DONE
                 \\-> ABORTED   \\-> ABORTED

Only pages whose fingerprint changed (or whose artefact is missing) are
regenerated. Generation fans out through the batched scheduler, so one
failing page never stops the others. A cycle fails as a whole only when the
upstream compiler fails or a content root cannot be listed; per-page errors
are counted and reported.

Key classes:
- BuildPipeline: Orchestrates full builds and incremental rebuilds.
- BuildReport: What one cycle did.
- BuildStats: Counters for one cycle.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .asset_resolver import AssetMap
from .assets import AssetMirror, reconcile_missing_assets
from .cache import BuildCache, BuildCacheStore, CacheDiff, diff
from .collections import build_collections, page_url
from .config import SiteConfig
from .content import ContentItem, Corpus, FileContentSource
from .errors import (
    EnumerationError,
    KilnError,
    RenderError,
    StepError,
    StylesheetBuildError,
    UpstreamCompileError,
    format_error_message,
)
from .hasher import fingerprint_many
from .protocols import ContentRenderer, ContentSource, FileStore, LayoutRenderer
from .renderers import MarkdownRenderer
from .scheduler import Outcome, OutcomeStatus, run_batched
from .steps import ExternalStep
from .templates import LayoutLoader
from .utils import empty_dir, epoch_millis, format_display_date, is_safe_segment, is_within

logger = logging.getLogger(__name__)

ARTICLES_DIR = "articles"
INDEX_KEY = "index"


class BuildState(str, Enum):
    IDLE = "idle"
    COMPILING = "compiling"
    DISCOVERING = "discovering"
    DIFFING = "diffing"
    GENERATING = "generating"
    PERSISTING = "persisting"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class BuildStats:
    """Counters for a single build cycle.

    A fresh instance is created for every cycle.
    """

    generated: int = 0
    skipped_cached: int = 0
    errors: int = 0
    error_keys: list[str] = field(default_factory=list)
    assets_copied: int = 0
    assets_missing: int = 0
    started_at: int = 0
    finished_at: int = 0

    def record(self, outcome: Outcome) -> None:
        if outcome.status is OutcomeStatus.GENERATED:
            self.generated += 1
        elif outcome.status is OutcomeStatus.SKIPPED_CACHED:
            self.skipped_cached += 1
        else:
            self.record_error(outcome.key)

    def record_error(self, key: str) -> None:
        self.errors += 1
        self.error_keys.append(key)

    @property
    def duration_ms(self) -> int:
        return max(0, self.finished_at - self.started_at)

    def summary(self) -> dict[str, int]:
        return {
            "generated": self.generated,
            "skippedCached": self.skipped_cached,
            "errors": self.errors,
        }


@dataclass
class BuildReport:
    """Result of one build cycle.

    Attributes:
        state: DONE or ABORTED once the cycle has finished.
        stats: Counters for the cycle.
        outcomes: One outcome per content key in the corpus.
        reason: Why the cycle aborted, "" otherwise.
        changed_outputs: URL paths written or removed during the cycle.
    """

    state: BuildState
    stats: BuildStats
    outcomes: list[Outcome] = field(default_factory=list)
    reason: str = ""
    changed_outputs: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state is BuildState.DONE

    def outcome_for(self, key: str) -> Outcome | None:
        for outcome in self.outcomes:
            if outcome.key == key:
                return outcome
        return None


@dataclass
class _CycleRequest:
    paths: set[Path] = field(default_factory=set)
    force: bool = False
    full: bool = False

    def merge(self, other: _CycleRequest) -> None:
        self.paths |= other.paths
        self.force = self.force or other.force
        self.full = self.full or other.full


class BuildPipeline:
    """Orchestrates build cycles for one project.

    Every collaborator can be injected; the defaults are the file-based
    content source, the markdown renderer and the Jinja2 layouts.

    Attributes:
        config: Resolved site configuration.
        store: The process-wide FileStore.
        state: State of the current (or last) cycle.
    """

    def __init__(
        self,
        config: SiteConfig,
        store: FileStore,
        source: ContentSource | None = None,
        renderer: ContentRenderer | None = None,
        layouts: LayoutLoader | None = None,
        production: bool = False,
    ):
        self.config = config
        self.store = store
        self.production = production
        self.source = source or FileContentSource(config.content_roots, store)
        self.renderer = renderer or MarkdownRenderer()
        self.asset_map = AssetMap(config.asset_paths, config.output_dir)
        self.layouts = layouts or LayoutLoader(
            config.templates_dir,
            config.compile.output if config.compile.enabled else None,
            config.site,
            self.asset_map,
        )
        self.cache_store = BuildCacheStore(config.cache_path, store)
        self.assets = AssetMirror(
            self.asset_map, store, config.asset_concurrency, production=production
        )
        self.compiler = ExternalStep("compiler", config.compile, config.project_root)
        self.stylesheet = ExternalStep("stylesheet", config.css, config.project_root)
        self.state = BuildState.IDLE
        self._stop = asyncio.Event()
        self._running = False
        self._pending = _CycleRequest()
        self._follow_up: asyncio.Future[BuildReport] | None = None
        self._drain_task: asyncio.Task | None = None

    def output_path_for(self, key: str) -> Path:
        """Return the artefact path of the page for ``key``.

        Raises:
            RenderError: If ``key`` would place the page outside the articles tree.
        """
        articles = self.config.output_dir / ARTICLES_DIR
        page_dir = articles / key
        if not is_safe_segment(key) or page_dir.parent != articles:
            raise RenderError(key, "Key does not name a directory under the articles tree")
        return page_dir / "index.html"

    @property
    def index_path(self) -> Path:
        return self.config.output_dir / "index.html"

    def _output_url(self, path: Path) -> str | None:
        if not is_within(path, self.config.output_dir):
            return None
        return "/" + path.relative_to(self.config.output_dir).as_posix()

    async def build(self, force: bool = False) -> BuildReport:
        """Run a full build cycle.

        Args:
            force: Regenerate every page regardless of the cache.

        Returns:
            The cycle's BuildReport.
        """
        return await self._request(_CycleRequest(force=force, full=True))

    async def rebuild(self, changed_paths: Iterable[Path]) -> BuildReport:
        """Run an incremental cycle for a set of changed source paths.

        Calls are serialised. A call made while a cycle is in flight merges
        its paths into a single queued follow-up cycle; every such caller
        receives that follow-up's report.

        Args:
            changed_paths: Files reported as created, modified or deleted.

        Returns:
            The BuildReport of the cycle that covered ``changed_paths``.
        """
        return await self._request(_CycleRequest(paths={Path(p) for p in changed_paths}))

    def shutdown(self) -> None:
        """Ask the in-flight cycle to skip its remaining batches."""
        self._stop.set()

    async def wait_idle(self) -> None:
        """Wait until any queued follow-up cycle has finished."""
        if self._drain_task is not None:
            await asyncio.gather(self._drain_task, return_exceptions=True)

    def clean(self, all: bool = False) -> None:
        """Empty the output tree, and with ``all`` the compiled artefacts too."""
        logger.info("Cleaning %s", self.config.output_dir)
        empty_dir(self.config.output_dir)
        if all and self.config.compile.output != self.config.project_root:
            logger.info("Cleaning %s", self.config.compile.output)
            self.store.remove(self.config.compile.output)

    async def _request(self, request: _CycleRequest) -> BuildReport:
        if self._running:
            self._pending.merge(request)
            if self._follow_up is None:
                self._follow_up = asyncio.get_running_loop().create_future()
                logger.debug("Build in progress; queued a follow-up cycle")
            return await asyncio.shield(self._follow_up)

        self._running = True
        try:
            return await self._cycle(request)
        finally:
            if self._follow_up is not None:
                self._drain_task = asyncio.create_task(self._drain())
            else:
                self._running = False

    async def _drain(self) -> None:
        try:
            while self._follow_up is not None:
                future, self._follow_up = self._follow_up, None
                request, self._pending = self._pending, _CycleRequest()
                try:
                    report = await self._cycle(request)
                except Exception as exc:
                    future.set_exception(exc)
                except BaseException:
                    future.cancel()
                    raise
                else:
                    future.set_result(report)
        finally:
            self._running = False

    def _set_state(self, state: BuildState) -> None:
        self.state = state
        logger.debug("Build state: %s", state.value)

    async def _cycle(self, request: _CycleRequest) -> BuildReport:
        stats = BuildStats(started_at=epoch_millis())
        report = BuildReport(state=BuildState.IDLE, stats=stats)

        self._set_state(BuildState.COMPILING)
        try:
            await self._run_steps(request, report)
        except UpstreamCompileError as exc:
            return self._abort(report, exc)

        self._set_state(BuildState.DISCOVERING)
        try:
            items = await asyncio.to_thread(self.source.list_items)
        except EnumerationError as exc:
            return self._abort(report, exc)
        corpus = Corpus(items)
        logger.debug("Discovered %d item(s)", len(corpus))

        self._set_state(BuildState.DIFFING)
        cache = await asyncio.to_thread(self.cache_store.load)
        layout, signature = await asyncio.to_thread(self.layouts.resolve)
        layout_changed = cache.layout != signature
        if layout_changed and len(cache):
            logger.info("Layouts changed since the last build; regenerating all pages")
        force = request.force or layout_changed
        changes = diff(
            cache,
            corpus.unique_items(),
            self.output_path_for,
            self.store.exists,
            force=force,
            touched=request.paths,
        )
        for key in changes.stale:
            logger.debug("Stale: %s (%s)", key, changes.reasons[key])

        self._set_state(BuildState.GENERATING)
        mirrored = await self.assets.mirror(self._stop)
        stats.assets_copied += len(mirrored.copied)
        report.changed_outputs.extend(mirrored.copied)

        removed = [key for key in list(cache.entries) if key not in corpus]
        await self._remove_pages(cache, removed, report)

        written: list[Path] = []
        outcomes = await run_batched(
            changes.stale,
            lambda key: self._generate(key, corpus, changes, cache, layout, written),
            self.config.concurrency,
            self._stop,
        )
        stale_outcomes = {outcome.key: outcome for outcome in outcomes}
        for key in corpus.keys():
            outcome = stale_outcomes.get(key) or Outcome(key, OutcomeStatus.SKIPPED_CACHED)
            if outcome.status is OutcomeStatus.ERROR:
                logger.error("Failed to generate %s: %s", key, outcome.reason)
            stats.record(outcome)
            report.outcomes.append(outcome)
        report.changed_outputs.extend(
            page_url(outcome.key)
            for outcome in outcomes
            if outcome.status is OutcomeStatus.GENERATED
        )

        if not self._stop.is_set():
            await self._generate_index(corpus, cache, layout, force or bool(removed), report, written)
        if layout_changed and self._needs_layout_retry(cache, changes, outcomes):
            # Failed pages still match their cached fingerprint; only the
            # layout change can make them stale again next cycle.
            logger.info("Keeping the previous layout signature until failed pages are rebuilt")
        else:
            cache.layout = signature

        self._set_state(BuildState.PERSISTING)
        cache.last_build = epoch_millis()
        await asyncio.to_thread(self.cache_store.save, cache)

        if not self._stop.is_set():
            await self._reconcile(request, corpus, written, report)

        self._set_state(BuildState.DONE)
        report.state = BuildState.DONE
        stats.finished_at = epoch_millis()
        self._log_summary(stats)
        return report

    def _abort(self, report: BuildReport, exc: KilnError) -> BuildReport:
        self._set_state(BuildState.ABORTED)
        report.state = BuildState.ABORTED
        report.reason = str(exc)
        report.stats.finished_at = epoch_millis()
        logger.error("Build aborted: %s", exc)
        if isinstance(exc, StepError) and exc.output:
            logger.error(exc.output.rstrip())
        return report

    async def _run_steps(self, request: _CycleRequest, report: BuildReport) -> None:
        env = {"NODE_ENV": "production" if self.production else "development"}

        if self.compiler.enabled:
            if request.full:
                needed = request.force or await asyncio.to_thread(self.compiler.is_outdated)
            else:
                needed = self.compiler.affected_by(request.paths)
            if needed:
                logger.info("Compiling sources...")
                result = await self.compiler.run(env)
                if not result.ok:
                    lines = result.output.strip().splitlines()
                    raise UpstreamCompileError(
                        self.compiler.config.command,
                        f"Upstream compile failed: {lines[-1] if lines else 'no output'}",
                        result.output,
                        result.returncode,
                    )
                logger.info("Compiled sources")
            else:
                logger.debug("Compiled output is up to date")

        if self.stylesheet.enabled and (
            request.full or self.stylesheet.affected_by(request.paths)
        ):
            result = await self.stylesheet.run(env)
            if result.ok:
                logger.info("Built stylesheet")
                url = self._output_url(self.stylesheet.config.output)
                if url:
                    report.changed_outputs.append(url)
            else:
                error = StylesheetBuildError(
                    self.stylesheet.config.command,
                    "Stylesheet build failed; continuing with the previous stylesheet",
                    result.output,
                    result.returncode,
                )
                logger.warning("%s", error)
                if result.output:
                    logger.debug(result.output.rstrip())

    @staticmethod
    def _needs_layout_retry(
        cache: BuildCache, changes: CacheDiff, outcomes: list[Outcome]
    ) -> bool:
        return any(
            cache.get(outcome.key) == changes.fingerprints.get(outcome.key)
            for outcome in outcomes
            if outcome.status is OutcomeStatus.ERROR
        )

    async def _remove_pages(
        self, cache: BuildCache, keys: list[str], report: BuildReport
    ) -> None:
        for key in keys:
            try:
                page_dir = self.output_path_for(key).parent
            except RenderError:
                logger.warning("Dropping cache entry %r: not a page directory", key)
                continue
            logger.info("Removing page for deleted content: %s", key)
            await asyncio.to_thread(self.store.remove, page_dir)
            report.changed_outputs.append(page_url(key))
        cache.forget(keys)

    def _page_data(
        self, item: ContentItem, html: str, headings: list[Any]
    ) -> dict[str, Any]:
        if not item.title or not item.title.strip():
            raise RenderError(item.key, "Page data has no title")
        return {
            "key": item.key,
            "kind": item.kind,
            "title": item.title,
            "date": item.iso_date,
            "display_date": format_display_date(item.iso_date),
            "updated_at": item.updated_at,
            "updated_display_date": format_display_date(item.updated_at or ""),
            "tags": list(item.tags),
            "url": page_url(item.key),
            "content": html,
            "headings": headings,
            "front_matter": dict(item.raw_front_matter),
        }

    def _render_body(self, body: str) -> tuple[str, list[Any]]:
        if isinstance(self.renderer, MarkdownRenderer):
            return self.renderer.render_with_headings(body)
        return self.renderer.render(body), []

    async def _generate(
        self,
        key: str,
        corpus: Corpus,
        changes: CacheDiff,
        cache: BuildCache,
        layout: LayoutRenderer,
        written: list[Path],
    ) -> Outcome:
        item = corpus.resolve(key)
        if item is None:
            raise RenderError(key, "Key is no longer in the corpus")
        body = await asyncio.to_thread(self.source.read_body, item)
        try:
            html, headings = await asyncio.to_thread(self._render_body, body)
        except Exception as exc:
            raise RenderError(key, format_error_message(exc), exc) from exc
        page_data = self._page_data(item, html, headings)
        try:
            document = await asyncio.to_thread(layout.render_page, page_data)
        except Exception as exc:
            raise RenderError(key, format_error_message(exc), exc) from exc
        path = self.output_path_for(key)
        try:
            await asyncio.to_thread(self.store.write, path, document)
        except OSError as exc:
            raise RenderError(key, f"Cannot write {path}: {exc}", exc) from exc
        cache.update(key, changes.fingerprints[key])
        written.append(path)
        logger.debug("Generated %s", key)
        return Outcome(key, OutcomeStatus.GENERATED)

    async def _generate_index(
        self,
        corpus: Corpus,
        cache: BuildCache,
        layout: LayoutRenderer,
        force: bool,
        report: BuildReport,
        written: list[Path],
    ) -> None:
        corpus_fp = fingerprint_many(corpus.unique_items())
        if (
            not force
            and cache.index == corpus_fp
            and await asyncio.to_thread(self.store.exists, self.index_path)
        ):
            return
        try:
            document = await asyncio.to_thread(layout.render_index, build_collections(corpus))
            await asyncio.to_thread(self.store.write, self.index_path, document)
        except Exception as exc:
            logger.error("Failed to generate index: %s", format_error_message(exc))
            report.stats.record_error(INDEX_KEY)
            cache.index = None
            return
        cache.index = corpus_fp
        written.append(self.index_path)
        report.changed_outputs.append("/")
        logger.debug("Generated index")

    async def _reconcile(
        self,
        request: _CycleRequest,
        corpus: Corpus,
        written: list[Path],
        report: BuildReport,
    ) -> None:
        html_files = list(written)
        if request.full:
            for key in corpus.keys():
                if not is_safe_segment(key):
                    continue
                path = self.output_path_for(key)
                if path not in html_files and self.store.exists(path):
                    html_files.append(path)
            if self.index_path not in html_files and self.store.exists(self.index_path):
                html_files.append(self.index_path)
        if not html_files:
            return
        result = await asyncio.to_thread(
            reconcile_missing_assets, html_files, self.asset_map, self.store
        )
        report.stats.assets_copied += len(result.copied)
        report.stats.assets_missing += len(result.missing)
        report.changed_outputs.extend(result.copied)

    def _log_summary(self, stats: BuildStats) -> None:
        summary = stats.summary()
        logger.info(
            "Build complete in %dms: %d generated, %d cached, %d error(s)",
            stats.duration_ms,
            summary["generated"],
            summary["skippedCached"],
            summary["errors"],
        )
        if stats.error_keys:
            logger.warning("Failed: %s", ", ".join(stats.error_keys))
