"""Change coordination for the dev server.

The filesystem observer reports changes one file at a time, often in bursts
(an editor save can produce several events). ChangeCoordinator collects them
into a pending set and waits for a quiet period before dispatching a single
rebuild. Changes that arrive while a rebuild is running are kept and
dispatched in one follow-up rebuild as soon as it finishes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .build import BuildReport

logger = logging.getLogger(__name__)


class ChangeCoordinator:
    """Debounces file changes and serialises the resulting rebuilds.

    Attributes:
        debounce: Quiet period in seconds before a rebuild is dispatched.
        rebuild_queued: True when the timer fired during a rebuild.
    """

    def __init__(
        self,
        rebuild: Callable[[set[Path]], Awaitable[BuildReport]],
        on_success: Callable[[BuildReport], Awaitable[None]] | None = None,
        debounce: float = 0.3,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        """Initialize the coordinator.

        Args:
            rebuild: Coroutine function run with the accumulated paths.
            on_success: Awaited with the report of each successful rebuild.
            debounce: Quiet period in seconds.
            loop: Event loop to schedule on; defaults to the running loop
                at the first notification.
        """
        self._rebuild = rebuild
        self._on_success = on_success
        self.debounce = debounce
        self._loop = loop
        self._pending: set[Path] = set()
        self._timer: asyncio.TimerHandle | None = None
        self._busy = False
        self.rebuild_queued = False
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> frozenset[Path]:
        return frozenset(self._pending)

    @property
    def busy(self) -> bool:
        return self._busy

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def notify(self, path: Path) -> None:
        """Record a changed path and restart the debounce timer.

        Must be called on the event loop thread.
        """
        self._pending.add(Path(path))
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._get_loop().call_later(self.debounce, self._on_timer)

    def notify_threadsafe(self, path: Path) -> None:
        """Record a changed path from another thread (e.g. the observer)."""
        if self._loop is None:
            raise RuntimeError("notify_threadsafe requires a loop; pass one to ChangeCoordinator")
        self._loop.call_soon_threadsafe(self.notify, path)

    def _on_timer(self) -> None:
        self._timer = None
        if self._busy:
            self.rebuild_queued = True
            logger.debug("Rebuild in progress; queued %d change(s)", len(self._pending))
            return
        self._dispatch()

    def _dispatch(self) -> None:
        if not self._pending:
            return
        paths, self._pending = self._pending, set()
        self._busy = True
        self._task = self._get_loop().create_task(self._run(paths))

    async def _run(self, paths: set[Path]) -> None:
        logger.info("Rebuilding after %d change(s)", len(paths))
        try:
            report = await self._rebuild(paths)
            if report.success and self._on_success is not None:
                try:
                    await self._on_success(report)
                except Exception:
                    logger.exception("Failed to notify reload clients")
        except Exception:
            logger.exception("Rebuild failed")
        finally:
            self._busy = False
            if self.rebuild_queued:
                self.rebuild_queued = False
                self._dispatch()

    async def close(self) -> None:
        """Cancel the pending timer and wait for an in-flight rebuild."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.rebuild_queued = False
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
