"""Bounded fan-out of generation tasks.

Tasks are split into batches of ``concurrency``. The tasks of one batch run
concurrently with ``asyncio.gather`` and batches run one after another, so no
more than ``concurrency`` tasks are ever in flight. A failing task never
cancels its siblings: its exception becomes an ERROR outcome.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from .errors import format_error_message

logger = logging.getLogger(__name__)

SHUTDOWN_REASON = "skipped: shutting down"


class OutcomeStatus(str, Enum):
    GENERATED = "generated"
    SKIPPED_CACHED = "skipped_cached"
    ERROR = "error"


@dataclass(frozen=True)
class Outcome:
    """Result of one generation task.

    Attributes:
        key: Content key the task was for.
        status: What happened.
        reason: Error description for ERROR outcomes, "" otherwise.
    """

    key: str
    status: OutcomeStatus
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status is not OutcomeStatus.ERROR


async def _run_one(key: str, worker: Callable[[str], Awaitable[Outcome]]) -> Outcome:
    try:
        return await worker(key)
    except Exception as exc:
        logger.debug("Task %s failed", key, exc_info=True)
        return Outcome(key, OutcomeStatus.ERROR, format_error_message(exc))


async def run_batched(
    tasks: Sequence[str],
    worker: Callable[[str], Awaitable[Outcome]],
    concurrency: int,
    stop: asyncio.Event | None = None,
) -> list[Outcome]:
    """Run ``worker`` over ``tasks`` in sequential batches.

    Args:
        tasks: Keys to process, in order.
        worker: Coroutine function producing the Outcome for one key.
        concurrency: Maximum number of tasks per batch.
        stop: When set before a batch starts, that batch and every later one
            are not run and get ERROR outcomes instead.

    Returns:
        Exactly one Outcome per task, in task order.

    Raises:
        ValueError: If ``concurrency`` is less than 1.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be at least 1, got {concurrency}")

    outcomes: list[Outcome] = []
    for start in range(0, len(tasks), concurrency):
        batch = tasks[start : start + concurrency]
        if stop is not None and stop.is_set():
            remaining = tasks[start:]
            logger.info("Shutting down; skipping %d remaining task(s)", len(remaining))
            outcomes.extend(
                Outcome(key, OutcomeStatus.ERROR, SHUTDOWN_REASON) for key in remaining
            )
            break
        outcomes.extend(await asyncio.gather(*(_run_one(key, worker) for key in batch)))
    return outcomes
