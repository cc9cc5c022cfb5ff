import asyncio

import pytest

from kiln.errors import RenderError
from kiln.scheduler import SHUTDOWN_REASON, Outcome, OutcomeStatus, run_batched


def test_one_failure_does_not_stop_the_batch():
    async def worker(key):
        if key == "c":
            raise RenderError(key, "boom")
        return Outcome(key, OutcomeStatus.GENERATED)

    outcomes = asyncio.run(run_batched(list("abcde"), worker, 2))

    assert [o.key for o in outcomes] == list("abcde")
    assert [o.ok for o in outcomes] == [True, True, False, True, True]
    assert outcomes[2].reason == "boom"


def test_in_flight_never_exceeds_concurrency():
    in_flight = 0
    peak = 0

    async def worker(key):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return Outcome(key, OutcomeStatus.GENERATED)

    outcomes = asyncio.run(run_batched([str(i) for i in range(11)], worker, 3))

    assert len(outcomes) == 11
    assert peak == 3


def test_stop_skips_remaining_batches():
    stop = asyncio.Event()
    started = []

    async def worker(key):
        started.append(key)
        stop.set()
        return Outcome(key, OutcomeStatus.GENERATED)

    outcomes = asyncio.run(run_batched(list("abcd"), worker, 2, stop))

    assert started == ["a", "b"]
    assert [o.status for o in outcomes] == [
        OutcomeStatus.GENERATED,
        OutcomeStatus.GENERATED,
        OutcomeStatus.ERROR,
        OutcomeStatus.ERROR,
    ]
    assert outcomes[3].reason == SHUTDOWN_REASON


def test_empty_task_list():
    async def worker(key):  # pragma: no cover - never called
        raise AssertionError(key)

    assert asyncio.run(run_batched([], worker, 4)) == []


def test_concurrency_must_be_positive():
    async def worker(key):  # pragma: no cover - never called
        return Outcome(key, OutcomeStatus.GENERATED)

    with pytest.raises(ValueError):
        asyncio.run(run_batched(["a"], worker, 0))
