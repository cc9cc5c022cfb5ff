import asyncio
import logging
from pathlib import Path

import pytest

from kiln.build import BuildReport, BuildState, BuildStats
from kiln.watcher import ChangeCoordinator


def done_report(changed=("/",)):
    return BuildReport(BuildState.DONE, BuildStats(), changed_outputs=list(changed))


class RecordingRebuild:
    def __init__(self, delay=0.0, report=None, error=None):
        self.calls: list[set[Path]] = []
        self.delay = delay
        self.report = report or done_report()
        self.error = error

    async def __call__(self, paths):
        self.calls.append(set(paths))
        await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.report


def test_burst_of_changes_is_one_rebuild():
    rebuild = RecordingRebuild()
    paths = [Path(f"post-{n}.md") for n in range(5)]

    async def scenario():
        coordinator = ChangeCoordinator(rebuild, debounce=0.05)
        for path in paths:
            coordinator.notify(path)
            await asyncio.sleep(0.01)
        assert coordinator.pending == set(paths)
        await asyncio.sleep(0.15)
        await coordinator.close()

    asyncio.run(scenario())

    assert rebuild.calls == [set(paths)]


def test_repeated_path_is_rebuilt_once():
    rebuild = RecordingRebuild()

    async def scenario():
        coordinator = ChangeCoordinator(rebuild, debounce=0.05)
        for name in ("a.md", "b.md", "a.md"):
            coordinator.notify(Path(name))
        await asyncio.sleep(0.15)
        await coordinator.close()

    asyncio.run(scenario())

    assert rebuild.calls == [{Path("a.md"), Path("b.md")}]


def test_changes_during_rebuild_are_queued():
    rebuild = RecordingRebuild(delay=0.2)

    async def scenario():
        coordinator = ChangeCoordinator(rebuild, debounce=0.02)
        coordinator.notify(Path("first.md"))
        await asyncio.sleep(0.06)
        assert coordinator.busy
        coordinator.notify(Path("second.md"))
        coordinator.notify(Path("third.md"))
        await asyncio.sleep(0.06)
        assert coordinator.rebuild_queued
        assert len(rebuild.calls) == 1
        await asyncio.sleep(0.5)
        await coordinator.close()
        assert not coordinator.busy

    asyncio.run(scenario())

    assert rebuild.calls == [{Path("first.md")}, {Path("second.md"), Path("third.md")}]


def test_on_success_receives_report():
    report = done_report(["/articles/hello/"])
    rebuild = RecordingRebuild(report=report)
    seen = []

    async def on_success(result):
        seen.append(result)

    async def scenario():
        coordinator = ChangeCoordinator(rebuild, on_success, debounce=0.01)
        coordinator.notify(Path("hello.md"))
        await asyncio.sleep(0.1)
        await coordinator.close()

    asyncio.run(scenario())

    assert seen == [report]


def test_aborted_rebuild_does_not_notify():
    rebuild = RecordingRebuild(report=BuildReport(BuildState.ABORTED, BuildStats(), reason="x"))
    seen = []

    async def on_success(result):  # pragma: no cover - must not be called
        seen.append(result)

    async def scenario():
        coordinator = ChangeCoordinator(rebuild, on_success, debounce=0.01)
        coordinator.notify(Path("hello.md"))
        await asyncio.sleep(0.1)
        await coordinator.close()

    asyncio.run(scenario())

    assert seen == []


def test_failures_are_logged_and_coordinator_recovers(caplog):
    caplog.set_level(logging.INFO, logger="kiln")

    async def broken_notify(report):
        raise ConnectionError("socket gone")

    failing = RecordingRebuild(error=RuntimeError("exploded"))

    async def scenario():
        coordinator = ChangeCoordinator(failing, debounce=0.01)
        coordinator.notify(Path("a.md"))
        await asyncio.sleep(0.1)
        assert not coordinator.busy
        await coordinator.close()

        notifying = ChangeCoordinator(RecordingRebuild(), broken_notify, debounce=0.01)
        notifying.notify(Path("b.md"))
        await asyncio.sleep(0.1)
        await notifying.close()

    asyncio.run(scenario())

    assert "Rebuild failed" in caplog.text
    assert "Failed to notify reload clients" in caplog.text


def test_notify_threadsafe_requires_loop():
    coordinator = ChangeCoordinator(RecordingRebuild())
    with pytest.raises(RuntimeError, match="requires a loop"):
        coordinator.notify_threadsafe(Path("a.md"))


def test_close_cancels_pending_timer():
    rebuild = RecordingRebuild()

    async def scenario():
        coordinator = ChangeCoordinator(rebuild, debounce=0.05)
        coordinator.notify(Path("a.md"))
        await coordinator.close()
        await asyncio.sleep(0.1)

    asyncio.run(scenario())

    assert rebuild.calls == []
