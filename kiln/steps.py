"""External build steps: the upstream compiler and the stylesheet build.

Both are plain subprocesses run with ``asyncio.create_subprocess_exec``. Each
run has a timeout; a process that exceeds it is killed. A step never raises
for a failed process: the result says whether it succeeded and the
orchestrator decides how serious that is.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from .config import StepConfig
from .executable_utils import resolve_command

logger = logging.getLogger(__name__)

_OUTPUT_TAIL = 4000


@dataclass(frozen=True)
class StepResult:
    """Outcome of one external step run.

    Attributes:
        ok: True if the process exited with status 0.
        returncode: Exit status, None if the process never finished.
        output: Combined stdout and stderr (tail only for long output).
    """

    ok: bool
    returncode: int | None
    output: str


class ExternalStep:
    """A configured external command.

    Attributes:
        name: Label used in log messages.
        config: Command, sources, output and timeout.
        project_root: Working directory of the process.
    """

    def __init__(self, name: str, config: StepConfig, project_root: Path):
        self.name = name
        self.config = config
        self.project_root = project_root

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def affected_by(self, paths: Iterable[Path]) -> bool:
        """Return True if any of ``paths`` lies under the step's sources."""
        return any(self.config.covers(Path(path)) for path in paths)

    def is_outdated(self) -> bool:
        """Return True if the output is missing or older than any source."""
        output = self.config.output
        if not output.exists():
            return True
        output_mtime = _newest_mtime([output])
        source_mtime = _newest_mtime(self.config.sources)
        return source_mtime > output_mtime

    async def run(self, env: Mapping[str, str] | None = None) -> StepResult:
        """Run the command once.

        Args:
            env: Extra environment variables for the process.

        Returns:
            StepResult describing the run. Timeouts and missing executables
            are reported as failed results.
        """
        argv = resolve_command(self.config.command, self.project_root)
        if argv is None:
            program = self.config.command[0] if self.config.command else "<none>"
            return StepResult(False, None, f"executable not found: {program}")

        logger.debug("Running %s: %s", self.name, " ".join(argv))
        process_env = {**os.environ, **(env or {})}
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(self.project_root),
                env=process_env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            return StepResult(False, None, f"failed to start {argv[0]}: {exc}")

        try:
            stdout, _ = await asyncio.wait_for(
                process.communicate(), timeout=self.config.timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return StepResult(
                False, None, f"{self.name} timed out after {self.config.timeout:g}s"
            )

        output = stdout.decode("utf-8", errors="replace")[-_OUTPUT_TAIL:]
        return StepResult(process.returncode == 0, process.returncode, output)


def _newest_mtime(paths: Iterable[Path]) -> float:
    newest = 0.0
    for path in paths:
        if path.is_file():
            newest = max(newest, path.stat().st_mtime)
        elif path.is_dir():
            for dirpath, dirnames, filenames in os.walk(path):
                dirnames[:] = [
                    d for d in dirnames if not d.startswith(".") and d != "node_modules"
                ]
                for filename in filenames:
                    try:
                        newest = max(newest, os.stat(os.path.join(dirpath, filename)).st_mtime)
                    except OSError:
                        continue
    return newest
