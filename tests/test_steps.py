import asyncio
import os
import sys
from pathlib import Path

from kiln.config import StepConfig
from kiln.executable_utils import find_executable, resolve_command
from kiln.steps import ExternalStep


def make_step(tmp_path: Path, code: str, timeout: float = 10, sources=("src",), output="out.txt"):
    config = StepConfig(
        command=(sys.executable, "-c", code),
        sources=tuple(tmp_path / s for s in sources),
        output=tmp_path / output,
        timeout=timeout,
    )
    return ExternalStep("test", config, tmp_path)


def test_successful_step_captures_output(tmp_path):
    step = make_step(tmp_path, "import os; print('env', os.environ['NODE_ENV'])")
    result = asyncio.run(step.run({"NODE_ENV": "production"}))
    assert result.ok
    assert result.returncode == 0
    assert "env production" in result.output


def test_failing_step_reports_returncode(tmp_path):
    step = make_step(tmp_path, "import sys; sys.stderr.write('bad things\\n'); sys.exit(3)")
    result = asyncio.run(step.run())
    assert not result.ok
    assert result.returncode == 3
    assert "bad things" in result.output


def test_step_is_killed_after_timeout(tmp_path):
    step = make_step(tmp_path, "import time; time.sleep(30)", timeout=0.5)
    result = asyncio.run(step.run())
    assert not result.ok
    assert result.returncode is None
    assert "timed out after 0.5s" in result.output


def test_missing_executable(tmp_path):
    config = StepConfig(("./node_modules/.bin/nothing",), (), tmp_path / "out", 5)
    result = asyncio.run(ExternalStep("css", config, tmp_path).run())
    assert not result.ok
    assert "executable not found" in result.output


def test_affected_by(tmp_path):
    step = make_step(tmp_path, "pass", sources=("src", "tailwind.config.js"))
    assert step.affected_by([tmp_path / "src" / "Main.purs"])
    assert step.affected_by([tmp_path / "tailwind.config.js"])
    assert not step.affected_by([tmp_path / "posts" / "a.md"])
    assert not step.affected_by([])


def test_is_outdated(tmp_path):
    (tmp_path / "src").mkdir()
    source = tmp_path / "src" / "Main.purs"
    source.write_text("module Main")
    step = make_step(tmp_path, "pass")
    assert step.is_outdated()

    output = tmp_path / "out.txt"
    output.write_text("built")
    mtime = source.stat().st_mtime
    os.utime(output, (mtime + 10, mtime + 10))
    assert not step.is_outdated()

    os.utime(source, (mtime + 20, mtime + 20))
    assert step.is_outdated()


def test_disabled_step(tmp_path):
    step = ExternalStep("off", StepConfig((), (), tmp_path, 5), tmp_path)
    assert not step.enabled


def test_resolve_command_finds_local_bin(tmp_path):
    bin_dir = tmp_path / "node_modules" / ".bin"
    bin_dir.mkdir(parents=True)
    tool = bin_dir / "kiln-fake-compiler"
    tool.write_text("#!/bin/sh\n")
    tool.chmod(0o755)

    assert find_executable("kiln-fake-compiler", tmp_path) == str(tool)
    assert resolve_command(["kiln-fake-compiler", "build"], tmp_path) == [str(tool), "build"]
    assert resolve_command([], tmp_path) is None
    assert resolve_command(["./missing"], tmp_path) is None
