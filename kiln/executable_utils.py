"""Executable discovery for external build steps.

Functions:
    find_executable: Locate an executable in PATH or node_modules.
    resolve_command: Resolve the program of an argv list.
"""

from __future__ import annotations

import shutil
from collections.abc import Sequence
from pathlib import Path


def find_executable(name: str, project_root: Path | None = None) -> str | None:
    """Find an executable in PATH or the project's node_modules/.bin.

    Args:
        name: Name of the executable (e.g. 'spago', 'tailwindcss').
        project_root: Optional project root to search for local installs.

    Returns:
        Full path to the executable if found, None otherwise.
    """
    found = shutil.which(name)
    if found:
        return found
    if project_root is not None:
        local = project_root / "node_modules" / ".bin" / name
        if local.exists():
            return str(local)
    return None


def resolve_command(command: Sequence[str], project_root: Path) -> list[str] | None:
    """Return ``command`` with its program resolved to a full path.

    Programs given as a path (containing a separator) are resolved against
    the project root.

    Returns:
        The resolved argv, or None when the program cannot be found.
    """
    if not command:
        return None
    program, *args = command
    if "/" in program:
        candidate = Path(program)
        if not candidate.is_absolute():
            candidate = project_root / candidate
        return [str(candidate), *args] if candidate.exists() else None
    found = find_executable(program, project_root)
    if found is None:
        return None
    return [found, *args]
