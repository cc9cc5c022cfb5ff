"""Local filesystem store for Kiln.

LocalFileStore is the only FileStore implementation. It is created once at
startup and handed to every stage, so no pipeline code touches ``os`` or
``shutil`` directly.

Writes are atomic: content goes to a temporary file in the destination
directory and is moved into place with ``os.replace``. A concurrent reader
(the dev server, ``kiln status``) therefore sees either the old or the new
file, never a half-written one.

Key classes:
- LocalFileStore: FileStore backed by pathlib and shutil.
- WatchEvent: A single filesystem change.
- _ChangeHandler: watchdog event handler that filters and forwards events.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

IGNORED_PARTS = {"node_modules", ".git", "__pycache__"}


@dataclass(frozen=True)
class WatchEvent:
    """A file change raised by the observer.

    Attributes:
        path: Absolute path of the changed file.
        kind: One of "created", "modified", "deleted" or "moved".
    """

    path: Path
    kind: str


def atomic_write_text(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` via a temp file and ``os.replace``.

    Args:
        path: Destination file.
        content: Text to write (UTF-8).
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


class LocalFileStore:
    """FileStore implementation for the local disk."""

    def exists(self, path: Path) -> bool:
        return path.is_file()

    def read(self, path: Path) -> str:
        return path.read_text(encoding="utf-8")

    def write(self, path: Path, content: str) -> None:
        atomic_write_text(path, content)

    def remove(self, path: Path) -> None:
        if path.is_dir():
            shutil.rmtree(path, ignore_errors=True)
        elif path.exists() or path.is_symlink():
            path.unlink()

    def list(self, root: Path, pattern: str = "*") -> list[Path]:
        """List files under ``root`` recursively.

        Raises:
            NotADirectoryError: If ``root`` exists but is not a directory.
            OSError: If the directory cannot be read.
        """
        if not root.is_dir():
            raise NotADirectoryError(str(root))
        # Listing the directory up front surfaces permission errors that
        # rglob would otherwise swallow.
        os.listdir(root)
        return sorted(path for path in root.rglob(pattern) if path.is_file())

    def copy(self, source: Path, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)

    def is_current(self, source: Path, dest: Path, exact: bool = True) -> bool:
        """Return True if ``dest`` already mirrors ``source``.

        Args:
            source: Original file.
            dest: Copy in the output tree.
            exact: Require equal size and mtime (plain copies). Processed
                files only need to be at least as new as the source.
        """
        try:
            src_stat = source.stat()
            dest_stat = dest.stat()
        except OSError:
            return False
        if not exact:
            return dest_stat.st_mtime >= src_stat.st_mtime
        return (
            src_stat.st_size == dest_stat.st_size
            and int(src_stat.st_mtime) == int(dest_stat.st_mtime)
        )

    def watch(
        self,
        roots: Iterable[Path],
        callback: Callable[[WatchEvent], None],
        ignore: Iterable[Path] = (),
    ) -> Observer:
        """Observe ``roots`` recursively with watchdog.

        Roots that do not exist are skipped; a root that is a file is watched
        through its parent directory (non-recursively) and filtered to that
        file.

        Args:
            roots: Directories or files to observe.
            callback: Called with a WatchEvent from the observer thread.
            ignore: Paths whose subtree is never reported.

        Returns:
            The started observer; call ``stop()`` to end observation.
        """
        observer = Observer()
        ignored = [Path(p) for p in ignore]
        files: dict[Path, set[Path]] = {}
        for root in roots:
            if root.is_dir():
                handler = _ChangeHandler(callback, ignored)
                observer.schedule(handler, str(root), recursive=True)
                logger.debug("Watching %s", root)
            elif root.is_file():
                files.setdefault(root.parent, set()).add(root)
        for parent, only in files.items():
            handler = _ChangeHandler(callback, ignored, only=only)
            observer.schedule(handler, str(parent), recursive=False)
            logger.debug("Watching %s", ", ".join(str(p) for p in sorted(only)))
        observer.start()
        return observer


_KINDS = {
    "created": "created",
    "modified": "modified",
    "deleted": "deleted",
    "moved": "moved",
}


class _ChangeHandler(FileSystemEventHandler):
    """Forward relevant watchdog events to the callback as WatchEvents."""

    def __init__(
        self,
        callback: Callable[[WatchEvent], None],
        ignored: list[Path],
        only: set[Path] | None = None,
    ):
        super().__init__()
        self.callback = callback
        self.ignored = ignored
        self.only = only

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        kind = _KINDS.get(event.event_type)
        if kind is None:
            return
        path = Path(os.fsdecode(event.src_path))
        if kind == "moved" and getattr(event, "dest_path", None):
            path = Path(os.fsdecode(event.dest_path))
        if self.should_ignore(path):
            return
        self.callback(WatchEvent(path, kind))

    def should_ignore(self, path: Path) -> bool:
        if self.only is not None and path not in self.only:
            return True
        if path.name.startswith("."):
            return True
        if IGNORED_PARTS.intersection(path.parts):
            return True
        for ignored in self.ignored:
            if path == ignored or ignored in path.parents:
                return True
        return False
