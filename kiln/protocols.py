"""Protocol definitions for Kiln.

This module defines the interfaces (protocols) the build pipeline depends on.
The orchestrator only ever talks to these seams, so tests can substitute
in-memory fakes and the concrete implementations stay swappable:

- FileStore: the single filesystem capability (one implementation per process).
- ContentRenderer: the markdown-to-HTML collaborator.
- LayoutRenderer: the page/index layout collaborator.
- ContentSource: discovery of content items.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .content import ContentItem
    from .filestore import WatchEvent


@runtime_checkable
class WatchHandle(Protocol):
    """Handle returned by FileStore.watch; stopping it ends observation."""

    @abstractmethod
    def stop(self) -> None: ...


@runtime_checkable
class FileStore(Protocol):
    """Filesystem capability used by every pipeline stage.

    Business logic never branches on the environment; it receives one
    FileStore chosen at startup.
    """

    @abstractmethod
    def exists(self, path: Path) -> bool:
        """Return True if a file exists at ``path``."""
        ...

    @abstractmethod
    def read(self, path: Path) -> str:
        """Read a UTF-8 text file."""
        ...

    @abstractmethod
    def write(self, path: Path, content: str) -> None:
        """Atomically write a UTF-8 text file, creating parent directories."""
        ...

    @abstractmethod
    def remove(self, path: Path) -> None:
        """Remove a file or directory tree; missing paths are ignored."""
        ...

    @abstractmethod
    def list(self, root: Path, pattern: str = "*") -> list[Path]:
        """Recursively list files under ``root`` matching ``pattern``."""
        ...

    @abstractmethod
    def copy(self, source: Path, dest: Path) -> None:
        """Copy a file, creating parent directories."""
        ...

    @abstractmethod
    def is_current(self, source: Path, dest: Path, exact: bool = True) -> bool:
        """Return True if ``dest`` already mirrors ``source``.

        With ``exact`` the copy must match in size and mtime; otherwise
        ``dest`` only has to be at least as new as ``source``.
        """
        ...

    @abstractmethod
    def watch(
        self,
        roots: Iterable[Path],
        callback: Callable[[WatchEvent], None],
        ignore: Iterable[Path] = (),
    ) -> WatchHandle:
        """Observe ``roots`` recursively and pass each change to ``callback``."""
        ...


@runtime_checkable
class ContentRenderer(Protocol):
    """Protocol for rendering markdown bodies to HTML.

    Implementations must be pure: same input, same output.
    """

    @abstractmethod
    def render(self, content: str) -> str:
        """Render markdown source to an HTML fragment."""
        ...


@runtime_checkable
class LayoutRenderer(Protocol):
    """Protocol for wrapping page data in a full HTML document.

    Callers validate page data before invoking; implementations may assume
    well-formed input.
    """

    @abstractmethod
    def render_page(self, page_data: Mapping[str, Any]) -> str:
        """Render one content page."""
        ...

    @abstractmethod
    def render_index(self, collections: Mapping[str, Any]) -> str:
        """Render the aggregate index page."""
        ...


@runtime_checkable
class ContentSource(Protocol):
    """Protocol for discovering content items."""

    @abstractmethod
    def list_items(self) -> list[ContentItem]:
        """Enumerate every content item across all configured roots."""
        ...

    @abstractmethod
    def read_body(self, item: ContentItem) -> str:
        """Return the markdown body of ``item`` (front matter removed)."""
        ...
