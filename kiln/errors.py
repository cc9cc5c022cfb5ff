"""Kiln error hierarchy.

All kiln-specific errors inherit from KilnError for easy catching. Each error
belongs to exactly one recovery boundary:

- ItemParseError: caught per content file; the file is excluded from the cycle.
- RenderError: caught per generation task; becomes an error outcome.
- EnumerationError, UpstreamCompileError: abort the current build cycle.
- CacheLoadError, CacheSaveError, AssetReconciliationError,
  StylesheetBuildError: logged and otherwise ignored.
"""

from __future__ import annotations

from pathlib import Path


class KilnError(Exception):
    """Base error for all kiln operations.

    Attributes:
        message: Human-readable error message.
        original_error: The exception that triggered this one, if any.
    """

    def __init__(self, message: str, original_error: Exception | None = None):
        self.message = message
        self.original_error = original_error
        super().__init__(message)


class ItemParseError(KilnError):
    """A single content file could not be read or its front matter parsed.

    Attributes:
        source_path: Path to the offending content file.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        super().__init__(message, original_error)

    def __str__(self) -> str:
        return f"{self.source_path}: {self.message}"


class RenderError(KilnError):
    """Rendering or writing the page for one content key failed.

    Attributes:
        key: Content key whose page could not be produced.
    """

    def __init__(
        self, key: str, message: str, original_error: Exception | None = None
    ):
        self.key = key
        super().__init__(message, original_error)

    def __str__(self) -> str:
        return f"{self.key}: {self.message}"


class EnumerationError(KilnError):
    """A whole content root could not be listed.

    Attributes:
        root: The content root that failed.
    """

    def __init__(
        self, root: Path, message: str, original_error: Exception | None = None
    ):
        self.root = root
        super().__init__(message, original_error)

    def __str__(self) -> str:
        return f"{self.root}: {self.message}"


class StepError(KilnError):
    """An external build step failed, timed out or could not be started.

    Attributes:
        command: The argv that was run.
        output: Captured diagnostic text (stdout and stderr).
        returncode: Process exit code, or None when it never finished.
    """

    def __init__(
        self,
        command: list[str],
        message: str,
        output: str = "",
        returncode: int | None = None,
        original_error: Exception | None = None,
    ):
        self.command = list(command)
        self.output = output
        self.returncode = returncode
        super().__init__(message, original_error)


class UpstreamCompileError(StepError):
    """The upstream compiler step failed; the cycle is aborted."""


class StylesheetBuildError(StepError):
    """The stylesheet build failed; logged, the cycle continues."""


class CacheLoadError(KilnError):
    """The persisted cache document was unreadable or malformed."""


class CacheSaveError(KilnError):
    """The cache document could not be written."""


class AssetReconciliationError(KilnError):
    """A referenced asset could not be copied into the output tree.

    Attributes:
        asset_url: URL path of the referenced asset.
    """

    def __init__(
        self, asset_url: str, message: str, original_error: Exception | None = None
    ):
        self.asset_url = asset_url
        super().__init__(message, original_error)

    def __str__(self) -> str:
        return f"{self.asset_url}: {self.message}"


def format_error_message(exc: BaseException) -> str:
    """Format an exception into a user-friendly error message.

    Args:
        exc: The exception to format.

    Returns:
        A human-readable error message.
    """
    if isinstance(exc, KilnError):
        return exc.message
    error_type = type(exc).__name__
    error_msg = str(exc)

    # Handle common Jinja2/template errors
    if error_type == "UndefinedError":
        return f"Undefined variable: {error_msg}"
    if error_type == "TemplateSyntaxError":
        lineno = getattr(exc, "lineno", "?")
        return f"Template syntax error on line {lineno}: {error_msg}"
    if error_type == "TypeError":
        return f"Type error: {error_msg}"
    if error_type == "AttributeError":
        return f"Attribute error: {error_msg}"

    return f"{error_type}: {error_msg}"
