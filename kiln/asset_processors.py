"""Asset processors for Kiln.

Every mirrored asset goes through one processor chosen by priority. In
development every processor copies files unchanged. In production images are
re-encoded with Pillow and JavaScript is minified with rjsmin.

Key classes:
- ImageProcessor: Optimizes image files.
- JSProcessor: Minifies JavaScript files.
- StaticAssetProcessor: Copies assets without modification.
- AssetProcessorRegistry: Selects the processor for a file.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from PIL import Image, UnidentifiedImageError
from rjsmin import jsmin

from .protocols import FileStore

logger = logging.getLogger(__name__)


class BaseAssetProcessor(ABC):
    """Base class for asset processors.

    Attributes:
        store: FileStore used for plain copies and text writes.
    """

    def __init__(self, store: FileStore):
        self.store = store

    @property
    @abstractmethod
    def priority(self) -> int:
        """Return processor priority (higher = checked first)."""
        ...

    @abstractmethod
    def can_process(self, path: Path) -> bool:
        """Check if this processor can handle the given asset."""
        ...

    @abstractmethod
    def process(self, source: Path, dest: Path) -> None:
        """Write the processed form of ``source`` to ``dest``.

        Raises:
            OSError: If the asset cannot be read or written.
        """
        ...


class ImageProcessor(BaseAssetProcessor):
    """Re-encodes raster images with ``optimize=True``.

    Files Pillow cannot decode are copied unchanged.
    """

    SUPPORTED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}

    @property
    def priority(self) -> int:
        return 100

    def can_process(self, path: Path) -> bool:
        return path.suffix.lower() in self.SUPPORTED_EXTENSIONS

    def process(self, source: Path, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            with Image.open(source) as img:
                img.save(dest, optimize=True)
        except (UnidentifiedImageError, ValueError) as exc:
            logger.debug("Copying %s unoptimized: %s", source, exc)
            self.store.copy(source, dest)


class JSProcessor(BaseAssetProcessor):
    """Minifies JavaScript with rjsmin."""

    @property
    def priority(self) -> int:
        return 80

    def can_process(self, path: Path) -> bool:
        return path.suffix.lower() == ".js" and not path.name.endswith(".min.js")

    def process(self, source: Path, dest: Path) -> None:
        self.store.write(dest, jsmin(self.store.read(source)))


class StaticAssetProcessor(BaseAssetProcessor):
    """Copies files unchanged; the fallback for everything else."""

    @property
    def priority(self) -> int:
        return 0

    def can_process(self, path: Path) -> bool:
        return True

    def process(self, source: Path, dest: Path) -> None:
        self.store.copy(source, dest)


class AssetProcessorRegistry:
    """Registry of asset processors, consulted in priority order."""

    def __init__(self):
        self._processors: list[BaseAssetProcessor] = []

    def register(self, processor: BaseAssetProcessor) -> None:
        """Register a processor, keeping the list sorted by priority."""
        self._processors.append(processor)
        self._processors.sort(key=lambda p: p.priority, reverse=True)

    def get_processor(self, path: Path) -> BaseAssetProcessor | None:
        for processor in self._processors:
            if processor.can_process(path):
                return processor
        return None

    def process(self, source: Path, dest: Path) -> bool:
        """Process ``source`` into ``dest``.

        Returns:
            True if a processor handled the file, False if none matched.
        """
        processor = self.get_processor(source)
        if processor is None:
            return False
        processor.process(source, dest)
        return True


def create_default_registry(store: FileStore, production: bool = False) -> AssetProcessorRegistry:
    """Create a registry with the default processors.

    Args:
        store: FileStore handed to every processor.
        production: Register the optimizing processors.

    Returns:
        Configured AssetProcessorRegistry.
    """
    registry = AssetProcessorRegistry()
    if production:
        registry.register(ImageProcessor(store))
        registry.register(JSProcessor(store))
    registry.register(StaticAssetProcessor(store))
    return registry
