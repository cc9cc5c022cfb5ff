"""Asset URL resolution for Kiln.

AssetMap knows which source directory backs each ``/assets/...`` URL prefix
and where that URL lives in the output tree. It is used both for mirroring
assets and by layouts to build asset URLs.

Key classes:
- AssetMap: Maps asset URLs to source and output paths.
- AssetNotFoundError: Raised by layout helpers for unknown assets.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from pathlib import Path
from urllib.parse import quote

from .utils import is_within


class AssetNotFoundError(Exception):
    """Error raised when a layout asks for an asset that does not exist.

    Attributes:
        asset_name: The name of the asset that was requested.
        asset_type: The type of asset (e.g. "image", "font", "js", "css").
        searched_paths: Paths that were searched.
    """

    def __init__(self, asset_name: str, asset_type: str, searched_paths: list[Path]):
        self.asset_name = asset_name
        self.asset_type = asset_type
        self.searched_paths = searched_paths
        paths_str = ", ".join(str(p) for p in searched_paths)
        super().__init__(f"{asset_type} asset '{asset_name}' not found. Searched: {paths_str}")


class AssetMap:
    """Maps asset URL prefixes to their source roots.

    Attributes:
        prefixes: URL prefix (e.g. ``/assets/images``) to source root.
        output_dir: Root of the output tree.
    """

    IMAGE_EXTENSIONS = ("png", "jpg", "jpeg", "gif", "svg", "webp")
    FONT_EXTENSIONS = ("woff2", "woff", "ttf", "otf", "eot")

    def __init__(self, prefixes: Mapping[str, Path], output_dir: Path):
        # Longest prefix first so nested prefixes win.
        self.prefixes = dict(
            sorted(prefixes.items(), key=lambda pair: len(pair[0]), reverse=True)
        )
        self.output_dir = output_dir

    def output_for(self, url: str) -> Path:
        """Return where ``url`` lives in the output tree."""
        return self.output_dir / url.lstrip("/")

    def source_for(self, url: str) -> Path | None:
        """Return the source file backing ``url``, or None if no prefix matches."""
        for prefix, root in self.prefixes.items():
            if url == prefix or url.startswith(prefix + "/"):
                relative = url[len(prefix) :].lstrip("/")
                if not relative:
                    return None
                candidate = (root / relative).resolve()
                if not is_within(candidate, root.resolve()):
                    return None
                return candidate
        return None

    def mirrored_roots(self) -> Iterator[tuple[str, Path]]:
        """Yield (prefix, source root) pairs whose files must be copied.

        Roots inside the output tree are produced in place and skipped.
        """
        for prefix, root in self.prefixes.items():
            if is_within(root, self.output_dir):
                continue
            yield prefix, root

    def url_for(self, prefix: str, root: Path, source: Path) -> str:
        return f"{prefix}/{source.relative_to(root).as_posix()}"

    def _find(self, prefix: str, name: str, asset_type: str, extensions: tuple[str, ...]) -> str:
        root = self.prefixes.get(prefix)
        if root is None:
            raise AssetNotFoundError(name, asset_type, [])
        searched: list[Path] = []
        if any(name.endswith(f".{ext}") for ext in extensions):
            candidates = [name]
        else:
            candidates = [f"{name}.{ext}" for ext in extensions]
        for candidate in candidates:
            path = root / candidate
            searched.append(path)
            if path.exists():
                return f"{prefix}/{quote(candidate)}"
        raise AssetNotFoundError(name, asset_type, searched)

    def img_path(self, name: str) -> str:
        """Return the URL of an image, auto-detecting its extension.

        Raises:
            AssetNotFoundError: If no matching image exists.
        """
        return self._find("/assets/images", name, "image", self.IMAGE_EXTENSIONS)

    def font_path(self, name: str) -> str:
        """Return the URL of a font, auto-detecting its extension.

        Raises:
            AssetNotFoundError: If no matching font exists.
        """
        return self._find("/assets/fonts", name, "font", self.FONT_EXTENSIONS)

    def js_path(self, name: str) -> str:
        return self._find("/assets/js", name, "JavaScript", ("js",))

    def css_path(self, name: str) -> str:
        """Return the URL of a stylesheet.

        The stylesheet directory is usually produced by the CSS step, so the
        URL is returned even before the file exists.
        """
        if not name.endswith(".css"):
            name = f"{name}.css"
        return f"/assets/css/{quote(name)}"
