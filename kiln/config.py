"""Site configuration for Kiln.

Configuration lives in ``kiln.yaml`` at the project root and is merged over
:data:`DEFAULT_CONFIG`. Nested sections (``content``, ``assets``, ``compile``,
``css``, ``site``) merge one level deep, so a project only spells out what it
changes.

Key functions:
- load_config: Read kiln.yaml into a raw dictionary with defaults applied.
- load_site_config: Resolve the raw dictionary into a SiteConfig.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .utils import is_within

CONFIG_FILENAME = "kiln.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "output_dir": "dist",
    "cache_file": ".cache/site-cache.json",
    "content": {
        "article": "src/posts/articles",
        "project": "src/posts/projects",
    },
    "templates_dir": "templates",
    "assets": {
        "/assets/images": "src/public/assets/images",
        "/assets/fonts": "src/public/assets/fonts",
        "/assets/js": "src/public/assets/js",
        "/assets/css": "dist/assets/css",
    },
    "concurrency": 5,
    "asset_concurrency": 20,
    "debounce_ms": 300,
    "compile": {
        "command": [],
        "sources": ["src"],
        "output": "output",
        "timeout": 120,
    },
    "css": {
        "command": [],
        "sources": ["tailwind", "tailwind.config.js"],
        "output": "dist/assets/css/styles.css",
        "timeout": 60,
    },
    "port": 3000,
    "ws_port": None,
    "site": {"title": "Kiln"},
}

_NESTED_KEYS = ("content", "assets", "compile", "css", "site")


@dataclass(frozen=True)
class StepConfig:
    """Configuration of one external build step.

    Attributes:
        command: argv to run; empty disables the step.
        sources: Paths whose change requires re-running the step.
        output: Main artefact produced by the step.
        timeout: Seconds before the process is killed.
    """

    command: tuple[str, ...]
    sources: tuple[Path, ...]
    output: Path
    timeout: float

    @property
    def enabled(self) -> bool:
        return bool(self.command)

    def covers(self, path: Path) -> bool:
        """Return True if ``path`` lies under one of the step's sources."""
        return any(is_within(path, source) for source in self.sources)


@dataclass(frozen=True)
class SiteConfig:
    """Resolved, absolute-path configuration for one project.

    Attributes:
        project_root: Root directory of the project.
        output_dir: Output tree root.
        cache_path: Location of the persisted cache document.
        content_roots: Mapping of kind name to content root, in priority order.
        templates_dir: Directory of project layout templates.
        asset_paths: Mapping of URL prefix to asset source root.
        concurrency: Page-generation batch size.
        asset_concurrency: Asset-copy batch size.
        debounce: Watch debounce window in seconds.
        compile: Upstream compiler step.
        css: Stylesheet build step.
        port: Dev HTTP port.
        ws_port: Live-reload websocket port.
        site: Free-form data exposed to layouts.
    """

    project_root: Path
    output_dir: Path
    cache_path: Path
    content_roots: dict[str, Path]
    templates_dir: Path
    asset_paths: dict[str, Path]
    concurrency: int
    asset_concurrency: int
    debounce: float
    compile: StepConfig
    css: StepConfig
    port: int
    ws_port: int
    site: dict[str, Any] = field(default_factory=dict)

    def watch_roots(self) -> list[Path]:
        """Return the directories the dev server should observe."""
        roots: list[Path] = [*self.content_roots.values(), self.templates_dir]
        for source in self.asset_paths.values():
            if not is_within(source, self.output_dir):
                roots.append(source)
        roots.extend(self.compile.sources)
        roots.extend(self.css.sources)
        seen: list[Path] = []
        for root in roots:
            if root not in seen:
                seen.append(root)
        return seen


def load_config(project_root: Path) -> dict[str, Any]:
    """Load site configuration from kiln.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    config_path = project_root / CONFIG_FILENAME
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if isinstance(loaded, dict):
            for key, value in loaded.items():
                if key in _NESTED_KEYS and isinstance(value, dict):
                    merged = dict(config.get(key) or {})
                    merged.update(value)
                    config[key] = merged
                else:
                    config[key] = value
    return config


def load_site_config(
    project_root: Path,
    port: int | None = None,
    ws_port: int | None = None,
) -> SiteConfig:
    """Resolve kiln.yaml into a SiteConfig.

    Args:
        project_root: Root directory of the project.
        port: Optional override for the HTTP port.
        ws_port: Optional override for the websocket port.

    Returns:
        SiteConfig with absolute paths.
    """
    root = project_root.resolve()
    raw = load_config(root)
    output_dir = root / str(raw.get("output_dir") or "dist")
    http_port = int(port or raw.get("port") or 3000)
    if ws_port is not None:
        resolved_ws = ws_port
    elif port is not None or not raw.get("ws_port"):
        resolved_ws = http_port + 1
    else:
        resolved_ws = int(raw["ws_port"])
    return SiteConfig(
        project_root=root,
        output_dir=output_dir,
        cache_path=output_dir / str(raw.get("cache_file") or ".cache/site-cache.json"),
        content_roots={
            str(kind): root / str(path)
            for kind, path in (raw.get("content") or {}).items()
            if path
        },
        templates_dir=root / str(raw.get("templates_dir") or "templates"),
        asset_paths={
            "/" + str(prefix).strip("/"): root / str(path)
            for prefix, path in (raw.get("assets") or {}).items()
            if path
        },
        concurrency=max(1, int(raw.get("concurrency") or 5)),
        asset_concurrency=max(1, int(raw.get("asset_concurrency") or 20)),
        debounce=max(0.0, float(raw.get("debounce_ms", 300)) / 1000.0),
        compile=_step_config(root, raw.get("compile") or {}),
        css=_step_config(root, raw.get("css") or {}),
        port=http_port,
        ws_port=resolved_ws,
        site=dict(raw.get("site") or {}),
    )


def _step_config(root: Path, raw: dict[str, Any]) -> StepConfig:
    command = raw.get("command") or []
    if isinstance(command, str):
        command = command.split()
    sources = raw.get("sources") or []
    if isinstance(sources, str):
        sources = [sources]
    return StepConfig(
        command=tuple(str(part) for part in command),
        sources=tuple(root / str(source) for source in sources),
        output=root / str(raw.get("output") or ""),
        timeout=float(raw.get("timeout") or 60),
    )
