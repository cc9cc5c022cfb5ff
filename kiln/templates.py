"""Layout rendering for Kiln.

LayoutEngine is the default LayoutRenderer. It wraps rendered markdown in a
full HTML document with Jinja2. Templates are looked up in the project's
templates directory first, then in the compiled-output directory, then in the
built-in defaults below, so a project only overrides what it needs.

LayoutLoader owns the engine's lifecycle. Every cycle it computes a signature
over the template and compiled-output files; when that changes it builds a
fresh engine (and a fresh Jinja2 environment, so no stale template cache
survives) and the orchestrator re-renders every page.

Key classes:
- LayoutEngine: Renders pages and the aggregate index.
- LayoutLoader: Recreates the engine when its inputs change.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from jinja2 import ChoiceLoader, DictLoader, Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup

from .asset_resolver import AssetMap
from .hasher import rolling_hash
from .html_utils import escape_html
from .renderers import Heading, pygments_css

logger = logging.getLogger(__name__)

__all__ = ["DEFAULT_TEMPLATES", "LayoutEngine", "LayoutLoader", "render_toc"]

PAGE_TEMPLATE = "post.html"
INDEX_TEMPLATE = "index.html"

DEFAULT_TEMPLATES = {
    "base.html": """<!DOCTYPE html>
<html lang="{{ site.lang | default('en') }}">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{% block title %}{{ site.title }}{% endblock %}</title>
  {% if site.description %}<meta name="description" content="{{ site.description }}">{% endif %}
  <link rel="stylesheet" href="{{ css_path('styles') }}">
  <style>{{ pygments_css() }}</style>
</head>
<body>
  <header><a href="/">{{ site.title }}</a></header>
  <main>{% block content %}{% endblock %}</main>
  <footer>&copy; {{ site.author | default(site.title) }}</footer>
</body>
</html>
""",
    PAGE_TEMPLATE: """{% extends "base.html" %}
{% block title %}{{ page.title }} | {{ site.title }}{% endblock %}
{% block content %}
<article class="post post-{{ page.kind }}">
  <h1>{{ page.title }}</h1>
  {% if page.date %}<time datetime="{{ page.date }}">{{ page.display_date }}</time>{% endif %}
  {% if page.updated_at %}<p class="updated">Updated {{ page.updated_display_date }}</p>{% endif %}
  {% if page.tags %}<ul class="tags">{% for tag in page.tags %}<li>{{ tag }}</li>{% endfor %}</ul>{% endif %}
  {% if page.headings %}<nav class="toc">{{ render_toc(page.headings) }}</nav>{% endif %}
  <div class="content">{{ page.content | safe }}</div>
</article>
{% endblock %}
""",
    INDEX_TEMPLATE: """{% extends "base.html" %}
{% block content %}
{% for heading, entries in [("Articles", posts), ("Projects", projects)] %}
{% if entries %}
<section>
  <h2>{{ heading }}</h2>
  <ul>
  {% for entry in entries %}
    <li><a href="{{ entry.url }}">{{ entry.title }}</a>{% if entry.date %} <time datetime="{{ entry.date }}">{{ entry.display_date }}</time>{% endif %}</li>
  {% endfor %}
  </ul>
</section>
{% endif %}
{% endfor %}
{% endblock %}
""",
}

# Bump when DEFAULT_TEMPLATES change so cached pages are re-rendered.
_DEFAULTS_VERSION = "1"


def render_toc(headings: list[Heading]) -> Markup:
    """Render headings as a nested ``<ul>`` table of contents.

    Args:
        headings: Headings in document order.

    Returns:
        Markup-safe HTML, or empty Markup if there are no headings.
    """
    if not headings:
        return Markup("")

    html_parts: list[str] = []
    level_stack: list[int] = []

    for heading in headings:
        level = heading.level

        while level_stack and level_stack[-1] > level:
            level_stack.pop()
            html_parts.append("</li></ul>")

        if level_stack and level_stack[-1] == level:
            html_parts.append("</li>")
        else:
            html_parts.append("<ul>")
            level_stack.append(level)

        # Heading text is already rendered inline HTML.
        html_parts.append(f'<li><a href="#{escape_html(heading.id)}">{heading.text}</a>')

    while level_stack:
        level_stack.pop()
        html_parts.append("</li></ul>")

    return Markup("".join(html_parts))


class LayoutEngine:
    """Jinja2-backed page and index layouts.

    Attributes:
        site: Free-form site data exposed as ``site`` in every template.
        env: The Jinja2 environment.
    """

    def __init__(
        self,
        search_path: list[Path],
        site: Mapping[str, Any] | None = None,
        asset_map: AssetMap | None = None,
    ):
        """Initialize the engine.

        Args:
            search_path: Directories searched for templates, in order.
            site: Site data for templates.
            asset_map: Resolves asset helper calls in templates.
        """
        self.site = dict(site or {})
        self.asset_map = asset_map
        loaders = [FileSystemLoader([str(p) for p in search_path if p.is_dir()])]
        loaders.append(DictLoader(DEFAULT_TEMPLATES))
        self.env = Environment(
            loader=ChoiceLoader(loaders),
            autoescape=select_autoescape(["html", "xml"]),
        )
        self._install_globals()

    def _install_globals(self) -> None:
        self.env.globals["site"] = self.site
        self.env.globals["render_toc"] = render_toc
        self.env.globals["pygments_css"] = lambda: Markup(pygments_css())
        self.env.globals["css_path"] = self._css_path
        if self.asset_map is not None:
            self.env.globals["img_path"] = self.asset_map.img_path
            self.env.globals["font_path"] = self.asset_map.font_path
            self.env.globals["js_path"] = self.asset_map.js_path

    def _css_path(self, name: str) -> str:
        if self.asset_map is not None:
            return self.asset_map.css_path(name)
        return f"/assets/css/{name if name.endswith('.css') else name + '.css'}"

    def render_page(self, page_data: Mapping[str, Any]) -> str:
        """Render one content page with the ``post.html`` layout.

        Args:
            page_data: Validated page fields; ``content`` holds the body HTML.

        Returns:
            The full HTML document.
        """
        template = self.env.get_template(PAGE_TEMPLATE)
        return template.render(page=page_data)

    def render_index(self, collections: Mapping[str, Any]) -> str:
        """Render the aggregate index page.

        Args:
            collections: Output of :func:`kiln.collections.build_collections`.

        Returns:
            The full HTML document.
        """
        template = self.env.get_template(INDEX_TEMPLATE)
        return template.render(**collections)


class LayoutLoader:
    """Creates LayoutEngine instances and recreates them when inputs change.

    Attributes:
        templates_dir: Project template directory.
        compiled_dir: Output directory of the upstream compiler.
        site: Site data handed to each engine.
    """

    def __init__(
        self,
        templates_dir: Path,
        compiled_dir: Path | None = None,
        site: Mapping[str, Any] | None = None,
        asset_map: AssetMap | None = None,
    ):
        self.templates_dir = templates_dir
        self.compiled_dir = compiled_dir
        self.site = dict(site or {})
        self.asset_map = asset_map
        self._engine: LayoutEngine | None = None
        self._signature: str | None = None

    def _roots(self) -> list[Path]:
        roots = [self.templates_dir]
        if self.compiled_dir is not None and self.compiled_dir != self.templates_dir:
            roots.append(self.compiled_dir)
        return roots

    def signature(self) -> str:
        """Return a fingerprint of every file the layouts depend on.

        Covers relative path, size and modification time of each file under
        the templates and compiled-output directories, the site data and the
        built-in template version.
        """
        parts = [f"defaults:{_DEFAULTS_VERSION}", f"site:{sorted(self.site.items())!r}"]
        for index, root in enumerate(self._roots()):
            if not root.is_dir():
                parts.append(f"{index}:absent")
                continue
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
                for filename in sorted(filenames):
                    path = Path(dirpath) / filename
                    try:
                        stat = path.stat()
                    except OSError:
                        continue
                    rel = path.relative_to(root).as_posix()
                    parts.append(f"{index}:{rel}:{stat.st_size}:{stat.st_mtime_ns}")
        return rolling_hash("\n".join(parts))

    def resolve(self) -> tuple[LayoutEngine, str]:
        """Return the current engine and its signature.

        A new engine is built on first use and whenever the signature
        changes.
        """
        signature = self.signature()
        if self._engine is None or signature != self._signature:
            if self._engine is not None:
                logger.info("Layouts changed; reloading templates")
            self._engine = LayoutEngine(self._roots(), self.site, self.asset_map)
            self._signature = signature
        return self._engine, signature
