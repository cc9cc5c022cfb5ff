"""Markdown rendering for Kiln.

MarkdownRenderer is the default ContentRenderer. It is a pure function of
its input: the same markdown always produces the same HTML.

Key classes:
- MarkdownRenderer: Renders Markdown to HTML with syntax highlighting.
- Heading: A heading collected while rendering, for tables of contents.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import mistune
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from .html_utils import escape_html

IMAGES_PREFIX = "/assets/images"


@dataclass(frozen=True)
class Heading:
    """A heading extracted from markdown content.

    Attributes:
        id: Anchor ID for the heading.
        text: The heading's inner HTML.
        level: Heading level (1-6).
    """

    id: str
    text: str
    level: int


def _generate_heading_id(text: str) -> str:
    """Generate a URL-friendly ID from heading text.

    Args:
        text: The heading text.

    Returns:
        Slug suitable for anchor links.
    """
    slug = re.sub(r"<[^>]+>", "", text).lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-")


def _rewrite_image_path(src: str) -> str:
    """Point bare image file names at the images asset directory.

    Absolute URLs, root-relative paths and data URIs are left alone.

    Args:
        src: Original image source.

    Returns:
        Rewritten image source path.
    """
    if not src or src.startswith(("http://", "https://", "//", "/", "data:")):
        return src
    return f"{IMAGES_PREFIX}/{src.removeprefix('./')}"


class _HighlightRenderer(mistune.HTMLRenderer):
    """Mistune renderer with heading anchors, image rewriting and highlighting.

    Attributes:
        headings: Headings seen during rendering, in document order.
    """

    def __init__(self):
        super().__init__(escape=False)
        self.headings: list[Heading] = []
        self._heading_id_counts: dict[str, int] = {}

    def heading(self, text: str, level: int, **attrs) -> str:
        base_id = _generate_heading_id(text) or "section"
        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id
        self.headings.append(Heading(id=heading_id, text=text, level=level))
        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'

    def image(self, text: str, url: str | None = None, title: str | None = None):
        return super().image(text, _rewrite_image_path(url or ""), title)

    def block_code(self, code: str, info: str | None = None) -> str:
        """Render a code block, highlighted with Pygments when the language is known.

        Args:
            code: The code content.
            info: Language identifier (e.g. 'python', 'haskell').

        Returns:
            HTML string with highlighted code.
        """
        lang = info.split()[0] if info else ""
        if lang:
            try:
                lexer = get_lexer_by_name(lang, stripall=True)
            except ClassNotFound:
                lexer = None
            if lexer is not None:
                formatter = HtmlFormatter(nowrap=False, cssclass="highlight")
                return highlight(code, lexer, formatter)
        lang_class = f' class="language-{escape_html(lang)}"' if lang else ""
        return f"<pre><code{lang_class}>{escape_html(code)}</code></pre>\n"


class MarkdownRenderer:
    """Renders Markdown content to HTML.

    Uses mistune with the strikethrough, footnotes, table and url plugins.
    """

    PLUGINS = ["strikethrough", "footnotes", "table", "url"]

    def render(self, content: str) -> str:
        """Render markdown source to an HTML fragment."""
        html, _ = self.render_with_headings(content)
        return html

    def render_with_headings(self, content: str) -> tuple[str, list[Heading]]:
        """Render markdown and collect its headings.

        Args:
            content: Markdown source.

        Returns:
            Tuple of (rendered HTML, list of Heading objects).
        """
        renderer = _HighlightRenderer()
        markdown = mistune.create_markdown(renderer=renderer, plugins=self.PLUGINS)
        html = markdown(content)
        return html, renderer.headings


def pygments_css() -> str:
    """Return the Pygments stylesheet for the ``.highlight`` class."""
    return HtmlFormatter().get_style_defs(".highlight")
