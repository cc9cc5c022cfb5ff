"""HTML string helpers for Kiln.

Functions:
    escape_html: Escape special HTML characters in a string.
    find_asset_references: List the ``/assets/`` URLs an HTML document uses.
    inject_reload_script: Insert the live-reload snippet before ``</body>``.
"""

from __future__ import annotations

import re
from urllib.parse import unquote, urlsplit

_ASSET_REF_RE = re.compile(r"""(?:src|href)=["']([^"']*/assets/[^"']*)["']""", re.IGNORECASE)

_BODY_CLOSE_RE = re.compile(r"</body\s*>", re.IGNORECASE)


def escape_html(text: str) -> str:
    """Escape special HTML characters in a string.

    Examples:
        >>> escape_html('<a href="x">Tom & Jerry</a>')
        '&lt;a href=&quot;x&quot;&gt;Tom &amp; Jerry&lt;/a&gt;'
    """
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def find_asset_references(html: str) -> list[str]:
    """Return the distinct local asset URL paths referenced by ``html``.

    Only ``src`` and ``href`` attributes whose value contains ``/assets/`` are
    considered. Query strings and fragments are dropped, external URLs are
    ignored, and relative references are anchored at the ``/assets/`` segment.

    Examples:
        >>> find_asset_references('<img src="/assets/images/a.png?v=2">')
        ['/assets/images/a.png']
    """
    found: list[str] = []
    for raw in _ASSET_REF_RE.findall(html):
        parts = urlsplit(raw)
        if parts.scheme or parts.netloc:
            continue
        path = unquote(parts.path)
        path = path[path.index("/assets/") :]
        if path not in found:
            found.append(path)
    return found


def inject_reload_script(html: str, script: str) -> str:
    """Insert ``script`` before the last ``</body>``, or append it.

    Args:
        html: Full HTML document.
        script: Markup to inject.

    Returns:
        The document with the snippet added.
    """
    matches = list(_BODY_CLOSE_RE.finditer(html))
    if not matches:
        return html + script
    position = matches[-1].start()
    return html[:position] + script + html[position:]
