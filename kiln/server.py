"""Development server for Kiln.

Serves the output tree with live reload and sane defaults for local authoring:
- Injects a reload script into HTML responses.
- Rejects directory listings and missing paths with a 404 (serving 404.html when present).
- Watches the sources and triggers incremental rebuilds, then tells every
  connected browser what changed.

Everything except the HTTP server runs on one asyncio loop: the websocket
hub, the change coordinator and the build pipeline. The HTTP server is a
plain threaded static responder and the filesystem observer runs in its own
thread; its events are handed to the loop with ``call_soon_threadsafe``.

Key classes:
- DevServer: Wires the pipeline, watcher, HTTP server and live-reload hub together.
- LiveReloadHub: Tracks websocket clients and broadcasts reload messages.
- _ReloadHandler: HTTP request handler that injects the reload script and enforces 404s.
"""

from __future__ import annotations

import asyncio
import errno
import functools
import json
import logging
import threading
from collections.abc import Callable, Sequence
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, TypeVar

import websockets

from .build import BuildPipeline, BuildReport
from .config import CONFIG_FILENAME, SiteConfig
from .filestore import WatchEvent
from .html_utils import inject_reload_script
from .protocols import FileStore
from .watcher import ChangeCoordinator

logger = logging.getLogger(__name__)

PORT_ATTEMPTS = 5

RELOAD_SCRIPT_TEMPLATE = """
<script>
(() => {{
  const connect = () => {{
    const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
    ws.onmessage = (event) => {{
      const data = JSON.parse(event.data || '{{}}');
      if (data.type !== 'reload') return;
      if (data.css) {{
        document.querySelectorAll('link[rel="stylesheet"]').forEach((link) => {{
          const url = new URL(link.href);
          url.searchParams.set('v', Date.now());
          link.href = url.toString();
        }});
        return;
      }}
      location.reload();
    }};
    ws.onclose = () => setTimeout(connect, 1000);
  }};
  connect();
}})();
</script>
"""


def reload_message(changed_outputs: Sequence[str]) -> str:
    """Build the websocket payload for a finished rebuild.

    Args:
        changed_outputs: URL paths written during the cycle.

    Returns:
        JSON text ``{"type": "reload", "path": hint, "css": bool}``. ``css``
        is true when every changed output is a stylesheet, which lets the
        client swap stylesheets instead of reloading.
    """
    hint = changed_outputs[0] if len(changed_outputs) == 1 else "/"
    css_only = bool(changed_outputs) and all(url.endswith(".css") for url in changed_outputs)
    return json.dumps({"type": "reload", "path": hint, "css": css_only})


class _ReloadHandler(SimpleHTTPRequestHandler):
    """HTTP request handler that injects live reload script into HTML pages.

    Attributes:
        reload_script: Markup injected before ``</body>`` of every HTML page.
    """

    reload_script = RELOAD_SCRIPT_TEMPLATE.format(ws_port=3001)

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        # Never expose directory listings; treat as missing content.
        return self._serve_404()

    def _send_html(self, status: int, content: str) -> None:
        encoded = inject_reload_script(content, self.reload_script).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(encoded)

    def _serve_404(self):
        """Serve 404.html (when present) with a 404 status."""
        error_page = Path(self.directory) / "404.html"
        if error_page.is_file():
            self._send_html(404, error_page.read_text(encoding="utf-8"))
            return None
        self.send_error(404, "File not found")
        return None

    def send_head(self):
        path_obj = Path(self.translate_path(self.path))
        if path_obj.is_dir():
            index_path = path_obj / "index.html"
            if not index_path.is_file():
                return self._serve_404()
            path_obj = index_path
        elif not path_obj.is_file():
            return self._serve_404()

        if path_obj.suffix == ".html":
            self._send_html(200, path_obj.read_text(encoding="utf-8"))
            return None
        return super().send_head()


class LiveReloadHub:
    """Set of connected live-reload clients."""

    def __init__(self):
        self._clients: set = set()

    def __len__(self) -> int:
        return len(self._clients)

    async def handler(self, websocket) -> None:
        self._clients.add(websocket)
        logger.debug("Live-reload client connected (%d total)", len(self._clients))
        try:
            await websocket.wait_closed()
        finally:
            self._clients.discard(websocket)

    async def broadcast(self, message: str) -> int:
        """Send ``message`` to every client, dropping clients that fail.

        Returns:
            Number of clients that received the message.
        """
        stale = set()
        for ws in list(self._clients):
            try:
                await ws.send(message)
            except Exception as exc:
                logger.debug("Dropping live-reload client: %s", exc)
                stale.add(ws)
        self._clients -= stale
        return len(self._clients)


T = TypeVar("T")


def bind_with_fallback(bind: Callable[[int], T], port: int, attempts: int = PORT_ATTEMPTS) -> tuple[T, int]:
    """Call ``bind(port)``, moving to the next port while the address is in use.

    Args:
        bind: Creates a listening server on the given port.
        port: First port to try.
        attempts: Number of consecutive ports to try.

    Returns:
        Tuple of (bound server, port actually used).

    Raises:
        OSError: If every attempt failed, or on an error other than
            "address in use".
    """
    last_error: OSError | None = None
    for candidate in range(port, port + attempts):
        try:
            return bind(candidate), candidate
        except OSError as exc:
            if exc.errno != errno.EADDRINUSE:
                raise
            logger.warning("Port %d is in use, trying %d", candidate, candidate + 1)
            last_error = exc
    raise OSError(errno.EADDRINUSE, f"No free port in {port}-{port + attempts - 1}") from last_error


class DevServer:
    """Development server with live reload.

    Attributes:
        config: Resolved site configuration.
        store: FileStore shared with the pipeline.
        pipeline: Build pipeline driven by file changes.
        hub: Live-reload websocket clients.
        http_port: Port the HTTP server is bound to (after fallback).
        ws_port: Port the websocket server is bound to (after fallback).
    """

    def __init__(self, config: SiteConfig, store: FileStore, pipeline: BuildPipeline | None = None):
        self.config = config
        self.store = store
        self.pipeline = pipeline or BuildPipeline(config, store)
        self.hub = LiveReloadHub()
        self.http_port = config.port
        self.ws_port = config.ws_port
        self._stopped: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def _make_httpd(self, port: int) -> ThreadingHTTPServer:
        handler_cls = type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": RELOAD_SCRIPT_TEMPLATE.format(ws_port=self.ws_port)},
        )
        handler = functools.partial(handler_cls, directory=str(self.config.output_dir))
        return ThreadingHTTPServer(("", port), handler)

    async def _on_rebuilt(self, report: BuildReport) -> None:
        if not report.changed_outputs:
            logger.debug("Rebuild wrote nothing; not reloading")
            return
        delivered = await self.hub.broadcast(reload_message(report.changed_outputs))
        logger.info("Reloaded %d client(s)", delivered)

    def _on_event(self, coordinator: ChangeCoordinator, event: WatchEvent) -> None:
        if event.path.name == CONFIG_FILENAME and event.path.parent == self.config.project_root:
            logger.warning("%s changed; restart the server to apply it", CONFIG_FILENAME)
            return
        logger.debug("%s %s", event.kind, event.path)
        coordinator.notify_threadsafe(event.path)

    async def run(self) -> None:  # pragma: no cover - integration path
        """Build once, then serve and rebuild on change until stopped."""
        self._loop = asyncio.get_running_loop()
        self._stopped = asyncio.Event()

        report = await self.pipeline.build()
        if not report.success:
            logger.error("Initial build aborted; serving the previous output")

        ws_server, self.ws_port = await self._bind_ws()
        httpd, self.http_port = bind_with_fallback(self._make_httpd, self.config.port)
        threading.Thread(target=httpd.serve_forever, daemon=True).start()
        logger.info("Serving %s at http://localhost:%d", self.config.output_dir, self.http_port)

        coordinator = ChangeCoordinator(
            self.pipeline.rebuild, self._on_rebuilt, self.config.debounce, self._loop
        )
        roots = [*self.config.watch_roots(), self.config.project_root / CONFIG_FILENAME]
        handle = self.store.watch(
            roots,
            functools.partial(self._on_event, coordinator),
            ignore=[self.config.output_dir],
        )
        try:
            await self._stopped.wait()
        finally:
            logger.info("Shutting down")
            handle.stop()
            self.pipeline.shutdown()
            await coordinator.close()
            await self.pipeline.wait_idle()
            httpd.shutdown()
            ws_server.close()
            await ws_server.wait_closed()

    async def _bind_ws(self):  # pragma: no cover - integration path
        last_error: OSError | None = None
        for port in range(self.config.ws_port, self.config.ws_port + PORT_ATTEMPTS):
            try:
                server = await websockets.serve(self.hub.handler, "", port)
            except OSError as exc:
                if exc.errno != errno.EADDRINUSE:
                    raise
                logger.warning("WebSocket port %d is in use, trying %d", port, port + 1)
                last_error = exc
                continue
            return server, port
        raise OSError(errno.EADDRINUSE, "No free websocket port") from last_error

    def stop(self) -> None:
        """Stop a running server; safe to call from any thread."""
        if self._loop is not None and self._stopped is not None:
            self._loop.call_soon_threadsafe(self._stopped.set)
