import asyncio
import errno
import json
import threading
import urllib.error
import urllib.request
from pathlib import Path

import pytest

from kiln.build import BuildReport, BuildState, BuildStats
from kiln.config import load_site_config
from kiln.filestore import LocalFileStore, WatchEvent
from kiln.server import DevServer, LiveReloadHub, bind_with_fallback, reload_message


def make_server(tmp_path: Path) -> DevServer:
    config = load_site_config(tmp_path, port=5055)
    return DevServer(config, LocalFileStore())


def test_reload_message():
    assert json.loads(reload_message(["/articles/hello/"])) == {
        "type": "reload",
        "path": "/articles/hello/",
        "css": False,
    }
    assert json.loads(reload_message(["/a/", "/b/"]))["path"] == "/"
    assert json.loads(reload_message(["/assets/css/styles.css"]))["css"] is True
    assert json.loads(reload_message(["/assets/css/styles.css", "/a/"]))["css"] is False


def test_broadcast_drops_stale_clients():
    hub = LiveReloadHub()

    class GoodWS:
        def __init__(self):
            self.messages = []

        async def send(self, msg):
            self.messages.append(msg)

    class BadWS:
        async def send(self, msg):
            raise ConnectionError("gone")

    good = GoodWS()
    bad = BadWS()
    hub._clients = {good, bad}

    delivered = asyncio.run(hub.broadcast("hello"))

    assert delivered == 1
    assert good.messages == ["hello"]
    assert len(hub) == 1


def test_bind_with_fallback_moves_to_next_port():
    tried = []

    def bind(port):
        tried.append(port)
        if port < 4002:
            raise OSError(errno.EADDRINUSE, "in use")
        return f"server@{port}"

    assert bind_with_fallback(bind, 4000) == ("server@4002", 4002)
    assert tried == [4000, 4001, 4002]


def test_bind_with_fallback_gives_up():
    def bind(port):
        raise OSError(errno.EADDRINUSE, "in use")

    with pytest.raises(OSError):
        bind_with_fallback(bind, 4000, attempts=2)


def test_bind_with_fallback_reraises_other_errors():
    calls = []

    def bind(port):
        calls.append(port)
        raise OSError(errno.EACCES, "denied")

    with pytest.raises(OSError) as info:
        bind_with_fallback(bind, 80)
    assert info.value.errno == errno.EACCES
    assert calls == [80]


def test_ws_port_follows_http_port(tmp_path):
    server = make_server(tmp_path)
    assert server.http_port == 5055
    assert server.ws_port == 5056

    explicit = DevServer(load_site_config(tmp_path, port=5055, ws_port=6000), LocalFileStore())
    assert explicit.ws_port == 6000


@pytest.fixture
def http_site(tmp_path):
    server = make_server(tmp_path)
    out = server.config.output_dir
    (out / "articles" / "hello").mkdir(parents=True)
    (out / "articles" / "hello" / "index.html").write_text(
        "<html><body><h1>Hello</h1></body></html>", encoding="utf-8"
    )
    (out / "empty").mkdir()
    (out / "style.css").write_text("body{}", encoding="utf-8")
    httpd = server._make_httpd(0)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield server, f"http://127.0.0.1:{httpd.server_address[1]}"
    httpd.shutdown()
    httpd.server_close()


def fetch(url):
    try:
        with urllib.request.urlopen(url, timeout=5) as response:
            return response.status, response.headers, response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        return exc.code, exc.headers, exc.read().decode("utf-8")


def test_html_gets_reload_script(http_site):
    server, base = http_site
    status, headers, body = fetch(base + "/articles/hello/")
    assert status == 200
    assert "no-cache" in headers["Cache-Control"]
    assert f":{server.ws_port}" in body
    assert body.index("new WebSocket") < body.index("</body>")


def test_static_files_are_served_untouched(http_site):
    _, base = http_site
    status, _, body = fetch(base + "/style.css")
    assert status == 200
    assert body == "body{}"


def test_missing_paths_and_bare_directories_are_404(http_site):
    server, base = http_site
    assert fetch(base + "/nope/")[0] == 404
    assert fetch(base + "/empty/")[0] == 404

    (server.config.output_dir / "404.html").write_text(
        "<html><body>Lost</body></html>", encoding="utf-8"
    )
    status, _, body = fetch(base + "/still-nope")
    assert status == 404
    assert "Lost" in body
    assert "WebSocket" in body


def test_on_rebuilt_broadcasts_only_when_something_changed(tmp_path):
    server = make_server(tmp_path)
    sent = []

    async def fake_broadcast(message):
        sent.append(json.loads(message))
        return 1

    server.hub.broadcast = fake_broadcast
    asyncio.run(server._on_rebuilt(BuildReport(BuildState.DONE, BuildStats())))
    assert sent == []

    report = BuildReport(BuildState.DONE, BuildStats(), changed_outputs=["/articles/hello/"])
    asyncio.run(server._on_rebuilt(report))
    assert sent == [{"type": "reload", "path": "/articles/hello/", "css": False}]


def test_config_change_is_not_forwarded(tmp_path, caplog):
    server = make_server(tmp_path)

    class Recorder:
        def __init__(self):
            self.paths = []

        def notify_threadsafe(self, path):
            self.paths.append(path)

    recorder = Recorder()
    root = server.config.project_root
    server._on_event(recorder, WatchEvent(root / "kiln.yaml", "modified"))
    server._on_event(recorder, WatchEvent(root / "src" / "posts" / "a.md", "modified"))

    assert recorder.paths == [root / "src" / "posts" / "a.md"]
    assert "restart the server" in caplog.text


def test_stop_before_run_is_harmless(tmp_path):
    server = make_server(tmp_path)
    server.stop()
    assert server._loop is None
