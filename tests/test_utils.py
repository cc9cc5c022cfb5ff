from datetime import date, datetime
from pathlib import Path

from kiln import utils
from kiln.errors import RenderError, format_error_message
from kiln.html_utils import escape_html, inject_reload_script


def test_slugify():
    assert utils.slugify("Hello, World!") == "hello-world"
    assert utils.slugify("  Many   spaces  ") == "many-spaces"
    assert utils.slugify("!!!") == ""


def test_normalize_and_display_dates():
    assert utils.normalize_date(date(2024, 1, 5)) == "2024-01-05"
    assert utils.normalize_date(datetime(2024, 1, 5, 10, 30)) == "2024-01-05T10:30:00"
    assert utils.normalize_date(" 2024-01-05 ") == "2024-01-05"
    assert utils.normalize_date(None) == ""

    assert utils.format_display_date("2024-01-01") == "Mon, Jan 1, 2024"
    assert utils.format_display_date("2024-02-29T12:00:00Z") == "Thu, Feb 29, 2024"
    assert utils.format_display_date("someday") == "someday"
    assert utils.format_display_date("") == ""
    assert utils.parse_iso_date("nope") is None


def test_empty_dir_keeps_directory(tmp_path):
    target = tmp_path / "dist"
    (target / "nested").mkdir(parents=True)
    (target / "nested" / "a.html").write_text("a")
    (target / "b.html").write_text("b")

    utils.empty_dir(target)
    assert target.is_dir()
    assert list(target.iterdir()) == []

    fresh = tmp_path / "fresh"
    utils.empty_dir(fresh)
    assert fresh.is_dir()


def test_is_within():
    root = Path("/site/dist")
    assert utils.is_within(root, root)
    assert utils.is_within(root / "a" / "b", root)
    assert not utils.is_within(Path("/site/distant"), root)


def test_is_safe_segment():
    assert utils.is_safe_segment("hello-world")
    assert utils.is_safe_segment("v1.2")
    for name in ("", ".", "..", "../x", "a/b", "a\\b", "nul\x00"):
        assert not utils.is_safe_segment(name)


def test_epoch_millis_is_milliseconds():
    assert utils.epoch_millis() > 1_600_000_000_000


def test_inject_reload_script():
    script = "<script>x</script>"
    assert inject_reload_script("<body>a</BODY>", script) == "<body>a<script>x</script></BODY>"
    assert inject_reload_script("<p>fragment</p>", script) == "<p>fragment</p><script>x</script>"
    doubled = inject_reload_script("<body></body><body></body>", script)
    assert doubled == "<body></body><body><script>x</script></body>"


def test_escape_html_and_error_messages():
    assert escape_html('<a href="x">&</a>') == "&lt;a href=&quot;x&quot;&gt;&amp;&lt;/a&gt;"
    assert format_error_message(RenderError("k", "bad page")) == "bad page"
    assert format_error_message(KeyError("x")) == "KeyError: 'x'"
    assert format_error_message(TypeError("nope")) == "Type error: nope"
