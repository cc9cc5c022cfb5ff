import os

import pytest

from kiln.filestore import LocalFileStore, WatchEvent, _ChangeHandler


class DummyEvent:
    def __init__(self, path, event_type="modified", is_directory=False, dest_path=None):
        self.src_path = path
        self.event_type = event_type
        self.is_directory = is_directory
        self.dest_path = dest_path


def test_write_is_atomic_and_creates_parents(tmp_path):
    store = LocalFileStore()
    target = tmp_path / "a" / "b" / "index.html"

    store.write(target, "one")
    store.write(target, "two")

    assert store.read(target) == "two"
    assert store.exists(target)
    assert [p.name for p in target.parent.iterdir()] == ["index.html"]


def test_list_and_remove(tmp_path):
    store = LocalFileStore()
    (tmp_path / "x" / "y").mkdir(parents=True)
    (tmp_path / "x" / "a.md").write_text("a")
    (tmp_path / "x" / "y" / "b.md").write_text("b")
    (tmp_path / "x" / "c.txt").write_text("c")

    assert store.list(tmp_path / "x", "*.md") == [tmp_path / "x" / "a.md", tmp_path / "x" / "y" / "b.md"]
    with pytest.raises(NotADirectoryError):
        store.list(tmp_path / "x" / "a.md")

    store.remove(tmp_path / "x" / "y")
    store.remove(tmp_path / "x" / "a.md")
    store.remove(tmp_path / "x" / "never-there")
    assert store.list(tmp_path / "x") == [tmp_path / "x" / "c.txt"]


def test_is_current(tmp_path):
    store = LocalFileStore()
    source = tmp_path / "src.png"
    dest = tmp_path / "out" / "src.png"
    source.write_bytes(b"abc")
    assert not store.is_current(source, dest)

    store.copy(source, dest)
    assert store.is_current(source, dest)

    dest.write_bytes(b"ab")
    mtime = source.stat().st_mtime
    os.utime(dest, (mtime + 5, mtime + 5))
    assert not store.is_current(source, dest)
    assert store.is_current(source, dest, exact=False)

    os.utime(source, (mtime + 10, mtime + 10))
    assert not store.is_current(source, dest, exact=False)


def test_change_handler_filters_events(tmp_path):
    seen: list[WatchEvent] = []
    output = tmp_path / "dist"
    handler = _ChangeHandler(seen.append, [output])

    handler.on_any_event(DummyEvent(str(output / "index.html")))
    handler.on_any_event(DummyEvent(str(tmp_path / ".hidden.swp")))
    handler.on_any_event(DummyEvent(str(tmp_path / "node_modules" / "x.js")))
    handler.on_any_event(DummyEvent(str(tmp_path / "posts"), is_directory=True))
    handler.on_any_event(DummyEvent(str(tmp_path / "posts" / "a.md"), "opened"))
    handler.on_any_event(DummyEvent(str(tmp_path / "posts" / "a.md")))
    handler.on_any_event(
        DummyEvent(str(tmp_path / "posts" / "b.md"), "moved", dest_path=str(tmp_path / "posts" / "c.md"))
    )

    assert seen == [
        WatchEvent(tmp_path / "posts" / "a.md", "modified"),
        WatchEvent(tmp_path / "posts" / "c.md", "moved"),
    ]


def test_change_handler_for_single_files(tmp_path):
    seen = []
    config_file = tmp_path / "kiln.yaml"
    handler = _ChangeHandler(seen.append, [], only={config_file})

    handler.on_any_event(DummyEvent(str(tmp_path / "other.yaml")))
    handler.on_any_event(DummyEvent(str(config_file)))

    assert [event.path for event in seen] == [config_file]


def test_watch_skips_missing_roots(tmp_path):
    store = LocalFileStore()
    (tmp_path / "posts").mkdir()
    (tmp_path / "kiln.yaml").write_text("")
    observer = store.watch(
        [tmp_path / "posts", tmp_path / "missing", tmp_path / "kiln.yaml"], lambda event: None
    )
    try:
        assert observer.is_alive()
    finally:
        observer.stop()
        observer.join()
