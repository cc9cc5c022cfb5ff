from pathlib import Path

import pytest

from kiln.content import ContentItem, ContentKind, Corpus, FileContentSource
from kiln.errors import EnumerationError, ItemParseError
from kiln.extractors import FrontMatterError, field_extractor_for, split_front_matter
from kiln.filestore import LocalFileStore


def create_roots(tmp_path: Path) -> dict[str, Path]:
    articles = tmp_path / "articles"
    projects = tmp_path / "projects"
    (articles / "nested").mkdir(parents=True)
    (articles / ".drafts").mkdir()
    projects.mkdir()

    (articles / "hello.md").write_text(
        "---\ntitle: Hello\ndate: 2024-01-15\ntags: [python, web]\n---\n\n# Hello\n\nBody.\n",
        encoding="utf-8",
    )
    (articles / "nested" / "deep.md").write_text(
        "---\ntitle: Deep\nslug: deep-dive\nupdatedAt: 2024-03-01\n---\nDeep body\n",
        encoding="utf-8",
    )
    (articles / ".drafts" / "secret.md").write_text("---\ntitle: Secret\n---\n", encoding="utf-8")
    (articles / "notes.txt").write_text("ignored", encoding="utf-8")
    (projects / "tool.md").write_text("No front matter at all.\n", encoding="utf-8")
    return {"article": articles, "project": projects}


def test_list_items_reads_front_matter(tmp_path):
    roots = create_roots(tmp_path)
    items = FileContentSource(roots, LocalFileStore()).list_items()

    assert [item.key for item in items] == ["hello", "deep-dive", "tool"]
    hello = items[0]
    assert hello.kind == "article"
    assert hello.title == "Hello"
    assert hello.iso_date == "2024-01-15"
    assert hello.updated_at is None
    assert hello.tags == ("python", "web")
    assert hello.source_path == roots["article"] / "hello.md"

    deep = items[1]
    assert deep.iso_date == ""
    assert deep.updated_at == "2024-03-01"

    tool = items[2]
    assert tool.title == "Untitled Project"
    assert tool.kind == ContentKind.PROJECT.value


def test_read_body_strips_front_matter(tmp_path):
    roots = create_roots(tmp_path)
    source = FileContentSource(roots, LocalFileStore())
    hello = source.list_items()[0]

    assert source.read_body(hello).strip() == "# Hello\n\nBody."


def test_bad_file_is_skipped(tmp_path, caplog):
    roots = create_roots(tmp_path)
    (roots["article"] / "broken.md").write_text("---\ntitle: [unclosed\n---\n", encoding="utf-8")
    (roots["article"] / "binary.md").write_bytes(b"\xff\xfe\x00garbage")

    items = FileContentSource(roots, LocalFileStore()).list_items()

    assert "broken" not in [item.key for item in items]
    assert "binary" not in [item.key for item in items]
    assert "broken.md" in caplog.text
    assert "not valid UTF-8" in caplog.text


def test_missing_root_yields_nothing(tmp_path):
    source = FileContentSource({"article": tmp_path / "nope"}, LocalFileStore())
    assert source.list_items() == []


def test_unlistable_root_raises(tmp_path):
    root = tmp_path / "articles"
    root.write_text("a file", encoding="utf-8")
    with pytest.raises(EnumerationError):
        FileContentSource({"article": root}, LocalFileStore()).list_items()


def test_read_body_of_vanished_file(tmp_path):
    roots = create_roots(tmp_path)
    source = FileContentSource(roots, LocalFileStore())
    hello = source.list_items()[0]
    hello.source_path.unlink()

    with pytest.raises(ItemParseError):
        source.read_body(hello)


def test_corpus_resolves_duplicates_by_kind_priority(caplog):
    article = ContentItem("dup", ContentKind.ARTICLE, "A", "", None, Path("a/dup.md"))
    project = ContentItem("dup", ContentKind.PROJECT, "P", "", None, Path("p/dup.md"))
    other = ContentItem("other", ContentKind.PROJECT, "O", "", None, Path("p/other.md"))

    corpus = Corpus([article, project, other])

    assert corpus.resolve("dup") is article
    assert corpus.keys() == ["dup", "other"]
    assert len(corpus) == 2
    assert len(corpus.items) == 3
    assert "dup" in corpus
    assert "missing" not in corpus
    assert corpus.of_kind("project") == [other]
    assert "Duplicate key 'dup'" in caplog.text


def test_content_item_normalizes_kind():
    item = ContentItem("k", ContentKind.ARTICLE, "T", "", None, Path("k.md"))
    assert item.kind == "article"
    assert type(item.kind) is str


def test_split_front_matter_variants():
    assert split_front_matter("no block") == ({}, "no block")
    assert split_front_matter("\ufeff---\ntitle: X\n---\nbody") == ({"title": "X"}, "body")
    assert split_front_matter("---\r\ntitle: X\r\n---\r\nbody") == ({"title": "X"}, "body")
    assert split_front_matter("---\n\n---\nbody") == ({}, "body")
    with pytest.raises(FrontMatterError):
        split_front_matter("---\n- a\n- b\n---\n")


def test_extractor_defaults_and_tags():
    extractor = field_extractor_for("Article")
    fields = extractor.extract({"title": "  ", "tags": "solo"}, Path("x/my-post.md"))
    assert fields["title"] == "Untitled Article"
    assert fields["key"] == "my-post"
    assert fields["tags"] == ("solo",)

    with pytest.raises(FrontMatterError):
        extractor.extract({"tags": 5}, Path("x.md"))


@pytest.mark.parametrize("slug", ["../../src", "a/b", "..", "a\\b", "."])
def test_slug_must_be_one_path_segment(slug):
    with pytest.raises(FrontMatterError, match="single path segment"):
        field_extractor_for("Article").extract({"slug": slug}, Path("x/post.md"))


def test_traversal_slug_skips_the_file(tmp_path, caplog):
    roots = create_roots(tmp_path)
    (roots["article"] / "sneaky.md").write_text(
        "---\ntitle: Sneaky\nslug: ../../etc\n---\nbody\n", encoding="utf-8"
    )

    items = FileContentSource(roots, LocalFileStore()).list_items()

    assert "../../etc" not in [item.key for item in items]
    assert "sneaky.md" in caplog.text
