import os
from pathlib import Path

from kiln.content import ContentItem, Corpus
from kiln.collections import build_collections
from kiln.renderers import Heading, MarkdownRenderer, _rewrite_image_path, pygments_css
from kiln.templates import LayoutEngine, LayoutLoader, render_toc


def page(**overrides):
    data = {
        "key": "hello",
        "kind": "article",
        "title": "Hello <World>",
        "date": "2024-01-01",
        "display_date": "Mon, Jan 1, 2024",
        "updated_at": None,
        "updated_display_date": "",
        "tags": ["python"],
        "url": "/articles/hello/",
        "content": "<p>Body</p>",
        "headings": [],
        "front_matter": {},
    }
    data.update(overrides)
    return data


def test_markdown_headings_get_unique_ids():
    html, headings = MarkdownRenderer().render_with_headings(
        "# Intro\n\n## Setup\n\n## Setup\n\ntext"
    )
    assert '<h1 id="intro">Intro</h1>' in html
    assert '<h2 id="setup">Setup</h2>' in html
    assert '<h2 id="setup-1">Setup</h2>' in html
    assert [h.id for h in headings] == ["intro", "setup", "setup-1"]


def test_markdown_code_images_and_tables():
    renderer = MarkdownRenderer()
    html = renderer.render("```python\nprint('hi')\n```\n")
    assert 'class="highlight"' in html

    unknown = renderer.render("```nosuchlang\n<tag>\n```\n")
    assert '<code class="language-nosuchlang">&lt;tag&gt;' in unknown

    images = renderer.render("![a](cat.png) ![b](/abs.png) ![c](https://x.test/c.png)")
    assert 'src="/assets/images/cat.png"' in images
    assert 'src="/abs.png"' in images
    assert 'src="https://x.test/c.png"' in images

    relative = renderer.render("![d](./dog.png) ![e](.logo.png)")
    assert 'src="/assets/images/dog.png"' in relative
    assert 'src="/assets/images/.logo.png"' in relative

    table = renderer.render("| a | b |\n|---|---|\n| 1 | 2 |\n")
    assert "<table>" in table
    assert "<del>gone</del>" in renderer.render("~~gone~~")


def test_image_paths_only_drop_a_leading_dot_slash():
    assert _rewrite_image_path("./img/a.png") == "/assets/images/img/a.png"
    assert _rewrite_image_path("../img/a.png") == "/assets/images/../img/a.png"
    assert _rewrite_image_path(".hidden.png") == "/assets/images/.hidden.png"
    assert _rewrite_image_path("data:image/png;base64,xx") == "data:image/png;base64,xx"


def test_render_toc_nests_levels():
    toc = render_toc(
        [Heading("a", "A", 2), Heading("b", "B", 3), Heading("c", "C", 2)]
    )
    assert str(toc) == (
        '<ul><li><a href="#a">A</a><ul><li><a href="#b">B</a></li></ul>'
        '</li><li><a href="#c">C</a></li></ul>'
    )
    assert str(render_toc([])) == ""


def test_default_page_layout_escapes_title(tmp_path):
    engine = LayoutEngine([tmp_path], {"title": "My Site"})
    html = engine.render_page(page(headings=[Heading("x", "X", 2)]))
    assert "<title>Hello &lt;World&gt; | My Site</title>" in html
    assert "<p>Body</p>" in html
    assert 'href="#x"' in html
    assert "<li>python</li>" in html
    assert 'href="/assets/css/styles.css"' in html
    assert pygments_css().splitlines()[0] in html


def test_project_template_overrides_default(tmp_path):
    (tmp_path / "post.html").write_text("custom {{ page.title }}", encoding="utf-8")
    engine = LayoutEngine([tmp_path])
    assert engine.render_page(page(title="T")) == "custom T"


def test_index_layout_lists_kinds():
    corpus = Corpus(
        [
            ContentItem("old", "article", "Old", "2020-01-01", None, Path("old.md")),
            ContentItem("new", "article", "New", "2024-01-01", None, Path("new.md")),
            ContentItem("tool", "project", "Tool", "", None, Path("tool.md")),
        ]
    )
    html = LayoutEngine([]).render_index(build_collections(corpus))
    assert "<h2>Articles</h2>" in html
    assert "<h2>Projects</h2>" in html
    assert html.index("New") < html.index("Old")
    assert 'href="/articles/tool/"' in html


def test_layout_loader_signature_tracks_files(tmp_path):
    templates = tmp_path / "templates"
    compiled = tmp_path / "output"
    loader = LayoutLoader(templates, compiled, {"title": "Site"})
    engine, first = loader.resolve()
    assert loader.resolve() == (engine, first)

    templates.mkdir()
    (templates / "post.html").write_text("v1", encoding="utf-8")
    engine2, second = loader.resolve()
    assert second != first
    assert engine2 is not engine

    compiled.mkdir()
    module = compiled / "Main.js"
    module.write_text("x", encoding="utf-8")
    _, third = loader.resolve()
    assert third != second

    stat = module.stat()
    os.utime(module, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))
    assert loader.signature() != third

    assert LayoutLoader(templates, compiled, {"title": "Other"}).signature() != loader.signature()
