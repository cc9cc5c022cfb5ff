"""Command-line interface for Kiln.

This module defines the CLI commands using the Click framework.

Commands:
- build: Build the site incrementally into the output directory.
- serve: Run the development server with live reload.
- clean: Empty the output directory.
- status: Show what the build cache knows.
- post: Create a new markdown post interactively.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime
from pathlib import Path

import click
import questionary
import yaml

from . import __version__
from .build import BuildPipeline, BuildReport
from .cache import BuildCacheStore, diff
from .config import SiteConfig, load_site_config
from .content import Corpus, FileContentSource
from .errors import EnumerationError
from .filestore import LocalFileStore
from .log import configure_logging
from .utils import slugify


def _verbose_option(func):
    return click.option("--verbose", "-v", is_flag=True, help="Show debug output")(func)


def _load(port: int | None = None, ws_port: int | None = None) -> SiteConfig:
    try:
        return load_site_config(Path.cwd(), port=port, ws_port=ws_port)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Invalid kiln.yaml: {exc}") from exc


@click.group()
@click.version_option(version=__version__, prog_name="kiln")
def cli():
    """Kiln incremental static site builder."""


@cli.command()
@click.option("--clean", is_flag=True, help="Wipe the output directory and regenerate everything")
@click.option("--clean-all", is_flag=True, help="Like --clean, and also wipe compiled artefacts")
@click.option("--production", is_flag=True, help="Optimize images and scripts")
@click.option("--strict", is_flag=True, help="Exit with status 1 if any page failed")
@_verbose_option
def build(clean: bool, clean_all: bool, production: bool, strict: bool, verbose: bool):
    """Build the site into the output directory."""
    configure_logging(verbose)
    config = _load()
    pipeline = BuildPipeline(config, LocalFileStore(), production=production)
    if clean or clean_all:
        pipeline.clean(all=clean_all)
    report = asyncio.run(pipeline.build(force=clean or clean_all))
    _print_report(report)
    if not report.success:
        raise SystemExit(1)
    if strict and report.stats.errors:
        raise SystemExit(1)


def _print_report(report: BuildReport) -> None:
    if not report.success:
        click.echo(click.style("Build aborted:", fg="red", bold=True), err=True)
        click.echo(click.style(f"  Error: {report.reason}", fg="white"), err=True)
        return
    stats = report.stats
    color = "red" if stats.errors else "green"
    click.echo(
        click.style(
            f"Generated {stats.generated}, cached {stats.skipped_cached}, "
            f"errors {stats.errors}",
            fg=color,
        )
    )
    for key in stats.error_keys:
        outcome = report.outcome_for(key)
        reason = outcome.reason if outcome else "see log"
        click.echo(click.style(f"  {key}: {reason}", fg="yellow"), err=True)


@cli.command()
@click.option(
    "--port",
    type=int,
    required=False,
    help="Port to run the dev server (overrides kiln.yaml)",
)
@click.option(
    "--ws-port",
    type=int,
    required=False,
    help="Port for the live reload websocket server (overrides kiln.yaml ws_port)",
)
@click.option("--production", is_flag=True, help="Optimize images and scripts")
@_verbose_option
def serve(port: int | None, ws_port: int | None, production: bool, verbose: bool):
    """Run dev server with live reload."""
    configure_logging(verbose)
    config = _load(port, ws_port)
    from .server import DevServer

    store = LocalFileStore()
    server = DevServer(config, store, BuildPipeline(config, store, production=production))
    try:
        asyncio.run(server.run())
    except KeyboardInterrupt:
        click.echo("Stopped.")


@cli.command()
@click.option("--all", "clean_all", is_flag=True, help="Also wipe compiled artefacts")
def clean(clean_all: bool):
    """Empty the output directory."""
    configure_logging()
    config = _load()
    BuildPipeline(config, LocalFileStore()).clean(all=clean_all)
    click.echo(f"Cleaned {config.output_dir}")


@cli.command()
@_verbose_option
def status(verbose: bool):
    """Show cached pages, the last build time and pending work."""
    configure_logging(verbose)
    config = _load()
    store = LocalFileStore()
    cache = BuildCacheStore(config.cache_path, store).load()
    click.echo(f"Cache: {config.cache_path}")
    click.echo(f"Cached pages: {len(cache)}")
    if cache.last_build:
        built = datetime.fromtimestamp(cache.last_build / 1000)
        click.echo(f"Last build: {built:%Y-%m-%d %H:%M:%S}")
    else:
        click.echo("Last build: never")

    pipeline = BuildPipeline(config, store)
    try:
        corpus = Corpus(pipeline.source.list_items())
    except EnumerationError as exc:
        raise click.ClickException(str(exc)) from exc
    _, signature = pipeline.layouts.resolve()
    changes = diff(
        cache,
        corpus.unique_items(),
        pipeline.output_path_for,
        store.exists,
        force=cache.layout != signature,
    )
    removed = [key for key in cache.entries if key not in corpus]
    click.echo(f"Content items: {len(corpus)}")
    click.echo(f"Pending: {len(changes.stale)} to generate, {len(removed)} to remove")


@cli.command()
def post():
    """Create a new markdown post interactively."""
    config = _load()
    kinds = list(config.content_roots)
    if not kinds:
        raise click.ClickException("No content roots configured in kiln.yaml.")

    kind = questionary.select("Kind:", choices=kinds, style=_questionary_style()).ask()
    if kind is None:
        raise click.Abort()

    title = questionary.text(
        "Title:",
        validate=lambda x: len(x.strip()) > 0 or "Title cannot be empty",
        style=_questionary_style(),
    ).ask()
    if title is None:
        raise click.Abort()
    title = title.strip()

    slug = questionary.text("Slug:", default=slugify(title), style=_questionary_style()).ask()
    if slug is None:
        raise click.Abort()
    slug = slugify(slug) or slugify(title)
    if not slug:
        raise click.ClickException("Could not derive a slug from the title.")

    tags = questionary.text(
        "Tags (comma separated):", default="", style=_questionary_style()
    ).ask()
    if tags is None:
        raise click.Abort()

    target = config.content_roots[kind] / f"{slug}.md"
    if target.exists():
        raise click.ClickException(f"File already exists: {_relative(target, config)}")
    try:
        existing = FileContentSource(config.content_roots, LocalFileStore()).list_items()
    except EnumerationError as exc:
        raise click.ClickException(str(exc)) from exc
    for item in existing:
        if item.key == slug:
            raise click.ClickException(
                f"A post with key '{slug}' already exists: {_relative(item.source_path, config)}"
            )

    front_matter = {
        "title": title,
        "date": date.today(),
        "slug": slug,
        "tags": [t.strip() for t in tags.split(",") if t.strip()],
    }
    content = "---\n" + yaml.safe_dump(front_matter, sort_keys=False) + f"---\n\n# {title}\n\n"
    LocalFileStore().write(target, content)
    click.echo(f"Created {_relative(target, config)}")


def _relative(path: Path, config: SiteConfig) -> Path:
    try:
        return path.relative_to(config.project_root)
    except ValueError:
        return path


def _questionary_style():
    """Return consistent questionary style."""
    return questionary.Style(
        [
            ("qmark", "fg:cyan bold"),
            ("question", "bold"),
            ("answer", "fg:cyan"),
            ("pointer", "fg:cyan bold"),
            ("highlighted", "fg:cyan bold"),
            ("selected", "fg:cyan"),
        ]
    )


def main():
    """Entry point for the CLI application."""
    cli()
