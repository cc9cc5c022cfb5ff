"""Kiln static site builder.

This package turns a tree of markdown posts into a static site. The hard part is
the incremental build pipeline: content discovery, fingerprinting, a persistent
build cache, bounded fan-out page generation and a debounced watch loop that
pushes live-reload notifications to connected browsers.

The main entry point is the CLI module, which provides commands for building,
cleaning, serving and scaffolding posts.

Architecture:
- content / extractors: discover markdown files and parse their front matter.
- hasher / cache: fingerprint items and decide what is stale.
- scheduler: bounded, fault-isolated fan-out of generation tasks.
- build: the orchestrator that sequences one build cycle.
- watcher / server: debounce filesystem events and broadcast reloads.
"""

__all__ = ["__version__"]
__version__ = "0.3.0"
