"""Console logging for Kiln.

Every module logs through ``logging.getLogger(__name__)``. The CLI calls
:func:`configure_logging` once to attach a handler that writes through
``click.echo`` with a colour per level, so log output looks like the rest of
the command-line output.
"""

from __future__ import annotations

import logging

import click

_LEVEL_STYLES = {
    logging.DEBUG: {"fg": "bright_black"},
    logging.INFO: {},
    logging.WARNING: {"fg": "yellow"},
    logging.ERROR: {"fg": "red", "bold": True},
    logging.CRITICAL: {"fg": "red", "bold": True},
}


class ClickHandler(logging.Handler):
    """Logging handler that emits records via click.echo."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
            style = _LEVEL_STYLES.get(record.levelno, {})
            if style:
                message = click.style(message, **style)
            click.echo(message, err=record.levelno >= logging.WARNING)
        except Exception:  # pragma: no cover - mirrors logging.Handler behaviour
            self.handleError(record)


def configure_logging(verbose: bool = False) -> logging.Logger:
    """Attach a single ClickHandler to the ``kiln`` logger.

    Calling this more than once replaces the previous handler rather than
    stacking duplicates.

    Args:
        verbose: Emit DEBUG records when true, INFO and above otherwise.

    Returns:
        The configured ``kiln`` logger.
    """
    logger = logging.getLogger("kiln")
    for handler in list(logger.handlers):
        if isinstance(handler, ClickHandler):
            logger.removeHandler(handler)
    handler = ClickHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    return logger
