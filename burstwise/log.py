"""Logging setup for the CLI."""

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "WARNING", console: Console | None = None) -> logging.Logger:
    """Attach a rich handler to the package logger.

    Args:
        level: Logging level name (e.g. "INFO", "DEBUG")
        console: Console to render to. Defaults to stderr.

    Returns:
        The configured ``burstwise`` logger
    """
    logger = logging.getLogger("burstwise")
    logger.setLevel(level.upper())

    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
