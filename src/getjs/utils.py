"""Logging setup shared by the CLI commands."""

import logging

from rich.console import Console
from rich.logging import RichHandler

# Libraries that log every request or driver message at INFO/DEBUG.
NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "playwright", "aiofiles")


def setup_logging(verbose: bool = False, console: Console | None = None) -> None:
    """Route log records through rich on stderr.

    Discovered URLs are written to stdout, so the handler never uses the
    default stdout console.

    Args:
        verbose: DEBUG level with source paths; otherwise INFO with the
            third-party loggers held at WARNING.
        console: Console to render into (defaults to a new stderr console).
    """
    handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        markup=False,
        show_path=verbose,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        handlers=[handler],
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)
