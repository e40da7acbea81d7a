"""Logging setup for the command-line interface."""

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

LOG_LEVEL_ENV = "DI_CONFORMANCE_LOG_LEVEL"


def configure_logging(level: str | None = None) -> None:
    """Send log records to stderr through rich.

    The level comes from ``level``, then ``$DI_CONFORMANCE_LOG_LEVEL``,
    defaulting to WARNING.
    """
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    root = logging.getLogger()
    log_level = (level or os.getenv(LOG_LEVEL_ENV, "WARNING")).upper()
    root.setLevel(getattr(logging, log_level, logging.WARNING))
    root.handlers = [handler]
