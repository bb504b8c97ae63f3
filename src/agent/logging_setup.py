"""Console logging for the CLI and demo."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_NOISY_LOGGERS = ("httpx", "httpcore", "openai")


def setup_logging(level: str = "INFO", console: Console | None = None) -> None:
    """Route stdlib logging through a rich handler at ``level``."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    logging.basicConfig(
        format="%(message)s",
        datefmt="[%X]",
        level=numeric_level,
        handlers=[handler],
        force=True,
    )

    # HTTP client chatter stays at WARNING unless explicitly debugging
    if numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
