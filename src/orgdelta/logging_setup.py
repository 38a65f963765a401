"""Logging helper used by the orgdelta CLI."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def init_logging(
    level: str, logfile: Path | None = None, console: Console | None = None
) -> None:
    resolved_level = level.upper()
    fallback = resolved_level not in _LEVELS
    if fallback:
        resolved_level = "INFO"
    handlers: list[logging.Handler] = [
        RichHandler(console=console, rich_tracebacks=True, show_time=True, show_path=False)
    ]
    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(logfile, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")
        )
        handlers.append(file_handler)
    logging.basicConfig(
        level=getattr(logging, resolved_level),
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )
    if fallback:
        logging.getLogger(__name__).warning(
            "Unsupported log level %r, falling back to INFO", level
        )
