"""
Logging setup.

Log records and chain progress bars share one rich console, so progress
bars stay pinned below the log lines of a running fit.
"""

from __future__ import annotations

import logging
import logging.config
from logging import LogRecord
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

console = Console(width=160, stderr=True)


class AppFilter(logging.Filter):
    """
    Attach the short module name used by the pretty formatter.
    """

    def filter(self, record: LogRecord) -> bool:
        record.filenameStem = Path(record.filename).stem
        return True


def rich_handler_factory() -> RichHandler:
    return RichHandler(
        console=console,
        rich_tracebacks=True,
        tracebacks_suppress=[],
        markup=True,
    )


def logging_config(level: str | int = "INFO", *, plain: bool = False) -> dict[str, Any]:
    """
    Build the ``dictConfig`` for sxmc.

    Args:
        level: Level of the ``sxmc`` loggers; ``DEBUG`` adds per-experiment
            dataset details and kernel compilation messages
        plain: Log through a plain stream handler instead of the rich console
            (batch jobs writing to files)
    """
    handler = "default" if plain else "rich"
    return {
        "version": 1,
        "disable_existing_loggers": True,
        "filters": {"appfilter": {"()": AppFilter}},
        "formatters": {
            "standard": {"format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"},
            "pretty": {"format": "[[yellow]%(filenameStem)s[/]] %(message)s"},
        },
        "handlers": {
            "default": {
                "formatter": "standard",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
            },
            "rich": {
                "()": rich_handler_factory,
                "formatter": "pretty",
                "filters": ["appfilter"],
            },
        },
        "loggers": {
            "": {"handlers": [handler], "level": "WARNING", "propagate": False},
            "sxmc": {"handlers": [], "level": level, "propagate": True},
        },
    }


def setup(level: str | int = "INFO", *, plain: bool = False) -> None:
    """
    Initialize logging for a fit.

    Args:
        level: Level of the ``sxmc`` loggers
        plain: Route output through the plain stream handler
    """
    logging.config.dictConfig(logging_config(level, plain=plain))


__all__ = ("console", "logging_config", "setup")
