"""
Logging setup for VisTrace
"""

import logging
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler


LOGGER_NAME = "vistrace"


def setup_logging(level: Union[int, str] = logging.WARNING,
                  console: Optional[Console] = None) -> logging.Logger:
    """
    Attach a RichHandler to the package logger.

    Safe to call more than once; only the level is updated on later calls.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if isinstance(level, str):
        level = level.upper()
    logger.setLevel(level)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(
            console=console or Console(stderr=True),
            rich_tracebacks=True,
            markup=False,
            show_time=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        logger.addHandler(handler)
        logger.propagate = False

    return logger
