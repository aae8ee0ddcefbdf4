"""
Logging configuration for the digitnet entry points.

Library modules only create loggers; handlers are attached here, once, by
whichever entry point runs.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> None:
    """
    Configure the `digitnet` namespace logger.

    Args:
        level: Logging level (e.g. `logging.DEBUG`, `logging.INFO`).
        log_file: Optional path where a copy of the log is written.
    """
    logger = logging.getLogger("digitnet")
    logger.setLevel(level)

    # Re-running an entry point in the same process must not duplicate output.
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.debug("Logging initialized.")
