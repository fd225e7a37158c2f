#!/usr/bin/env python3
"""Logger setup for the harness modules and the ``heat-harness`` CLI."""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

HARNESS_LOGGERS = (
    "heat_solver",
    "scenarios",
    "sweep_dispatch",
    "error_surface",
    "thickness_calibration",
    "stability_scan",
    "harness",
)


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Attach a console handler (and optionally a file handler) to every harness logger.

    Args:
        level: Logging level (e.g. logging.DEBUG, logging.INFO)
        log_file: Optional path to save logs to a file.
        stream: Console stream, stdout when omitted.
    """
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    handlers = [logging.StreamHandler(stream or sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="w", encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    for name in HARNESS_LOGGERS:
        logger = logging.getLogger(name)
        logger.setLevel(level)
        # Avoid duplicate lines (and open log files) when called more than once.
        for old in list(logger.handlers):
            logger.removeHandler(old)
            old.close()
        for handler in handlers:
            logger.addHandler(handler)
        logger.propagate = False

    logging.getLogger("harness").debug("Logging initialized.")
