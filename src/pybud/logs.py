# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""
Logging helpers for pybud.

The package logs through the standard `logging` hierarchy rooted at "pybud".
A build invocation that redirects its output to a log file does not touch the
root logger: it gets its own unregistered logger bound to that file and passes it
along explicitly, so two compilations never steal each other's destination.
"""

import logging
import sys
from typing import TextIO

ROOT_LOGGER_NAME = "pybud"
CONSOLE_FORMAT = "[%(levelname).4s] %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname).4s] %(name)s: %(message)s"
INVOCATION_LOGGER_NAME = f"{ROOT_LOGGER_NAME}.invocation"


def setup_logging(debug: bool = False) -> logging.Logger:
    """
    Configure the package logger with a stderr handler.

    Calling this more than once only adjusts the level.

    Parameters:
        debug (bool): Enable DEBUG level instead of INFO.

    Returns:
        logging.Logger: The package root logger.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(handler)
    return logger


def invocation_logger(stream: TextIO) -> logging.Logger:
    """
    Create a logger dedicated to a single build invocation.

    The logger writes to `stream` only. It is not registered in the logging
    hierarchy, so it neither propagates to the package handlers nor outlives
    the invocation. It logs at INFO, or at DEBUG when the package logger does.
    Its handler must be released with `release_logger` once the invocation is
    over.

    Parameters:
        stream (TextIO): Destination of every record (typically the log file).

    Returns:
        logging.Logger: A fresh, non-propagating logger.
    """
    package_level = logging.getLogger(ROOT_LOGGER_NAME).getEffectiveLevel()

    logger = logging.Logger(INVOCATION_LOGGER_NAME)
    logger.propagate = False
    logger.setLevel(logging.DEBUG if package_level <= logging.DEBUG else logging.INFO)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    return logger


def release_logger(logger: logging.Logger) -> None:
    """Flush and detach every handler of an invocation logger."""
    for handler in list(logger.handlers):
        handler.flush()
        logger.removeHandler(handler)
        handler.close()
