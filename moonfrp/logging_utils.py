"""Logging helpers for MoonFRP."""

from __future__ import annotations

import logging

from .config import Settings

LOGGER_NAME = "moonfrp"
LOG_FILE_NAME = "moonfrp.log"


def _console_level(level: int) -> int:
    return max(level, logging.WARNING)


def configure_logging(settings: Settings) -> logging.Logger:
    """Configure and return the package logger.

    Handlers are attached once per process; later calls only adjust the level.
    """
    logger = logging.getLogger(LOGGER_NAME)
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logger.setLevel(level)
    if logger.handlers:
        for handler in logger.handlers:
            if isinstance(handler, logging.FileHandler):
                handler.setLevel(level)
            else:
                handler.setLevel(_console_level(level))
        return logger

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    # Console handler; stderr keeps stdout clean for command output
    ch = logging.StreamHandler()
    ch.setFormatter(formatter)
    ch.setLevel(_console_level(level))
    logger.addHandler(ch)

    # File handler
    log_file = settings.log_dir / LOG_FILE_NAME
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
    except OSError as exc:
        logger.warning("File logging disabled, cannot open %s: %s", log_file, exc)
    else:
        fh.setFormatter(formatter)
        fh.setLevel(level)
        logger.addHandler(fh)

    logger.propagate = False
    return logger
