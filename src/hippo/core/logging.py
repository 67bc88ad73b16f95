"""
Logging configuration.

All package loggers live under the "hippo" namespace so the host process can
route memory-subsystem output separately from its own.
"""

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = ("LiteLLM", "litellm", "httpx", "aiosqlite")


def setup_logging(
    level: int = logging.INFO,
    log_file: Path | None = None,
) -> logging.Logger:
    """Configure the package logger with console and optional file output."""
    logger = logging.getLogger("hippo")
    logger.setLevel(level)

    # setup_logging may be called again by the CLI after an embedding host did
    if logger.handlers:
        logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger, e.g. get_logger("memory.working")."""
    return logging.getLogger(f"hippo.{name}")
