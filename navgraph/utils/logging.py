"""
Logging helpers.

Every module logs through ``get_logger(__name__)``. Handlers live on the
top-level ``navgraph`` logger only; module loggers propagate to it.
"""

import logging
import sys
import time
from contextlib import contextmanager
from typing import Dict, Iterator, Optional


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER = "navgraph"

_configured: Dict[str, logging.Logger] = {}


def _parse_level(level: str) -> int:
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def setup_logger(
    name: str = ROOT_LOGGER,
    level: str = "INFO",
    format_string: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Attach handlers to a logger, replacing any it already had.

    Args:
        name: Logger name
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        format_string: Record format (default LOG_FORMAT)
        log_file: Also append records to this file

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(_parse_level(level))
    logger.handlers.clear()

    formatter = logging.Formatter(format_string or LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    # Records are handled here; don't duplicate them on the root logger
    logger.propagate = False

    _configured[name] = logger
    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Logger for a module.

    The first call under a namespace configures its top-level logger
    with defaults, so ``get_logger("navgraph.index.hnsw")`` writes through
    the handlers of ``navgraph``.
    """
    root_name = name.split(".", 1)[0]
    if root_name not in _configured:
        setup_logger(root_name)
    return logging.getLogger(name)


def set_level(level: str, name: str = ROOT_LOGGER) -> None:
    """Change the level of a logger (configuring it first if needed)."""
    get_logger(name).setLevel(_parse_level(level))


@contextmanager
def log_duration(logger: logging.Logger, operation: str) -> Iterator[None]:
    """Log how long the wrapped block took, at DEBUG level."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"{operation} took {elapsed_ms:.1f}ms")
