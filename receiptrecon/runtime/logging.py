"""Process-wide logging for the scanner.

Every module logs under the ``receiptrecon`` logger tree, which gets a single
stderr handler the first time a logger is requested. Pure modules use plain
``logging.getLogger(__name__)`` and still land in the same tree.

Usage:
    from receiptrecon.runtime import get_logger
    logger = get_logger(__name__)

    logger.info("Merged %d items", count)
    logger.warning("Chunk %s failed", chunk_id)

RECEIPTRECON_LOG_LEVEL selects DEBUG, INFO, WARNING or ERROR; INFO otherwise.
"""

import logging
import os
import sys

DEFAULT_LOG_LEVEL = logging.INFO

LOG_NAMESPACE = "receiptrecon"

LOG_FORMAT = "%(levelname)s [%(name)s] %(message)s"
# Debug output adds the line number
LOG_FORMAT_DEBUG = "%(levelname)s [%(name)s:%(lineno)d] %(message)s"

_LEVEL_NAMES = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}

_logging_configured = False


def _level_from_env() -> int:
    env_level = os.environ.get("RECEIPTRECON_LOG_LEVEL", "").upper()
    return _LEVEL_NAMES.get(env_level, DEFAULT_LOG_LEVEL)


def _formatter_for(level: int) -> logging.Formatter:
    return logging.Formatter(LOG_FORMAT_DEBUG if level == logging.DEBUG else LOG_FORMAT)


def configure_logging(level: int | None = None) -> None:
    """Attach the stderr handler to the package logger once per process.

    Args:
        level: Explicit level. Falls back to RECEIPTRECON_LOG_LEVEL.
    """
    global _logging_configured

    if _logging_configured:
        return

    if level is None:
        level = _level_from_env()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_formatter_for(level))

    package_logger = logging.getLogger(LOG_NAMESPACE)
    package_logger.setLevel(level)
    package_logger.addHandler(handler)
    package_logger.propagate = False

    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger inside the ``receiptrecon`` tree.

    Args:
        name: Usually ``__name__``. Names outside the package are nested
            under it.
    """
    configure_logging()

    if name == LOG_NAMESPACE or name.startswith(f"{LOG_NAMESPACE}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOG_NAMESPACE}.{name}")


def set_log_level(level: int) -> None:
    """Switch the package logger and its handlers to a new level."""
    configure_logging(level)
    package_logger = logging.getLogger(LOG_NAMESPACE)
    package_logger.setLevel(level)
    for handler in package_logger.handlers:
        handler.setFormatter(_formatter_for(level))
