"""
Logging setup for the service.
"""
import logging

ROOT_LOGGER = "doc_converter"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """
    Configure the package logger hierarchy.

    Args:
        log_level: One of debug, info, warn/warning, error (case-insensitive).
            Unknown values fall back to INFO.

    Returns:
        The package root logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(_LEVELS.get(log_level.lower(), logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
