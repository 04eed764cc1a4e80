"""Logging configuration for the semantic memory engine.

Logs go to stderr so CLI output on stdout stays machine-readable.
"""

import sys

from loguru import logger

# Remove default handler
logger.remove()
logger.configure(extra={"name": "semantic_memory"})

LOG_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)

_handler_id = logger.add(sys.stderr, format=LOG_FORMAT, level="INFO", colorize=True)


def configure_logging(level: str = "INFO", log_format: str = "pretty") -> None:
    """Replace the stderr handler with one at the given level and format.

    Args:
        level: Minimum level (DEBUG, INFO, WARNING, ERROR).
        log_format: 'pretty' for coloured lines, 'json' for one JSON record per line.
    """
    global _handler_id
    logger.remove(_handler_id)
    if log_format == "json":
        _handler_id = logger.add(sys.stderr, level=level.upper(), serialize=True)
    else:
        _handler_id = logger.add(
            sys.stderr, format=LOG_FORMAT, level=level.upper(), colorize=True
        )


def get_logger(name: str) -> "logger":
    """Get a logger instance bound to a module name."""
    return logger.bind(name=name)
