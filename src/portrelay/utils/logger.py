"""
Logging setup based on loguru.

Every module gets its logger through ``get_logger(__name__)``; the sink and
verbosity are configured once at startup with ``configure_logging``.
"""

import sys

from loguru import logger

from portrelay.models.enums import LogLevel

LOG_FORMAT = (
    "<green>{time:MMM DD HH:mm:ss.SSS}</green> "
    "<level>{level: <8}</level> "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

_LEVEL_MAP = {
    LogLevel.FULL: "TRACE",
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.WARNING: "WARNING",
}


def configure_logging(level: LogLevel = LogLevel.INFO) -> None:
    """Replace loguru's default sink with a stderr sink at the given level."""
    logger.remove()
    logger.configure(extra={"name": "portrelay"})
    logger.add(
        sys.stderr,
        level=_LEVEL_MAP.get(level, "INFO"),
        format=LOG_FORMAT,
        backtrace=level == LogLevel.FULL,
        diagnose=level == LogLevel.FULL,
    )


def get_logger(name: str):
    """Get a logger bound to a module name."""
    return logger.bind(name=name)
