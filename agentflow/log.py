import sys
from typing import Any, Optional

from loguru import logger

LOG_FORMAT = "<green>{time:HH:mm:ss}</green> <level>{level: <7}</level> {message}"


def configure_logging(level: str = "INFO", sink: Optional[Any] = None, colorize: Optional[bool] = None) -> int:
    """Replace loguru's default handler with one sink. Returns the handler id."""
    logger.remove()
    return logger.add(sink or sys.stderr, level=level.upper(), format=LOG_FORMAT, colorize=colorize)
