"""
Loguru configuration for the CLI.

Library modules only ``from loguru import logger``; sinks are installed here.
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger


LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} | {message}"


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """
    Replace loguru's default handler with a stderr sink and an optional file.

    Args:
        level: Minimum level for both sinks (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path of a rotating log file
    """
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            rotation="10 MB",
            retention=5,
            level=level,
            format=LOG_FORMAT,
            enqueue=False,
        )

    logger.debug(f"Logging initialised (level={level})")
