"""Loguru sink configuration.

The default stderr sink would interleave log lines with a tool's full-screen
UI while attached, so logs go to a rotating file unless debugging.
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from aiconnect.config import config


def configure_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    debug: Optional[bool] = None,
) -> Path:
    """Install the file sink (and a stderr sink in debug mode).

    Returns:
        Path of the log file.
    """
    debug = config.AIC_DEBUG if debug is None else debug
    level = "DEBUG" if debug else (level or config.LOG_LEVEL).upper()
    path = Path(log_file or config.LOG_FILE).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(
        path,
        level=level,
        rotation="5 MB",
        retention=3,
        enqueue=True,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
    )
    if debug:
        logger.add(sys.stderr, level="DEBUG")

    logger.debug(f"Logging to {path} at {level}")
    return path
