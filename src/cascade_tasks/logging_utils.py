"""Configure loguru sinks for the library and CLI."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
    "{message}"
)
LOG_FILE_ROTATION = "1 MB"
LOG_FILE_RETENTION = 3


def configure_logging(level: str = "INFO", log_file: Optional[Union[str, Path]] = None) -> None:
    """Replace existing sinks with a stderr sink and an optional rotating file."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
    if log_file is not None:
        logger.add(
            str(log_file),
            level=level.upper(),
            format=LOG_FORMAT,
            rotation=LOG_FILE_ROTATION,
            retention=LOG_FILE_RETENTION,
            encoding="utf-8",
        )
