"""Logging setup for Tether (loguru)."""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

__all__ = ["setup_logging"]


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Setup loguru logging for the CLI.

    Configures:
    - Console output: WARNING+ (DEBUG+ when verbose)
    - File output: DEBUG+ if log_file is configured
    """
    logger.remove()

    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format="<level>{level}</level>: {message}",
        colorize=True,
    )

    if not log_file:
        return

    try:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
            rotation="10 MB",
            retention="30 days",
        )
        logger.debug(f"File logging enabled: {log_path}")
    except OSError as e:
        # A broken log path must not take the command down with it
        logger.warning(f"Failed to setup file logging: {e}")
