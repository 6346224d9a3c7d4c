"""Logging configuration for projforge.

This module provides logging setup for projforge, with rich console
output and optional file output.

Features:
    - Rich formatted console logging
    - File logging for debugging
    - Configurable verbosity levels
    - Timing of long operations

Example:
    >>> import logging
    >>> from projforge.utils.logging import setup_logging
    >>> setup_logging(verbosity=2)
    >>> logger = logging.getLogger("projforge.cli")
    >>> logger.info("Processing started")
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

# =============================================================================
# Constants
# =============================================================================

# Default log format
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Rich console format (when using rich handler)
RICH_FORMAT = "%(message)s"

# Log levels by verbosity
VERBOSITY_LEVELS = {
    0: logging.WARNING,
    1: logging.INFO,
    2: logging.DEBUG,
}


# =============================================================================
# Setup Functions
# =============================================================================


def setup_logging(
    verbosity: int = 1,
    log_file: Path | str | None = None,
    use_rich: bool = True,
) -> None:
    """Configure logging for projforge.

    Args:
        verbosity: Verbosity level (0=warning, 1=info, 2=debug).
        log_file: Optional file to log to.
        use_rich: Use rich for console output.
    """
    level = VERBOSITY_LEVELS.get(verbosity, logging.DEBUG)

    logger = logging.getLogger("projforge")
    logger.setLevel(logging.DEBUG if log_file is not None else level)

    # Remove existing handlers
    logger.handlers.clear()

    if use_rich:
        console_handler: logging.Handler = RichHandler(
            console=Console(stderr=True),
            rich_tracebacks=True,
            show_time=False,
            show_path=False,
        )
        console_handler.setFormatter(logging.Formatter(RICH_FORMAT))
    else:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))

    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
        file_handler.setLevel(logging.DEBUG)  # Always log debug to file
        logger.addHandler(file_handler)


# =============================================================================
# Progress Utilities
# =============================================================================


class ProgressLogger:
    """Periodic progress lines for runs without a progress bar.

    Example:
        >>> progress = ProgressLogger(logger, total=500, description="Transcripts")
        >>> for job in jobs:
        ...     run(job)
        ...     progress.update()
    """

    def __init__(
        self,
        logger: logging.Logger,
        total: int,
        interval: int = 100,
        description: str = "Processing",
    ) -> None:
        self.logger = logger
        self.total = total
        self.interval = max(1, interval)
        self.description = description
        self.count = 0

    def update(self, n: int = 1) -> None:
        """Count ``n`` finished items, logging every ``interval`` items and at the end."""
        before = self.count
        self.count += n
        if self.count // self.interval > before // self.interval or self.count == self.total:
            pct = 100 * self.count / self.total if self.total > 0 else 100
            self.logger.info(f"{self.description}: {self.count}/{self.total} ({pct:.1f}%)")


# =============================================================================
# Timing Utilities
# =============================================================================


class Timer:
    """Context manager for timing operations.

    Example:
        >>> with Timer("Processing", logger):
        ...     process_data()
        # Logs: "Processing completed in 1.23s"
    """

    def __init__(
        self,
        description: str,
        logger: logging.Logger | None = None,
        level: int = logging.INFO,
    ) -> None:
        self.description = description
        self.logger = logger
        self.level = level
        self.start_time: float = 0
        self.elapsed: float = 0

    def __enter__(self) -> Timer:
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.elapsed = time.perf_counter() - self.start_time
        if self.logger:
            self.logger.log(self.level, f"{self.description} completed in {self.elapsed:.2f}s")
