"""
Logging utilities for the rollout.

- configure_logging(): console handler plus optional deployment log file
- RateLimitedLogger: suppresses identical messages within a window
"""

import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional


CONSOLE_FORMAT = "[%(levelname)s] %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def log_file_path(log_dir: Path, now: Optional[datetime] = None) -> Path:
    """Return logs/deployment-YYYY-MM-DD_HH-MM-SS.log under log_dir."""
    now = now or datetime.now(timezone.utc)
    return Path(log_dir) / f"deployment-{now.strftime('%Y-%m-%d_%H-%M-%S')}.log"


def configure_logging(verbose: bool = False, log_file: Optional[Path] = None) -> Optional[Path]:
    """Configure the root logger once for a CLI run.

    Args:
        verbose: Enable DEBUG on the console
        log_file: When given, also write every record to this file

    Returns:
        Path of the log file, if one was configured
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        root.addHandler(file_handler)

    # aiohttp access/client chatter is not useful in rollout output
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    return log_file


class RateLimitedLogger:
    """Rate-limited logger to prevent log spam."""

    def __init__(
        self,
        logger: logging.Logger,
        rate_limit_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize rate-limited logger.

        Args:
            logger: Logger that receives the messages that pass
            rate_limit_seconds: Minimum time between identical log messages
            clock: Time source (monotonic seconds)
        """
        self.logger = logger
        self.rate_limit_seconds = rate_limit_seconds
        self._clock = clock
        self._last_logs: Dict[str, float] = {}
        self.suppressed = 0

    def _should_log(self, message: str) -> bool:
        """Check if message should be logged based on rate limiting."""
        now = self._clock()
        last = self._last_logs.get(message)
        if last is None or now - last >= self.rate_limit_seconds:
            self._last_logs[message] = now
            return True
        self.suppressed += 1
        return False

    def warn_once(self, message: str, *args) -> None:
        """Log warning message only once per rate limit period."""
        if self._should_log(message):
            self.logger.warning(message, *args)

    def info_once(self, message: str, *args) -> None:
        """Log info message only once per rate limit period."""
        if self._should_log(message):
            self.logger.info(message, *args)
