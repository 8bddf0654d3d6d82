"""Logging setup for fleetrun.

This module provides:
- Console and optional file logging (``--log``)
- Verbosity levels, including a TRACE level that shows every rendered command
- Structured loggers that append ``key=value`` context to messages
- Timing scopes for tasks and whole runs
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

DEFAULT_FORMAT = "%(levelname)s [%(name)s] %(message)s"
DEBUG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s"
TRACE_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s"

# Custom TRACE level (more detailed than DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

VERBOSITY_LEVELS = {
    0: logging.WARNING,   # Default: warnings and errors only
    1: logging.INFO,      # -v: task and host progress
    2: logging.DEBUG,     # -vv: selection, resolution and connection details
    3: TRACE,             # -vvv: every command sent to a host
}


def get_level_from_verbosity(verbosity: int) -> int:
    """Convert a ``-v`` count to a logging level."""
    return VERBOSITY_LEVELS.get(min(verbosity, 3), TRACE)


def configure_logging(
    level: int = logging.WARNING,
    log_file: str | Path | None = None,
    file_level: int | None = None,
) -> None:
    """Configure logging for fleetrun.

    Args:
        level: Logging level for the console
        log_file: Optional path to also write logs to (``--log``)
        file_level: Separate level for the file handler (defaults to DEBUG)

    Example:
        >>> configure_logging(level=logging.INFO)
        >>> configure_logging(level=logging.WARNING, log_file="/tmp/deploy.log")
    """
    if level <= TRACE:
        format_string = TRACE_FORMAT
    elif level <= logging.DEBUG:
        format_string = DEBUG_FORMAT
    else:
        format_string = DEFAULT_FORMAT

    if log_file and file_level is None:
        file_level = logging.DEBUG

    root_logger = logging.getLogger()
    root_logger.setLevel(min(level, file_level or level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(format_string))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(file_level or level)
        # Always use detailed format for file logging
        file_handler.setFormatter(logging.Formatter(DEBUG_FORMAT))
        root_logger.addHandler(file_handler)


class StructuredLogger:
    """Logger that appends structured context to every message.

    Example:
        >>> logger = StructuredLogger("fleetrun.orchestrator", command="deploy")
        >>> logger.info("Run started", hosts=2)
        INFO [fleetrun.orchestrator] Run started (command=deploy, hosts=2)
    """

    def __init__(self, name: str, **context: Any) -> None:
        self.logger = logging.getLogger(name)
        self.context: dict[str, Any] = context.copy()

    def add_context(self, **context: Any) -> None:
        self.context.update(context)

    def remove_context(self, *keys: str) -> None:
        for key in keys:
            self.context.pop(key, None)

    def _format_message(self, message: str, **extra: Any) -> str:
        combined = {**self.context, **extra}
        if not combined:
            return message
        context_str = ", ".join(f"{k}={v}" for k, v in combined.items())
        return f"{message} ({context_str})"

    def log(self, level: int, message: str, **extra: Any) -> None:
        if self.logger.isEnabledFor(level):
            self.logger.log(level, self._format_message(message, **extra))

    def trace(self, message: str, **extra: Any) -> None:
        self.log(TRACE, message, **extra)

    def debug(self, message: str, **extra: Any) -> None:
        self.log(logging.DEBUG, message, **extra)

    def info(self, message: str, **extra: Any) -> None:
        self.log(logging.INFO, message, **extra)

    def warning(self, message: str, **extra: Any) -> None:
        self.log(logging.WARNING, message, **extra)

    def error(self, message: str, **extra: Any) -> None:
        self.log(logging.ERROR, message, **extra)

    def exception(self, message: str, **extra: Any) -> None:
        """Log an error with the active exception's traceback."""
        self.logger.exception(self._format_message(message, **extra))

    @contextmanager
    def performance(
        self,
        operation: str,
        level: int = logging.INFO,
        threshold: float | None = None,
        **context: Any,
    ) -> Generator[None, None, None]:
        """Time an operation and log its duration with the current context.

        Args:
            operation: Operation description
            level: Log level
            threshold: Only log if the duration reaches this many seconds
            **context: Additional context for this operation

        Example:
            >>> logger = get_logger("fleetrun", command="deploy")
            >>> with logger.performance("Task build", hosts=3):
            ...     await run_barrier()
            INFO: Task build completed in 1.204s (command=deploy, hosts=3)
        """
        start_time = time.perf_counter()
        original_context = self.context.copy()
        self.add_context(**context)

        try:
            yield
        finally:
            duration = time.perf_counter() - start_time
            if threshold is None or duration >= threshold:
                self.log(level, f"{operation} completed in {duration:.3f}s")
            self.context = original_context


def get_logger(name: str, **context: Any) -> StructuredLogger:
    """Get a structured logger.

    Args:
        name: Logger name (typically __name__)
        **context: Initial context

    Returns:
        StructuredLogger instance
    """
    return StructuredLogger(name, **context)
