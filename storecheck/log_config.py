"""Logging configuration for storecheck.

Uses loguru with automatic rotation and structured logging.
Logs are stored in ~/.storecheck/logs/ with:
- Rotation at 10 MB per file
- Retention of 7 days
- Compression of old logs

Environment variables for log level control:
- STORECHECK_LOG_LEVEL: Global log level (default: INFO)
- STORECHECK_LOG_LEADER: Leader tracker log level
- STORECHECK_LOG_SCAN: Edge scanner log level
- STORECHECK_LOG_RPC: RPC connection log level
- STORECHECK_LOG_DIR: Override the log directory
"""

import os
import sys
from contextlib import contextmanager
from pathlib import Path
from time import perf_counter

from loguru import logger

# Get global log level from environment
_global_log_level = os.getenv("STORECHECK_LOG_LEVEL", "INFO").upper()

# Component-specific log level overrides
_component_log_levels: dict[str, str] = {
    "leader": os.getenv("STORECHECK_LOG_LEADER", "").upper(),
    "scan": os.getenv("STORECHECK_LOG_SCAN", "").upper(),
    "rpc": os.getenv("STORECHECK_LOG_RPC", "").upper(),
}


def _log_filter(record) -> bool:
    """Filter log records based on global and component-specific log levels.

    Allows component-specific log level overrides while respecting global level.
    """
    name = record["extra"].get("name", "")

    for component, level in _component_log_levels.items():
        if level and component in name:
            try:
                return record["level"].no >= logger.level(level).no
            except ValueError:
                pass  # Invalid level, fall through to global

    try:
        return record["level"].no >= logger.level(_global_log_level).no
    except ValueError:
        return True


def set_log_level(level: str) -> None:
    """Change the console log level at runtime (used by the CLI --verbose flag)."""
    global _global_log_level
    _global_log_level = level.upper()


# Remove default handler
logger.remove()

_log_dir = Path(os.getenv("STORECHECK_LOG_DIR", str(Path.home() / ".storecheck" / "logs")))
_log_dir.mkdir(parents=True, exist_ok=True)

# Console handler - uses filter for level control (allows component overrides)
logger.add(
    sys.stderr,
    level=0,  # Accept all, let filter decide
    filter=_log_filter,
    format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{extra[name]}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    colorize=True,
)

# File handler - DEBUG level, with rotation
logger.add(
    _log_dir / "storecheck_{time:YYYY-MM-DD}.log",
    level="DEBUG",
    format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]}:{function}:{line} | {message}",
    rotation="10 MB",
    retention="7 days",
    compression="zip",
    enqueue=True,
)

logger.configure(extra={"name": "storecheck"})


def get_logger(name: str):
    """Get a logger with the given name bound to context.

    Args:
        name: Module or component name

    Returns:
        Logger instance with name bound
    """
    return logger.bind(name=name)


@contextmanager
def log_timing(operation: str, log_instance=None, level: str = "debug"):
    """Context manager for timing operations with automatic logging.

    Args:
        operation: Description of the operation being timed
        log_instance: Logger instance (uses global logger if None)
        level: Log level for the timing message (default: debug)

    Yields:
        dict with 'elapsed_ms' key (populated after context exits)

    Example:
        with log_timing("forward scan", log) as timing:
            edges = await scanner.collect("known2", Direction.FORWARD)
    """
    log_fn = log_instance or logger
    timing = {"elapsed_ms": 0.0}
    start = perf_counter()
    try:
        yield timing
    finally:
        timing["elapsed_ms"] = (perf_counter() - start) * 1000
        getattr(log_fn, level)(f"{operation}: {timing['elapsed_ms']:.1f}ms")


__all__ = ["logger", "get_logger", "log_timing", "set_log_level"]
