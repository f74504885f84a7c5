"""Logging configuration for GraphMem.

Uses loguru with a level-filtered console handler and optional file logging.
When file logging is enabled, logs are stored in ~/.graphmem/logs/ with:
- Rotation at 10 MB per file
- Retention of 7 days
- Compression of old logs

Environment variables for log level control:
- GRAPHMEM_LOG_LEVEL: Global log level (default: INFO)
- GRAPHMEM_LOG_STORE: Store backend log level
- GRAPHMEM_LOG_UOW: Unit of work log level
- GRAPHMEM_LOG_ANALYZER: Connection analyzer log level
- GRAPHMEM_LOG_TO_FILE: Enable the rotating file handler (default: false)
- GRAPHMEM_LOG_DIR: Override the log directory
"""

import os
import sys
from contextlib import contextmanager
from pathlib import Path
from time import perf_counter

from loguru import logger

# Get global log level from environment
_global_log_level = os.getenv("GRAPHMEM_LOG_LEVEL", "INFO").upper()

# Component-specific log level overrides
_component_log_levels: dict[str, str] = {
    "store": os.getenv("GRAPHMEM_LOG_STORE", "").upper(),
    "uow": os.getenv("GRAPHMEM_LOG_UOW", "").upper(),
    "analyzer": os.getenv("GRAPHMEM_LOG_ANALYZER", "").upper(),
}


def _log_filter(record) -> bool:
    """Filter log records based on global and component-specific log levels.

    Allows component-specific log level overrides while respecting global level.
    """
    name = record["extra"].get("name", "")

    # Check component overrides first
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


# Remove default handler
logger.remove()

logger.add(
    sys.stderr,
    level=0,  # Accept all, let filter decide
    filter=_log_filter,
    format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{extra[name]}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    colorize=True,
)

if os.getenv("GRAPHMEM_LOG_TO_FILE", "false").lower() in ("true", "1", "yes"):
    _log_dir = Path(os.getenv("GRAPHMEM_LOG_DIR", str(Path.home() / ".graphmem" / "logs")))
    _log_dir.mkdir(parents=True, exist_ok=True)

    logger.add(
        _log_dir / "graphmem_{time:YYYY-MM-DD}.log",
        level="DEBUG",
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]}:{function}:{line} | {message}",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,  # Thread-safe
    )

# Records logged through the bare logger still need extra[name] for the format
logger.configure(extra={"name": "graphmem"})


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
        with log_timing("store transaction", log) as timing:
            store.transact(operations)
        # timing['elapsed_ms'] now contains the elapsed time
    """
    log_fn = log_instance or logger
    timing = {"elapsed_ms": 0.0}
    start = perf_counter()
    try:
        yield timing
    finally:
        timing["elapsed_ms"] = (perf_counter() - start) * 1000
        getattr(log_fn, level)(f"{operation}: {timing['elapsed_ms']:.1f}ms")


__all__ = ["logger", "get_logger", "log_timing"]
