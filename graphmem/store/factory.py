"""Store backend factory.

Selects the backend from configuration:
- memory: InMemoryStore (default, nothing persisted)
- sqlite: SQLiteStore at Config.resolved_sqlite_path

Environment variables for override:
- GRAPHMEM_STORE_BACKEND: Force "memory" or "sqlite"
- GRAPHMEM_SQLITE_PATH: Override the SQLite database path
"""

from pathlib import Path
from typing import Literal

from graphmem.config import Config
from graphmem.log_config import get_logger
from graphmem.store.memory_backend import InMemoryStore
from graphmem.store.protocol import Store
from graphmem.store.sqlite_backend import SQLiteStore

log = get_logger("store.factory")

BackendType = Literal["memory", "sqlite"]


def create_store(
    config: Config | None = None,
    backend: BackendType | None = None,
    sqlite_path: str | Path | None = None,
) -> Store:
    """Create a store backend.

    Args:
        config: Configuration (defaults to Config())
        backend: Explicit backend, overriding config.store_backend
        sqlite_path: Explicit SQLite path, overriding the configured one

    Returns:
        Initialized Store instance

    Raises:
        ValueError: If the backend name is unknown
    """
    config = config or Config()
    backend = (backend or config.store_backend).lower()

    if backend == "memory":
        log.info("Using in-memory store")
        return InMemoryStore()
    if backend == "sqlite":
        path = Path(sqlite_path) if sqlite_path else config.resolved_sqlite_path
        log.info(f"Using SQLite store at {path}")
        return SQLiteStore(path)

    raise ValueError(f"Unknown store backend: {backend}")


def get_backend_info() -> dict[str, list[str]]:
    """Available backends (both ship with the package)."""
    return {"available": ["memory", "sqlite"]}
