"""Configuration for GraphMem.

Simple dataclass-based configuration with sensible defaults.
Override via environment variables with GRAPHMEM_ prefix.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from graphmem.log_config import get_logger

log = get_logger("config")

# Look for .env in package directory and parent
_pkg_dir = Path(__file__).parent.parent
_env_loaded = load_dotenv(_pkg_dir / ".env") or load_dotenv(_pkg_dir.parent / ".env")
log.debug(f"Loaded .env file: {_env_loaded}")


def _get_env(key: str, default: str) -> str:
    """Get environment variable with GRAPHMEM_ prefix."""
    return os.getenv(f"GRAPHMEM_{key}", default)


def _get_env_int(key: str, default: int) -> int:
    """Get integer environment variable."""
    return int(_get_env(key, str(default)))


def _get_env_float(key: str, default: float) -> float:
    """Get float environment variable."""
    return float(_get_env(key, str(default)))


@dataclass
class Config:
    """GraphMem configuration.

    Attributes:
        data_dir: Directory for on-disk stores (default: ~/.graphmem)
        store_backend: "memory" or "sqlite" (default: memory)
        similarity_threshold: Minimum score for a proposed edge (default: 0.3)
        max_connections: Edges proposed per node (default: 5)
        max_connections_limit: Hard cap on max_connections (default: 10)
        tag_bonus: Weight of tag overlap added to keyword similarity (default: 0.1)
        recency_weight: Weight of target recency in the score (default: 0.0)
        max_tags_per_node: Tag cardinality limit (default: 10)
        max_title_length: Title length limit (default: 200)
        max_content_length: Content length limit (default: 10000)
        retry_max_attempts: Optimistic-lock attempts (default: 3)
        retry_base_delay: First backoff delay in seconds (default: 0.1)
        idempotency_ttl_seconds: Idempotency record lifetime (default: 24h)
        query_cache_ttl_seconds: Read-side cache lifetime (default: 5 min)
        query_cache_max_entries: Read-side cache size (default: 1024)
    """

    data_dir: Path = field(
        default_factory=lambda: Path(_get_env("DATA_DIR", str(Path.home() / ".graphmem")))
    )
    store_backend: str = field(
        default_factory=lambda: _get_env("STORE_BACKEND", "memory")
    )
    sqlite_path: Path | None = field(
        default_factory=lambda: Path(p) if (p := _get_env("SQLITE_PATH", "")) else None
    )

    # Connection discovery
    similarity_threshold: float = field(
        default_factory=lambda: _get_env_float("SIMILARITY_THRESHOLD", 0.3)
    )
    max_connections: int = field(
        default_factory=lambda: _get_env_int("MAX_CONNECTIONS", 5)
    )
    max_connections_limit: int = field(
        default_factory=lambda: _get_env_int("MAX_CONNECTIONS_LIMIT", 10)
    )
    tag_bonus: float = field(
        default_factory=lambda: _get_env_float("TAG_BONUS", 0.1)
    )
    recency_weight: float = field(
        default_factory=lambda: _get_env_float("RECENCY_WEIGHT", 0.0)
    )

    # Domain limits
    max_tags_per_node: int = field(
        default_factory=lambda: _get_env_int("MAX_TAGS_PER_NODE", 10)
    )
    max_title_length: int = field(
        default_factory=lambda: _get_env_int("MAX_TITLE_LENGTH", 200)
    )
    max_content_length: int = field(
        default_factory=lambda: _get_env_int("MAX_CONTENT_LENGTH", 10000)
    )

    # Optimistic concurrency
    retry_max_attempts: int = field(
        default_factory=lambda: _get_env_int("RETRY_MAX_ATTEMPTS", 3)
    )
    retry_base_delay: float = field(
        default_factory=lambda: _get_env_float("RETRY_BASE_DELAY", 0.1)
    )

    # Shared caches
    idempotency_ttl_seconds: int = field(
        default_factory=lambda: _get_env_int("IDEMPOTENCY_TTL_SECONDS", 24 * 60 * 60)
    )
    query_cache_ttl_seconds: int = field(
        default_factory=lambda: _get_env_int("QUERY_CACHE_TTL_SECONDS", 300)
    )
    query_cache_max_entries: int = field(
        default_factory=lambda: _get_env_int("QUERY_CACHE_MAX_ENTRIES", 1024)
    )

    def __post_init__(self):
        """Normalize paths and validate ranges."""
        log.trace("Initializing Config")

        if isinstance(self.data_dir, str):
            self.data_dir = Path(self.data_dir)
        if isinstance(self.sqlite_path, str):
            self.sqlite_path = Path(self.sqlite_path)

        self.store_backend = self.store_backend.lower()
        if self.store_backend not in ("memory", "sqlite"):
            raise ValueError(f"Unknown store backend: {self.store_backend}")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ValueError(f"similarity_threshold must be in [0, 1], got {self.similarity_threshold}")
        if self.max_connections < 1 or self.max_connections_limit < 1:
            raise ValueError("max_connections and max_connections_limit must be positive")
        if self.retry_max_attempts < 1:
            raise ValueError("retry_max_attempts must be at least 1")

        log.debug(f"store_backend={self.store_backend}, data_dir={self.data_dir}")
        log.debug(
            f"similarity_threshold={self.similarity_threshold}, "
            f"max_connections={self.max_connections}/{self.max_connections_limit}, "
            f"tag_bonus={self.tag_bonus}, recency_weight={self.recency_weight}"
        )
        log.debug(
            f"retry_max_attempts={self.retry_max_attempts}, retry_base_delay={self.retry_base_delay}"
        )
        log.info(f"Config initialized: backend={self.store_backend}")

    @property
    def resolved_sqlite_path(self) -> Path:
        """SQLite database file (explicit path or data_dir/graphmem.db)."""
        return self.sqlite_path or self.data_dir / "graphmem.db"
