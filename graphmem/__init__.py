"""GraphMem - personal knowledge graph core.

Notes become nodes, related notes are connected automatically by keyword
similarity, and everything lives in a single-table document store:
- Node, Edge and Category aggregates with optimistic versioning
- Unit of work committing each command atomically
- Idempotent node creation
- Cached read-side queries
"""

__version__ = "0.1.0"

from graphmem.config import Config
from graphmem.domain import ConnectionAnalyzer, Edge, Node
from graphmem.errors import (
    ConflictError,
    GraphMemError,
    NotFoundError,
    RetryExhaustedError,
    ValidationError,
)
from graphmem.store import Store, create_store
from graphmem.uow import UnitOfWork

__all__ = [
    "Config",
    "ConflictError",
    "ConnectionAnalyzer",
    "Edge",
    "GraphMemError",
    "Node",
    "NotFoundError",
    "RetryExhaustedError",
    "Store",
    "UnitOfWork",
    "ValidationError",
    "create_store",
]
