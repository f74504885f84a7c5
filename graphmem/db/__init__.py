"""Repositories for GraphMem.

Each aggregate has a reader port, a writer port, and one store-backed
adapter implementing both. Writers never touch the store directly: they
hand operations to the unit of work, which commits them atomically.

Module Structure:
- keys.py: Single-table key scheme
- pagination.py: Opaque cursors and Page
- base.py: OperationSink protocol and StoreRepository base
- node_repository.py: NodeReader / NodeWriter / StoreNodeRepository
- edge_repository.py: EdgeReader / EdgeWriter / StoreEdgeRepository
- category_repository.py: CategoryReader / CategoryWriter / StoreCategoryRepository
"""

from graphmem.db.category_repository import CategoryReader, CategoryWriter, StoreCategoryRepository
from graphmem.db.edge_repository import EdgeReader, EdgeWriter, StoreEdgeRepository
from graphmem.db.node_repository import NodeReader, NodeWriter, StoreNodeRepository
from graphmem.db.pagination import Page, decode_cursor, encode_cursor

__all__ = [
    "CategoryReader",
    "CategoryWriter",
    "EdgeReader",
    "EdgeWriter",
    "NodeReader",
    "NodeWriter",
    "Page",
    "StoreCategoryRepository",
    "StoreEdgeRepository",
    "StoreNodeRepository",
    "decode_cursor",
    "encode_cursor",
]
