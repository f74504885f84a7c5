"""Document store port and backends for GraphMem.

Module Structure:
- protocol.py: Store protocol, operations, conditions, QueryPage
- memory_backend.py: Thread-safe in-memory implementation
- sqlite_backend.py: SQLite implementation (WAL, BEGIN IMMEDIATE)
- factory.py: Backend selection from Config

Example:
    from graphmem.store import create_store, Key

    store = create_store(backend="memory")
    store.put(Key("USER#u1#NODE#n1", "METADATA#v0"), {"Title": "hello"})
"""

from graphmem.store.factory import create_store, get_backend_info
from graphmem.store.memory_backend import InMemoryStore
from graphmem.store.protocol import (
    And,
    AttributeEquals,
    AttributeExists,
    AttributeNotExists,
    BeginsWith,
    Condition,
    ConditionCheck,
    Delete,
    Key,
    Operation,
    Put,
    QueryPage,
    Store,
    Update,
)
from graphmem.store.sqlite_backend import SQLiteStore

__all__ = [
    "And",
    "AttributeEquals",
    "AttributeExists",
    "AttributeNotExists",
    "BeginsWith",
    "Condition",
    "ConditionCheck",
    "Delete",
    "InMemoryStore",
    "Key",
    "Operation",
    "Put",
    "QueryPage",
    "SQLiteStore",
    "Store",
    "Update",
    "create_store",
    "get_backend_info",
]
