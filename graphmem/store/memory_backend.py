"""In-memory store backend.

Thread-safe dict keyed by (PK, SK). All mutations happen under one
re-entrant lock, so transactions are serialized and atomic. Intended for
tests and single-process use; nothing is persisted.
"""

import copy
import threading
from typing import Any, Sequence

from graphmem.errors import ConditionCheckFailedError, TransactionCancelledError
from graphmem.log_config import get_logger
from graphmem.store.protocol import (
    PK,
    REASON_CONDITION_FAILED,
    BaseStore,
    Condition,
    ConditionCheck,
    Delete,
    Key,
    Operation,
    Put,
    QueryPage,
    Update,
)

log = get_logger("store.memory")


class InMemoryStore(BaseStore):
    """Dict-backed Store implementation."""

    def __init__(self):
        self._items: dict[Key, dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._closed = False
        log.debug("InMemoryStore initialized")

    @property
    def backend_name(self) -> str:
        return "memory"

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    # =========================================================================
    # Single-item operations
    # =========================================================================

    def get(self, key: Key) -> dict[str, Any] | None:
        with self._lock:
            item = self._items.get(key)
            return copy.deepcopy(item) if item is not None else None

    def put(self, key: Key, item: dict[str, Any], condition: Condition | None = None) -> None:
        record = dict(item)
        record.update(key.as_dict())
        with self._lock:
            if condition is not None and not condition.evaluate(self._items.get(key)):
                raise ConditionCheckFailedError(f"put condition failed for {key.pk}/{key.sk}")
            self._items[key] = copy.deepcopy(record)

    def update(
        self,
        key: Key,
        changes: dict[str, Any],
        condition: Condition | None = None,
        remove: Sequence[str] = (),
    ) -> dict[str, Any]:
        op = Update(target=key, changes=changes, remove=tuple(remove), condition=condition)
        with self._lock:
            current = self._items.get(key)
            if not op.check(current):
                raise ConditionCheckFailedError(f"update condition failed for {key.pk}/{key.sk}")
            new_item = op.apply(copy.deepcopy(current))
            self._items[key] = new_item
            return copy.deepcopy(new_item)

    def delete(self, key: Key, condition: Condition | None = None) -> None:
        with self._lock:
            if condition is not None and not condition.evaluate(self._items.get(key)):
                raise ConditionCheckFailedError(f"delete condition failed for {key.pk}/{key.sk}")
            self._items.pop(key, None)

    # =========================================================================
    # Query / scan
    # =========================================================================

    def query(
        self,
        partition_key: str,
        sort_key_prefix: str | None = None,
        index_name: str | None = None,
        limit: int | None = None,
        start_key: dict[str, Any] | None = None,
    ) -> QueryPage:
        pk_attr, sk_attr = self._index_attrs(index_name)
        with self._lock:
            matches = [
                item for item in self._items.values()
                if item.get(pk_attr) == partition_key
                and (sort_key_prefix is None or str(item.get(sk_attr, "")).startswith(sort_key_prefix))
            ]
            matches.sort(key=lambda it: self._sort_tuple(it, sk_attr))
            if start_key:
                after = self._start_tuple(start_key, sk_attr)
                matches = [it for it in matches if self._sort_tuple(it, sk_attr) > after]
            return self._page(matches, limit, index_name)

    def scan(
        self,
        filter: Condition | None = None,
        attributes: Sequence[str] | None = None,
        limit: int | None = None,
        start_key: dict[str, Any] | None = None,
    ) -> QueryPage:
        with self._lock:
            matches = [it for it in self._items.values() if filter is None or filter.evaluate(it)]
            matches.sort(key=lambda it: (it[PK], it["SK"]))
            if start_key:
                after = (start_key[PK], start_key["SK"])
                matches = [it for it in matches if (it[PK], it["SK"]) > after]
            page = self._page(matches, limit, None)
            page.items = [self._project(it, attributes) for it in page.items]
            return page

    def _page(self, matches: list[dict[str, Any]], limit: int | None, index_name: str | None) -> QueryPage:
        if limit is not None and limit <= 0:
            return QueryPage([])
        if limit is not None and len(matches) > limit:
            items = matches[:limit]
            return QueryPage([copy.deepcopy(it) for it in items], self._last_key(items[-1], index_name))
        return QueryPage([copy.deepcopy(it) for it in matches])

    # =========================================================================
    # Transactions
    # =========================================================================

    def transact(self, operations: Sequence[Operation]) -> None:
        self._validate_transaction(operations)
        with self._lock:
            reasons: list[str | None] = []
            for op in operations:
                reasons.append(None if op.check(self._items.get(op.key)) else REASON_CONDITION_FAILED)
            if any(reasons):
                log.debug(f"Transaction cancelled: {reasons}")
                raise TransactionCancelledError("transaction cancelled: condition check failed", reasons)

            for op in operations:
                self._apply(op)
        log.trace(f"Transaction applied: {len(operations)} operations")

    def _apply(self, op: Operation) -> None:
        key = op.key
        if isinstance(op, Put):
            self._items[key] = copy.deepcopy(op.item)
        elif isinstance(op, Update):
            self._items[key] = op.apply(copy.deepcopy(self._items.get(key)))
        elif isinstance(op, Delete):
            self._items.pop(key, None)
        elif isinstance(op, ConditionCheck):
            pass

    def batch_write(self, operations: Sequence[Put | Delete]) -> list[Key]:
        self._validate_batch(operations)
        failed: list[Key] = []
        with self._lock:
            for op in operations:
                if not op.check(self._items.get(op.key)):
                    failed.append(op.key)
                    continue
                self._apply(op)
        return failed

    def health_check(self) -> bool:
        return not self._closed

    def close(self) -> None:
        self._closed = True

    def clear(self) -> None:
        """Drop every item."""
        with self._lock:
            self._items.clear()
