"""Shared plumbing for store-backed repositories.

Repositories read straight from the store. Writes are turned into store
operations and handed to an OperationSink (the unit of work), which
applies them in one transaction at commit.
"""

from datetime import datetime
from typing import Any, Iterator, Protocol

from graphmem.db import keys
from graphmem.errors import InternalError, StoreError
from graphmem.log_config import get_logger
from graphmem.store.protocol import GUARD_EXISTS, AttributeExists, Key, Operation, Store, Update

log = get_logger("store.repository")

# Upper bound on pages followed by the *_all helpers
MAX_PAGES = 10_000
PAGE_SIZE = 100


class OperationSink(Protocol):
    """Collects operations for a single atomic commit."""

    def add(self, operation: Operation) -> None:
        ...

    def has_pending(self, key: Key) -> bool:
        """Whether an operation on ``key`` is already buffered."""
        ...

    def track(self, aggregate: Any) -> None:
        """Register an aggregate whose events/versions settle on commit."""
        ...

    def publish_event(self, event: Any) -> None:
        """Buffer an event for delivery after commit."""
        ...


def to_iso(value: datetime) -> str:
    return value.isoformat()


def from_iso(value: str) -> datetime:
    return datetime.fromisoformat(value)


class StoreRepository:
    """Base class holding the store and the (optional) write sink."""

    def __init__(self, store: Store, sink: OperationSink | None = None):
        self.store = store
        self._sink = sink

    @property
    def sink(self) -> OperationSink:
        if self._sink is None:
            raise InternalError(f"{type(self).__name__} is read-only outside a unit of work")
        return self._sink

    def _get(self, key: Key) -> dict[str, Any] | None:
        try:
            return self.store.get(key)
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"get {key.pk}/{key.sk} failed: {e}") from e

    def _query_all(
        self,
        partition_key: str,
        sort_key_prefix: str | None = None,
        index_name: str | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Follow pages until the partition is exhausted."""
        start_key = None
        for _ in range(MAX_PAGES):
            page = self.store.query(
                partition_key,
                sort_key_prefix=sort_key_prefix,
                index_name=index_name,
                limit=PAGE_SIZE,
                start_key=start_key,
            )
            yield from page.items
            if not page.has_more:
                return
            start_key = page.last_key
        log.warning(f"Stopped paging {partition_key} after {MAX_PAGES} pages")

    def _add(self, operation: Operation) -> None:
        self.sink.add(operation)

    def _add_unless_pending(self, operation: Operation) -> bool:
        if self.sink.has_pending(operation.key):
            return False
        self.sink.add(operation)
        return True

    def _stamp_link(self, key: Key, resource: tuple[str, str]) -> None:
        """Require the metadata item at ``key`` and replace its link stamp.

        A concurrent delete that read the old stamp fails its condition, so
        it cannot miss the association written here. Skipped when the unit
        of work already writes ``key``: node and category saves write a
        fresh stamp themselves.
        """
        self._add_unless_pending(Update(
            target=key,
            changes={keys.LINK_STAMP: keys.new_link_stamp()},
            condition=AttributeExists("PK"),
            guard=GUARD_EXISTS,
            resource=resource,
        ))
