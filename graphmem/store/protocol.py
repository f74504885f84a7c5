"""Store port for GraphMem.

Defines the key/value-with-query document store consumed by the
repositories, plus the operation and condition types used to build
atomic transactions. Backends (in-memory, SQLite) implement the same
protocol so repositories never see the concrete driver.

Items are plain dicts. Every item carries its primary key in the ``PK``
and ``SK`` attributes; items that participate in a secondary index also
carry ``GSI1PK``/``GSI1SK`` and/or ``GSI2PK``/``GSI2SK``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence, runtime_checkable

from graphmem.errors import ValidationError

PK = "PK"
SK = "SK"

# index name -> (partition attribute, sort attribute)
INDEXES: dict[str, tuple[str, str]] = {
    "GSI1": ("GSI1PK", "GSI1SK"),
    "GSI2": ("GSI2PK", "GSI2SK"),
}

# Guard labels used to translate a failed condition into a domain error
GUARD_VERSION = "version"
GUARD_EXISTS = "exists"
GUARD_ABSENT = "absent"

REASON_CONDITION_FAILED = "ConditionalCheckFailed"
REASON_NONE = None


@dataclass(frozen=True, order=True)
class Key:
    """Primary key of an item."""

    pk: str
    sk: str

    def as_dict(self) -> dict[str, str]:
        return {PK: self.pk, SK: self.sk}

    @classmethod
    def of(cls, item: dict[str, Any]) -> "Key":
        return cls(item[PK], item[SK])


# =============================================================================
# Conditions
# =============================================================================


class Condition(ABC):
    """Predicate evaluated against the current item (None when absent)."""

    @abstractmethod
    def evaluate(self, item: dict[str, Any] | None) -> bool:
        pass


@dataclass(frozen=True)
class AttributeExists(Condition):
    name: str = PK

    def evaluate(self, item):
        return item is not None and self.name in item


@dataclass(frozen=True)
class AttributeNotExists(Condition):
    name: str = PK

    def evaluate(self, item):
        return item is None or self.name not in item


@dataclass(frozen=True)
class AttributeEquals(Condition):
    name: str
    value: Any

    def evaluate(self, item):
        return item is not None and item.get(self.name) == self.value


@dataclass(frozen=True)
class BeginsWith(Condition):
    name: str
    prefix: str

    def evaluate(self, item):
        if item is None:
            return False
        value = item.get(self.name)
        return isinstance(value, str) and value.startswith(self.prefix)


@dataclass(frozen=True)
class And(Condition):
    conditions: tuple[Condition, ...]

    def __init__(self, *conditions: Condition):
        object.__setattr__(self, "conditions", tuple(conditions))

    def evaluate(self, item):
        return all(c.evaluate(item) for c in self.conditions)


# =============================================================================
# Operations
# =============================================================================


@dataclass
class Operation:
    """Base transaction operation.

    Attributes:
        condition: Must hold against the stored item for the operation to apply
        guard: Label describing what the condition protects (see GUARD_*)
        resource: (kind, id) of the protected aggregate, for error messages
    """

    condition: Condition | None = field(default=None, kw_only=True)
    guard: str | None = field(default=None, kw_only=True)
    resource: tuple[str, str] | None = field(default=None, kw_only=True)

    @property
    def key(self) -> Key:
        raise NotImplementedError

    def check(self, current: dict[str, Any] | None) -> bool:
        return self.condition is None or self.condition.evaluate(current)


@dataclass
class Put(Operation):
    item: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> Key:
        return Key.of(self.item)


@dataclass
class Update(Operation):
    """Set ``changes`` and drop ``remove`` attributes on an existing item.

    Updating a missing item creates it (upsert), as the document store does;
    pair with AttributeExists when that is not wanted.
    """

    target: Key = None
    changes: dict[str, Any] = field(default_factory=dict)
    remove: tuple[str, ...] = ()

    @property
    def key(self) -> Key:
        return self.target

    def apply(self, current: dict[str, Any] | None) -> dict[str, Any]:
        item = dict(current) if current else self.target.as_dict()
        item.update(self.changes)
        for name in self.remove:
            item.pop(name, None)
        item[PK], item[SK] = self.target.pk, self.target.sk
        return item


@dataclass
class Delete(Operation):
    target: Key = None

    @property
    def key(self) -> Key:
        return self.target


@dataclass
class ConditionCheck(Operation):
    """Assert a condition on an item without writing it."""

    target: Key = None

    @property
    def key(self) -> Key:
        return self.target


@dataclass
class QueryPage:
    """One page of query or scan results.

    Attributes:
        items: Matching items in key order
        last_key: Key attributes of the last returned item when more remain,
            to be passed back as ``start_key``; None on the final page
    """

    items: list[dict[str, Any]]
    last_key: dict[str, Any] | None = None

    @property
    def has_more(self) -> bool:
        return self.last_key is not None

    def __iter__(self):
        return iter(self.items)

    def __len__(self):
        return len(self.items)


# =============================================================================
# Protocol
# =============================================================================


@runtime_checkable
class Store(Protocol):
    """Protocol for document-store backends."""

    @property
    def backend_name(self) -> str:
        ...

    def get(self, key: Key) -> dict[str, Any] | None:
        """Fetch one item by primary key (None when absent)."""
        ...

    def put(self, key: Key, item: dict[str, Any], condition: Condition | None = None) -> None:
        """Write a full item. Raises ConditionCheckFailedError if ``condition`` fails."""
        ...

    def update(
        self,
        key: Key,
        changes: dict[str, Any],
        condition: Condition | None = None,
        remove: Sequence[str] = (),
    ) -> dict[str, Any]:
        """Partially update an item and return the new image."""
        ...

    def delete(self, key: Key, condition: Condition | None = None) -> None:
        ...

    def query(
        self,
        partition_key: str,
        sort_key_prefix: str | None = None,
        index_name: str | None = None,
        limit: int | None = None,
        start_key: dict[str, Any] | None = None,
    ) -> QueryPage:
        """Range query on the table or a secondary index.

        Args:
            partition_key: Exact partition value (PK, or the index's PK attribute)
            sort_key_prefix: Optional begins_with filter on the sort attribute
            index_name: None for the table, or "GSI1"/"GSI2"
            limit: Maximum items in the page
            start_key: ``last_key`` from the previous page (exclusive)
        """
        ...

    def scan(
        self,
        filter: Condition | None = None,
        attributes: Sequence[str] | None = None,
        limit: int | None = None,
        start_key: dict[str, Any] | None = None,
    ) -> QueryPage:
        """Full-table scan with an optional filter and attribute projection."""
        ...

    def transact(self, operations: Sequence[Operation]) -> None:
        """Apply all operations atomically.

        Raises:
            ValidationError: Empty transaction or the same key touched twice
            TransactionCancelledError: Any condition failed (nothing applied)
        """
        ...

    def batch_write(self, operations: Sequence[Put | Delete]) -> list[Key]:
        """Apply puts/deletes independently; return keys that failed.

        For writes that need no atomicity across items (idempotency purges).
        Multi-item aggregate writes go through ``transact``.
        """
        ...

    def health_check(self) -> bool:
        ...

    def close(self) -> None:
        ...


class BaseStore(ABC):
    """Shared validation and key-ordering helpers for backends."""

    @property
    @abstractmethod
    def backend_name(self) -> str:
        pass

    @staticmethod
    def _validate_transaction(operations: Sequence[Operation]) -> None:
        if not operations:
            raise ValidationError("transaction has no operations")
        seen: set[Key] = set()
        for op in operations:
            key = op.key
            if key is None or not key.pk or not key.sk:
                raise ValidationError(f"operation {type(op).__name__} has no key")
            if key in seen:
                raise ValidationError(f"transaction touches {key.pk}/{key.sk} more than once")
            seen.add(key)

    @staticmethod
    def _validate_batch(operations: Sequence[Operation]) -> None:
        for op in operations:
            if not isinstance(op, (Put, Delete)):
                raise ValidationError(f"batch_write supports Put and Delete, got {type(op).__name__}")

    @staticmethod
    def _index_attrs(index_name: str | None) -> tuple[str, str]:
        if index_name is None:
            return PK, SK
        try:
            return INDEXES[index_name]
        except KeyError:
            raise ValidationError(f"unknown index: {index_name}") from None

    @staticmethod
    def _sort_tuple(item: dict[str, Any], sort_attr: str) -> tuple[str, str, str]:
        """Total order used for paging: index sort key, then primary key."""
        return (str(item.get(sort_attr, "")), item[PK], item[SK])

    @staticmethod
    def _start_tuple(start_key: dict[str, Any], sort_attr: str) -> tuple[str, str, str]:
        return (str(start_key.get(sort_attr, "")), start_key[PK], start_key[SK])

    @staticmethod
    def _last_key(item: dict[str, Any], index_name: str | None) -> dict[str, Any]:
        last = {PK: item[PK], SK: item[SK]}
        if index_name is not None:
            for attr in INDEXES[index_name]:
                last[attr] = item.get(attr)
        return last

    @staticmethod
    def _project(item: dict[str, Any], attributes: Sequence[str] | None) -> dict[str, Any]:
        if not attributes:
            return dict(item)
        return {name: item[name] for name in attributes if name in item}
