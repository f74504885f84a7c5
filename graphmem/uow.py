"""Unit of Work: request-scoped transaction boundary.

Provides:
- State machine (created -> begun -> committed/rolled_back)
- Repository handles whose writes are buffered, not applied
- One atomic Store.transact() per commit
- Condition failures mapped to ConflictError / NotFoundError
- Event delivery after commit (failures logged, never retried)
- Rollback on any exit from the ``with`` block that did not commit

Example:
    with UnitOfWork(store, bus) as uow:
        node = uow.nodes.get_by_id(user_id, node_id)
        node.update_content(title=Title("new"))
        uow.nodes.save(node)
        uow.commit()
"""

from enum import Enum
from typing import Any
from uuid import uuid4

from graphmem.context import RequestContext, check_context
from graphmem.db.category_repository import StoreCategoryRepository
from graphmem.db.edge_repository import StoreEdgeRepository
from graphmem.db.node_repository import StoreNodeRepository
from graphmem.domain.events import DomainEvent
from graphmem.errors import (
    ConflictError,
    GraphMemError,
    InternalError,
    NotFoundError,
    StoreError,
    TransactionCancelledError,
    ValidationError,
)
from graphmem.event_bus import EventBus
from graphmem.log_config import get_logger, log_timing
from graphmem.store.protocol import GUARD_EXISTS, Key, Operation, Store

log = get_logger("uow")


class UnitOfWorkState(str, Enum):
    """Unit of work state machine states."""

    CREATED = "created"
    BEGUN = "begun"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


def translate_transaction_error(error: TransactionCancelledError, operations: list[Operation]) -> GraphMemError:
    """Map a cancelled transaction onto the domain error taxonomy.

    Version and uniqueness guards become ConflictError; existence guards
    become NotFoundError. When both kinds failed, the conflict wins so the
    retry loop gets a chance to re-read.
    """
    failed = [operations[i] for i in error.failed_indexes() if i < len(operations)]
    details = {
        "failed": [
            {"pk": op.key.pk, "sk": op.key.sk, "guard": op.guard}
            for op in failed
        ]
    }

    missing = [op for op in failed if op.guard == GUARD_EXISTS]
    conflicts = [op for op in failed if op.guard != GUARD_EXISTS]

    if conflicts:
        op = conflicts[0]
        kind, ident = op.resource or ("item", f"{op.key.pk}/{op.key.sk}")
        reason = "already exists" if op.guard == "absent" else "was modified concurrently"
        return ConflictError(f"{kind} {ident} {reason}", details=details)
    if missing:
        kind, ident = missing[0].resource or ("item", f"{missing[0].key.pk}/{missing[0].key.sk}")
        err = NotFoundError(kind, ident)
        err.details = details
        return err
    return StoreError(str(error), details=details)


class UnitOfWork:
    """Buffers repository writes and domain events for one atomic commit.

    Each request builds its own instance; nothing here is shared across
    threads.
    """

    def __init__(self, store: Store, event_bus: EventBus | None = None, uow_id: str | None = None):
        self.store = store
        self.event_bus = event_bus
        self.id = uow_id or uuid4().hex[:8]
        self.state = UnitOfWorkState.CREATED
        self._ctx: RequestContext | None = None
        self._reset()

    def _reset(self) -> None:
        self._operations: list[Operation] = []
        self._pending_keys: set[Key] = set()
        self._events: list[DomainEvent] = []
        self._tracked: list[Any] = []
        self._tracked_ids: set[int] = set()
        self._nodes: StoreNodeRepository | None = None
        self._edges: StoreEdgeRepository | None = None
        self._categories: StoreCategoryRepository | None = None
        self.published_events: list[DomainEvent] = []

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def begin(self, ctx: RequestContext | None = None) -> "UnitOfWork":
        """Open the scope and reset all buffers."""
        if self.state != UnitOfWorkState.CREATED:
            raise InternalError(f"unit of work {self.id} cannot begin from state {self.state.value}")
        self._reset()
        self._ctx = ctx
        self._nodes = StoreNodeRepository(self.store, self)
        self._edges = StoreEdgeRepository(self.store, self)
        self._categories = StoreCategoryRepository(self.store, self)
        self.state = UnitOfWorkState.BEGUN
        log.trace(f"UoW {self.id}: begun")
        return self

    def _require_begun(self) -> None:
        if self.state != UnitOfWorkState.BEGUN:
            raise InternalError(f"unit of work {self.id} is not active (state={self.state.value})")

    def commit(self, ctx: RequestContext | None = None) -> None:
        """Apply buffered operations atomically, then publish events.

        Raises:
            OperationCancelledError: Context cancelled or expired (rolled back)
            ConflictError: A version or uniqueness condition failed
            NotFoundError: A required item was missing at commit time
            StoreError: Store failure
        """
        self._require_begun()
        try:
            check_context(ctx or self._ctx)
        except GraphMemError:
            self.rollback()
            raise

        events = self._collect_events()
        operations = list(self._operations)

        if operations:
            try:
                with log_timing(f"UoW {self.id}: commit {len(operations)} operations", log, level="trace"):
                    self.store.transact(operations)
            except TransactionCancelledError as e:
                self.rollback()
                translated = translate_transaction_error(e, operations)
                log.debug(f"UoW {self.id}: commit rejected: {translated}")
                raise translated from e
            except GraphMemError:
                self.rollback()
                raise
            except Exception as e:
                self.rollback()
                raise StoreError(f"commit failed: {type(e).__name__}: {e}") from e

        self.state = UnitOfWorkState.COMMITTED
        for aggregate in self._tracked:
            aggregate.mark_persisted()
        log.debug(f"UoW {self.id}: committed {len(operations)} operations, {len(events)} events")
        self._publish(events)

    def rollback(self) -> None:
        """Discard buffered operations and events. Safe to call repeatedly."""
        if self.state == UnitOfWorkState.COMMITTED:
            log.trace(f"UoW {self.id}: rollback after commit ignored")
            return
        if self.state != UnitOfWorkState.ROLLED_BACK:
            log.trace(f"UoW {self.id}: rolled back ({len(self._operations)} operations discarded)")
        self._operations.clear()
        self._pending_keys.clear()
        self._events.clear()
        for aggregate in self._tracked:
            aggregate.pull_events()
        self.state = UnitOfWorkState.ROLLED_BACK

    def __enter__(self) -> "UnitOfWork":
        if self.state == UnitOfWorkState.CREATED:
            self.begin()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if self.state == UnitOfWorkState.BEGUN:
            if exc_type is not None:
                log.debug(f"UoW {self.id}: rolling back on {exc_type.__name__}")
            self.rollback()
        return False

    @property
    def committed(self) -> bool:
        return self.state == UnitOfWorkState.COMMITTED

    # =========================================================================
    # Repositories
    # =========================================================================

    @property
    def nodes(self) -> StoreNodeRepository:
        self._require_begun()
        return self._nodes

    @property
    def edges(self) -> StoreEdgeRepository:
        self._require_begun()
        return self._edges

    @property
    def categories(self) -> StoreCategoryRepository:
        self._require_begun()
        return self._categories

    # =========================================================================
    # Operation sink
    # =========================================================================

    def add(self, operation: Operation) -> None:
        """Buffer one store operation.

        Raises:
            ValidationError: The key already has a pending operation
        """
        self._require_begun()
        key = operation.key
        if key in self._pending_keys:
            raise ValidationError(f"unit of work already writes {key.pk}/{key.sk}")
        self._pending_keys.add(key)
        self._operations.append(operation)

    def has_pending(self, key: Key) -> bool:
        return key in self._pending_keys

    @property
    def pending_operations(self) -> list[Operation]:
        return list(self._operations)

    def track(self, aggregate: Any) -> None:
        if id(aggregate) not in self._tracked_ids:
            self._tracked_ids.add(id(aggregate))
            self._tracked.append(aggregate)

    def publish_event(self, event: DomainEvent) -> None:
        """Buffer an event; it becomes visible only after commit."""
        self._require_begun()
        self._events.append(event)

    def _collect_events(self) -> list[DomainEvent]:
        events: list[DomainEvent] = []
        for aggregate in self._tracked:
            events.extend(aggregate.pull_events())
        events.extend(self._events)
        self._events.clear()
        return events

    def _publish(self, events: list[DomainEvent]) -> None:
        if self.event_bus is None:
            self.published_events = events
            return
        for event in events:
            try:
                self.event_bus.publish(event)
                self.published_events.append(event)
            except Exception as e:
                # Storage already committed; delivery is best-effort
                log.warning(f"UoW {self.id}: failed to publish {event.event_type} for {event.aggregate_id}: {e}")
