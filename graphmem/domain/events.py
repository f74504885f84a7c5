"""Domain events emitted by GraphMem aggregates.

Events are buffered by the unit of work and published to the event bus
only after the store transaction commits.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DomainEvent:
    """Base event.

    Attributes:
        user_id: Owner of the affected aggregate
        aggregate_id: ID of the affected aggregate
    """

    user_id: str
    aggregate_id: str
    event_id: str = field(default_factory=lambda: str(uuid4()), kw_only=True)
    occurred_at: datetime = field(default_factory=utcnow, kw_only=True)

    @property
    def event_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON serialization."""
        d = asdict(self)
        d["event_type"] = self.event_type
        d["occurred_at"] = self.occurred_at.isoformat()
        return d


@dataclass(frozen=True)
class NodeCreated(DomainEvent):
    title: str = ""
    keywords: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class NodeContentUpdated(DomainEvent):
    version: int = 1
    keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class NodeTagsUpdated(DomainEvent):
    version: int = 1
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class NodeArchived(DomainEvent):
    version: int = 1


@dataclass(frozen=True)
class NodeDeleted(DomainEvent):
    edges_removed: int = 0


@dataclass(frozen=True)
class EdgeCreated(DomainEvent):
    source_id: str = ""
    target_id: str = ""
    weight: float = 0.0


@dataclass(frozen=True)
class EdgeDeleted(DomainEvent):
    source_id: str = ""
    target_id: str = ""


@dataclass(frozen=True)
class BulkNodesDeleted(DomainEvent):
    deleted_ids: tuple[str, ...] = ()
    failed_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class CategoryCreated(DomainEvent):
    name: str = ""


@dataclass(frozen=True)
class CategoryUpdated(DomainEvent):
    version: int = 1


@dataclass(frozen=True)
class CategoryDeleted(DomainEvent):
    nodes_unassigned: int = 0


@dataclass(frozen=True)
class NodeCategorized(DomainEvent):
    category_id: str = ""


@dataclass(frozen=True)
class NodeUncategorized(DomainEvent):
    category_id: str = ""
