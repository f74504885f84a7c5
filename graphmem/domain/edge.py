"""Edge aggregate.

Identity is (user, source, target). Edges are directed; discovery may
produce a forward and a reverse edge independently.
"""

from dataclasses import dataclass, field
from datetime import datetime

from graphmem.domain.events import DomainEvent, EdgeCreated, EdgeDeleted, utcnow
from graphmem.domain.values import NodeID, UserID, Version, Weight
from graphmem.errors import ValidationError


@dataclass(eq=False)
class Edge:
    user_id: UserID
    source_id: NodeID
    target_id: NodeID
    weight: Weight
    version: Version
    created_at: datetime
    updated_at: datetime
    expected_version: Version | None = None
    _events: list[DomainEvent] = field(default_factory=list, repr=False)

    @classmethod
    def create(
        cls,
        user_id: UserID,
        source_id: NodeID,
        target_id: NodeID,
        weight: Weight,
        now: datetime | None = None,
    ) -> "Edge":
        if source_id == target_id:
            raise ValidationError(f"cannot connect node {source_id} to itself")
        now = now or utcnow()
        edge = cls(
            user_id=user_id,
            source_id=source_id,
            target_id=target_id,
            weight=weight,
            version=Version(1),
            created_at=now,
            updated_at=now,
        )
        edge._events.append(EdgeCreated(
            str(user_id),
            edge.edge_id,
            source_id=str(source_id),
            target_id=str(target_id),
            weight=weight.value,
        ))
        return edge

    @classmethod
    def reconstitute(
        cls,
        user_id: UserID,
        source_id: NodeID,
        target_id: NodeID,
        weight: Weight,
        version: Version,
        created_at: datetime,
        updated_at: datetime,
    ) -> "Edge":
        return cls(
            user_id=user_id,
            source_id=source_id,
            target_id=target_id,
            weight=weight,
            version=version,
            created_at=created_at,
            updated_at=updated_at,
            expected_version=version,
        )

    @property
    def edge_id(self) -> str:
        return f"{self.source_id}->{self.target_id}"

    @property
    def is_new(self) -> bool:
        return self.expected_version is None

    def touches(self, node_id: NodeID) -> bool:
        return node_id in (self.source_id, self.target_id)

    def reweight(self, weight: Weight, now: datetime | None = None) -> bool:
        if weight == self.weight:
            return False
        self.weight = weight
        self.updated_at = now or utcnow()
        if not self.is_new and self.version == self.expected_version:
            self.version = self.version.next()
        return True

    def mark_deleted(self) -> None:
        self._events.append(EdgeDeleted(
            str(self.user_id),
            self.edge_id,
            source_id=str(self.source_id),
            target_id=str(self.target_id),
        ))

    def mark_persisted(self) -> None:
        self.expected_version = self.version

    def pull_events(self) -> list[DomainEvent]:
        events, self._events = self._events, []
        return events
