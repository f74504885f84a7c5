"""Edge persistence.

Edges live in the source node's partition (``SK = EDGE#RELATES_TO#<tgt>``).
GSI1 lists every edge of a user; GSI2 lists the incoming edges of a node.

Every edge write also requires both endpoint nodes to exist in the same
transaction and replaces their link stamps (see ``StoreRepository._stamp_link``),
unless the unit of work already writes that node.
"""

from typing import Any, Protocol

from graphmem.db import keys
from graphmem.db.base import StoreRepository, from_iso, to_iso
from graphmem.db.pagination import Page, clamp_page_size, decode_cursor, encode_cursor
from graphmem.domain.edge import Edge
from graphmem.domain.values import NodeID, UserID, Version, Weight
from graphmem.errors import NotFoundError
from graphmem.log_config import get_logger
from graphmem.store.protocol import (
    GUARD_ABSENT,
    GUARD_EXISTS,
    GUARD_VERSION,
    AttributeEquals,
    AttributeExists,
    AttributeNotExists,
    Delete,
    Put,
)

log = get_logger("store.edges")


class EdgeReader(Protocol):
    def find(self, user_id: UserID, source_id: NodeID, target_id: NodeID) -> Edge | None:
        ...

    def outgoing(self, user_id: UserID, node_id: NodeID) -> list[Edge]:
        ...

    def incoming(self, user_id: UserID, node_id: NodeID) -> list[Edge]:
        ...

    def list_by_user(self, user_id: UserID, limit: int | None = None, cursor: str | None = None) -> Page[Edge]:
        ...

    def all_for_user(self, user_id: UserID) -> list[Edge]:
        ...


class EdgeWriter(Protocol):
    def save(self, edge: Edge) -> None:
        ...

    def delete(self, edge: Edge) -> None:
        ...

    def delete_all_for_node(self, user_id: UserID, node_id: NodeID) -> list[Edge]:
        ...

    def replace_outgoing(self, user_id: UserID, node_id: NodeID, edges: list[Edge]) -> tuple[int, int]:
        ...


def edge_to_item(edge: Edge) -> dict[str, Any]:
    key = keys.edge_key(edge.user_id, edge.source_id, edge.target_id)
    return {
        "PK": key.pk,
        "SK": key.sk,
        "GSI1PK": keys.user_edges_gsi1(edge.user_id),
        "GSI1SK": keys.edge_gsi1_sk(edge.source_id, edge.target_id),
        "GSI2PK": keys.edge_target_gsi2(edge.user_id, edge.target_id),
        "GSI2SK": f"{keys.SOURCE_PREFIX}{edge.source_id}",
        "EntityType": keys.ENTITY_EDGE,
        "UserID": str(edge.user_id),
        "SourceID": str(edge.source_id),
        "TargetID": str(edge.target_id),
        "Weight": edge.weight.value,
        "Version": edge.version.value,
        "CreatedAt": to_iso(edge.created_at),
        "UpdatedAt": to_iso(edge.updated_at),
    }


def edge_from_item(item: dict[str, Any]) -> Edge:
    return Edge.reconstitute(
        user_id=UserID(item["UserID"]),
        source_id=NodeID(item["SourceID"]),
        target_id=NodeID(item["TargetID"]),
        weight=Weight(item["Weight"]),
        version=Version(int(item.get("Version", 1))),
        created_at=from_iso(item["CreatedAt"]),
        updated_at=from_iso(item["UpdatedAt"]),
    )


class StoreEdgeRepository(StoreRepository):
    """EdgeReader + EdgeWriter over the single-table store."""

    # =========================================================================
    # Reads
    # =========================================================================

    def find(self, user_id: UserID, source_id: NodeID, target_id: NodeID) -> Edge | None:
        item = self._get(keys.edge_key(user_id, source_id, target_id))
        return edge_from_item(item) if item else None

    def get(self, user_id: UserID, source_id: NodeID, target_id: NodeID) -> Edge:
        edge = self.find(user_id, source_id, target_id)
        if edge is None:
            raise NotFoundError("edge", f"{source_id}->{target_id}")
        return edge

    def outgoing(self, user_id: UserID, node_id: NodeID) -> list[Edge]:
        items = self._query_all(keys.node_pk(user_id, node_id), keys.EDGE_SK_PREFIX)
        return [edge_from_item(it) for it in items]

    def incoming(self, user_id: UserID, node_id: NodeID) -> list[Edge]:
        items = self._query_all(keys.edge_target_gsi2(user_id, node_id), keys.SOURCE_PREFIX, "GSI2")
        return [edge_from_item(it) for it in items]

    def list_by_user(self, user_id: UserID, limit: int | None = None, cursor: str | None = None) -> Page[Edge]:
        page = self.store.query(
            keys.user_edges_gsi1(user_id),
            sort_key_prefix=keys.EDGE_PREFIX,
            index_name="GSI1",
            limit=clamp_page_size(limit),
            start_key=decode_cursor(cursor),
        )
        return Page([edge_from_item(it) for it in page.items], encode_cursor(page.last_key))

    def all_for_user(self, user_id: UserID) -> list[Edge]:
        items = self._query_all(keys.user_edges_gsi1(user_id), keys.EDGE_PREFIX, "GSI1")
        return [edge_from_item(it) for it in items]

    def count_by_user(self, user_id: UserID) -> int:
        return sum(1 for _ in self._query_all(keys.user_edges_gsi1(user_id), keys.EDGE_PREFIX, "GSI1"))

    # =========================================================================
    # Writes
    # =========================================================================

    def _stamp_endpoint(self, user_id: UserID, node_id: NodeID) -> None:
        self._stamp_link(keys.node_key(user_id, node_id), ("node", str(node_id)))

    def save(self, edge: Edge) -> None:
        """Register an edge write guarded by endpoint existence and stamp updates."""
        if edge.is_new:
            condition, guard = AttributeNotExists("PK"), GUARD_ABSENT
        else:
            condition, guard = AttributeEquals("Version", edge.expected_version.value), GUARD_VERSION

        self._add(Put(edge_to_item(edge), condition=condition, guard=guard, resource=("edge", edge.edge_id)))
        self._stamp_endpoint(edge.user_id, edge.source_id)
        self._stamp_endpoint(edge.user_id, edge.target_id)
        self.sink.track(edge)

    def delete(self, edge: Edge) -> None:
        """Register deletion of one existing edge."""
        self._add(Delete(
            keys.edge_key(edge.user_id, edge.source_id, edge.target_id),
            condition=AttributeExists("PK"),
            guard=GUARD_EXISTS,
            resource=("edge", edge.edge_id),
        ))
        edge.mark_deleted()
        self.sink.track(edge)

    def delete_all_for_node(self, user_id: UserID, node_id: NodeID) -> list[Edge]:
        """Register deletion of every outgoing and incoming edge of a node.

        Returns:
            The edges scheduled for deletion
        """
        edges = self.outgoing(user_id, node_id) + self.incoming(user_id, node_id)
        for edge in edges:
            self._add(Delete(keys.edge_key(user_id, edge.source_id, edge.target_id)))
            edge.mark_deleted()
            self.sink.track(edge)
        log.trace(f"Registered delete of {len(edges)} edges touching node {node_id}")
        return edges

    def replace_outgoing(self, user_id: UserID, node_id: NodeID, edges: list[Edge]) -> tuple[int, int]:
        """Make ``edges`` the node's complete set of outgoing edges.

        Existing edges to the same target are reweighted in place, stale ones
        are deleted, and new ones are created.

        Returns:
            (edges written, edges deleted)
        """
        current = {str(e.target_id): e for e in self.outgoing(user_id, node_id)}
        wanted = {str(e.target_id): e for e in edges}

        written = deleted = 0
        for target, stale in current.items():
            if target not in wanted:
                self.delete(stale)
                deleted += 1
        for target, edge in wanted.items():
            existing = current.get(target)
            if existing is None:
                self.save(edge)
                written += 1
            elif existing.reweight(edge.weight):
                self.save(existing)
                written += 1
        return written, deleted
