"""Node persistence.

Reader and writer ports for nodes plus the store-backed adapter that
implements both. A node occupies its own partition
(``USER#<u>#NODE#<n>``): the metadata item, one item per keyword, its
category memberships and its outgoing edges all share that partition key.

Write conditions:
- New node: ``attribute_not_exists(PK)`` on the metadata item
- Existing node: ``Version == expected_version`` on the metadata item
- Delete: ``Version`` and ``LinkStamp`` as read, so an edge or membership
  committed after the read fails the delete
"""

from typing import Any, Iterable, Protocol

from graphmem.db import keys
from graphmem.db.base import StoreRepository, from_iso, to_iso
from graphmem.db.pagination import Page, clamp_page_size, decode_cursor, encode_cursor
from graphmem.domain.node import Node
from graphmem.domain.values import (
    DEFAULT_MAX_CONTENT_LENGTH,
    DEFAULT_MAX_TAGS,
    DEFAULT_MAX_TITLE_LENGTH,
    Content,
    NodeID,
    Tags,
    Title,
    UserID,
    Version,
)
from graphmem.errors import NotFoundError
from graphmem.log_config import get_logger
from graphmem.store.protocol import (
    GUARD_ABSENT,
    GUARD_VERSION,
    And,
    AttributeEquals,
    AttributeNotExists,
    Delete,
    Key,
    Put,
)

log = get_logger("store.nodes")


class NodeReader(Protocol):
    def find_by_id(self, user_id: UserID, node_id: NodeID) -> Node | None:
        ...

    def get_by_id(self, user_id: UserID, node_id: NodeID) -> Node:
        ...

    def exists(self, user_id: UserID, node_id: NodeID) -> bool:
        ...

    def list_by_user(self, user_id: UserID, limit: int | None = None, cursor: str | None = None) -> Page[Node]:
        ...

    def all_for_user(self, user_id: UserID) -> list[Node]:
        ...

    def find_by_keyword(self, user_id: UserID, keyword: str) -> list[NodeID]:
        ...

    def count_by_user(self, user_id: UserID) -> int:
        ...


class NodeWriter(Protocol):
    def save(self, node: Node) -> None:
        ...

    def delete(self, node: Node) -> int:
        ...


def node_to_item(node: Node) -> dict[str, Any]:
    return {
        "PK": keys.node_pk(node.user_id, node.id),
        "SK": keys.METADATA_SK,
        "GSI1PK": keys.user_nodes_gsi1(node.user_id),
        "GSI1SK": f"{keys.NODE_PREFIX}{node.id}",
        "EntityType": keys.ENTITY_NODE,
        "NodeID": str(node.id),
        "UserID": str(node.user_id),
        "Title": node.title.value,
        "Content": node.content.value,
        "Tags": node.tags.as_list(),
        "Keywords": sorted(node.keywords),
        "Version": node.version.value,
        "IsArchived": node.archived,
        keys.LINK_STAMP: node.link_stamp,
        "CreatedAt": to_iso(node.created_at),
        "UpdatedAt": to_iso(node.updated_at),
    }


def node_from_item(item: dict[str, Any]) -> Node:
    """Rebuild a Node from its metadata item.

    Stored values were validated on the way in, so limits are relaxed to
    whatever the item holds (configured limits may have shrunk since).
    """
    title = item["Title"]
    content = item["Content"]
    tags = item.get("Tags") or []
    return Node.reconstitute(
        node_id=NodeID(item["NodeID"]),
        user_id=UserID(item["UserID"]),
        title=Title(title, max_length=max(DEFAULT_MAX_TITLE_LENGTH, len(title.strip()))),
        content=Content(content, max_length=max(DEFAULT_MAX_CONTENT_LENGTH, len(content))),
        tags=Tags.of(tags, max_tags=max(DEFAULT_MAX_TAGS, len(tags))),
        version=Version(int(item["Version"])),
        created_at=from_iso(item["CreatedAt"]),
        updated_at=from_iso(item["UpdatedAt"]),
        archived=bool(item.get("IsArchived", False)),
        link_stamp=item.get(keys.LINK_STAMP),
    )


def keyword_item(node: Node, keyword: str) -> dict[str, Any]:
    key = keys.keyword_key(node.user_id, node.id, keyword)
    return {
        "PK": key.pk,
        "SK": key.sk,
        "GSI1PK": keys.keyword_gsi1(node.user_id, keyword),
        "GSI1SK": f"{keys.NODE_PREFIX}{node.id}",
        "EntityType": keys.ENTITY_KEYWORD,
        "NodeID": str(node.id),
        "UserID": str(node.user_id),
        "Keyword": keyword,
    }


class StoreNodeRepository(StoreRepository):
    """NodeReader + NodeWriter over the single-table store."""

    # =========================================================================
    # Reads
    # =========================================================================

    def find_by_id(self, user_id: UserID, node_id: NodeID) -> Node | None:
        item = self._get(keys.node_key(user_id, node_id))
        return node_from_item(item) if item else None

    def get_by_id(self, user_id: UserID, node_id: NodeID) -> Node:
        """Load a node or raise NotFoundError."""
        node = self.find_by_id(user_id, node_id)
        if node is None:
            raise NotFoundError("node", str(node_id))
        return node

    def exists(self, user_id: UserID, node_id: NodeID) -> bool:
        return self._get(keys.node_key(user_id, node_id)) is not None

    def list_by_user(self, user_id: UserID, limit: int | None = None, cursor: str | None = None) -> Page[Node]:
        page = self.store.query(
            keys.user_nodes_gsi1(user_id),
            sort_key_prefix=keys.NODE_PREFIX,
            index_name="GSI1",
            limit=clamp_page_size(limit),
            start_key=decode_cursor(cursor),
        )
        return Page([node_from_item(it) for it in page.items], encode_cursor(page.last_key))

    def all_for_user(self, user_id: UserID) -> list[Node]:
        """Every node of the user (the analyzer corpus)."""
        items = self._query_all(keys.user_nodes_gsi1(user_id), keys.NODE_PREFIX, "GSI1")
        return [node_from_item(it) for it in items]

    def find_many(self, user_id: UserID, node_ids: Iterable[NodeID]) -> list[Node]:
        """Load the given nodes, silently skipping missing ones."""
        nodes = []
        for node_id in node_ids:
            node = self.find_by_id(user_id, node_id)
            if node is not None:
                nodes.append(node)
        return nodes

    def find_by_keyword(self, user_id: UserID, keyword: str) -> list[NodeID]:
        items = self._query_all(keys.keyword_gsi1(user_id, keyword.lower()), keys.NODE_PREFIX, "GSI1")
        return [NodeID(it["NodeID"]) for it in items]

    def count_by_user(self, user_id: UserID) -> int:
        return sum(1 for _ in self._query_all(keys.user_nodes_gsi1(user_id), keys.NODE_PREFIX, "GSI1"))

    def partition_items(self, user_id: UserID, node_id: NodeID) -> list[dict[str, Any]]:
        """Every item stored under the node's partition key."""
        return list(self._query_all(keys.node_pk(user_id, node_id)))

    # =========================================================================
    # Writes
    # =========================================================================

    def save(self, node: Node) -> None:
        """Register metadata and keyword writes for a new or changed node.

        Unchanged nodes register nothing. Keyword items are diffed against the
        keywords the node was loaded with.
        Every write stores a fresh link stamp.
        """
        if not node.is_dirty:
            return

        if node.is_new:
            condition = AttributeNotExists("PK")
            guard = GUARD_ABSENT
            added, removed = set(node.keywords), set()
        else:
            condition = AttributeEquals("Version", node.expected_version.value)
            guard = GUARD_VERSION
            added = set(node.keywords) - set(node.original_keywords)
            removed = set(node.original_keywords) - set(node.keywords)

        node.link_stamp = keys.new_link_stamp()
        self._add(Put(node_to_item(node), condition=condition, guard=guard, resource=("node", str(node.id))))
        for keyword in sorted(added):
            self._add(Put(keyword_item(node, keyword)))
        for keyword in sorted(removed):
            self._add(Delete(keys.keyword_key(node.user_id, node.id, keyword)))

        self.sink.track(node)
        log.trace(f"Registered save of node {node.id} (+{len(added)}/-{len(removed)} keywords)")

    def delete(self, node: Node) -> int:
        """Register deletion of the node's partition except its outgoing edges.

        Outgoing and incoming edges belong to the edge writer so that each
        edge key is deleted exactly once.

        The metadata delete is conditioned on the version and link stamp the
        node was loaded with, so edges and memberships committed since then
        make it fail with a conflict instead of surviving the node.

        Returns:
            Number of keyword/membership items removed alongside the metadata
        """
        self._add(Delete(
            keys.node_key(node.user_id, node.id),
            condition=And(
                AttributeEquals("Version", (node.expected_version or node.version).value),
                AttributeEquals(keys.LINK_STAMP, node.link_stamp),
            ),
            guard=GUARD_VERSION,
            resource=("node", str(node.id)),
        ))
        removed = 0
        for item in self.partition_items(node.user_id, node.id):
            sk = item["SK"]
            if sk == keys.METADATA_SK or sk.startswith(keys.EDGE_PREFIX):
                continue
            self._add(Delete(Key(item["PK"], sk)))
            removed += 1
        log.trace(f"Registered delete of node {node.id} ({removed} dependent items)")
        return removed
