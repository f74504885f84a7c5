"""Category persistence and node membership.

Categories have their own partition (``USER#<u>#CATEGORY#<c>``). A
membership item sits in the node's partition (``SK = CATEGORY#<c>``) and is
indexed on GSI2 by category, so both directions can be listed.

Writing a membership replaces the link stamp of both the node and the
category; deleting either is conditioned on the stamp it read, so a
membership committed after that read is never left behind.
"""

from typing import Any, Protocol

from graphmem.db import keys
from graphmem.db.base import StoreRepository, from_iso, to_iso
from graphmem.db.pagination import Page, clamp_page_size, decode_cursor, encode_cursor
from graphmem.domain.category import Category
from graphmem.domain.events import NodeCategorized, NodeUncategorized, utcnow
from graphmem.domain.values import CategoryID, NodeID, UserID, Version
from graphmem.errors import NotFoundError
from graphmem.log_config import get_logger
from graphmem.store.protocol import (
    GUARD_ABSENT,
    GUARD_EXISTS,
    GUARD_VERSION,
    And,
    AttributeEquals,
    AttributeExists,
    AttributeNotExists,
    Delete,
    Key,
    Put,
)

log = get_logger("store.categories")


class CategoryReader(Protocol):
    def find_by_id(self, user_id: UserID, category_id: CategoryID) -> Category | None:
        ...

    def get_by_id(self, user_id: UserID, category_id: CategoryID) -> Category:
        ...

    def list_by_user(self, user_id: UserID, limit: int | None = None, cursor: str | None = None) -> Page[Category]:
        ...

    def node_ids_in(self, user_id: UserID, category_id: CategoryID) -> list[NodeID]:
        ...

    def category_ids_for_node(self, user_id: UserID, node_id: NodeID) -> list[CategoryID]:
        ...


class CategoryWriter(Protocol):
    def save(self, category: Category) -> None:
        ...

    def delete(self, category: Category) -> int:
        ...

    def assign(self, user_id: UserID, category_id: CategoryID, node_id: NodeID) -> None:
        ...

    def unassign(self, user_id: UserID, category_id: CategoryID, node_id: NodeID) -> None:
        ...


def category_to_item(category: Category) -> dict[str, Any]:
    key = keys.category_key(category.user_id, category.id)
    return {
        "PK": key.pk,
        "SK": key.sk,
        "GSI1PK": keys.user_categories_gsi1(category.user_id),
        "GSI1SK": f"{keys.CATEGORY_PREFIX}{category.id}",
        "EntityType": keys.ENTITY_CATEGORY,
        "CategoryID": str(category.id),
        "UserID": str(category.user_id),
        "Name": category.name,
        "Description": category.description,
        "Color": category.color,
        "Version": category.version.value,
        keys.LINK_STAMP: category.link_stamp,
        "CreatedAt": to_iso(category.created_at),
        "UpdatedAt": to_iso(category.updated_at),
    }


def category_from_item(item: dict[str, Any]) -> Category:
    return Category.reconstitute(
        category_id=CategoryID(item["CategoryID"]),
        user_id=UserID(item["UserID"]),
        name=item["Name"],
        description=item.get("Description") or "",
        color=item.get("Color"),
        version=Version(int(item["Version"])),
        created_at=from_iso(item["CreatedAt"]),
        updated_at=from_iso(item["UpdatedAt"]),
        link_stamp=item.get(keys.LINK_STAMP),
    )


def membership_item(user_id: UserID, category_id: CategoryID, node_id: NodeID) -> dict[str, Any]:
    key = keys.membership_key(user_id, node_id, category_id)
    return {
        "PK": key.pk,
        "SK": key.sk,
        "GSI2PK": keys.category_nodes_gsi2(user_id, category_id),
        "GSI2SK": f"{keys.NODE_PREFIX}{node_id}",
        "EntityType": keys.ENTITY_MEMBERSHIP,
        "UserID": str(user_id),
        "NodeID": str(node_id),
        "CategoryID": str(category_id),
        "CreatedAt": to_iso(utcnow()),
    }


class StoreCategoryRepository(StoreRepository):
    """CategoryReader + CategoryWriter over the single-table store."""

    # =========================================================================
    # Reads
    # =========================================================================

    def find_by_id(self, user_id: UserID, category_id: CategoryID) -> Category | None:
        item = self._get(keys.category_key(user_id, category_id))
        return category_from_item(item) if item else None

    def get_by_id(self, user_id: UserID, category_id: CategoryID) -> Category:
        category = self.find_by_id(user_id, category_id)
        if category is None:
            raise NotFoundError("category", str(category_id))
        return category

    def list_by_user(self, user_id: UserID, limit: int | None = None, cursor: str | None = None) -> Page[Category]:
        page = self.store.query(
            keys.user_categories_gsi1(user_id),
            sort_key_prefix=keys.CATEGORY_PREFIX,
            index_name="GSI1",
            limit=clamp_page_size(limit),
            start_key=decode_cursor(cursor),
        )
        return Page([category_from_item(it) for it in page.items], encode_cursor(page.last_key))

    def count_by_user(self, user_id: UserID) -> int:
        return sum(1 for _ in self._query_all(keys.user_categories_gsi1(user_id), keys.CATEGORY_PREFIX, "GSI1"))

    def node_ids_in(self, user_id: UserID, category_id: CategoryID) -> list[NodeID]:
        items = self._query_all(keys.category_nodes_gsi2(user_id, category_id), keys.NODE_PREFIX, "GSI2")
        return [NodeID(it["NodeID"]) for it in items]

    def category_ids_for_node(self, user_id: UserID, node_id: NodeID) -> list[CategoryID]:
        items = self._query_all(keys.node_pk(user_id, node_id), keys.CATEGORY_PREFIX)
        return [CategoryID(it["CategoryID"]) for it in items]

    def is_member(self, user_id: UserID, category_id: CategoryID, node_id: NodeID) -> bool:
        return self._get(keys.membership_key(user_id, node_id, category_id)) is not None

    # =========================================================================
    # Writes
    # =========================================================================

    def save(self, category: Category) -> None:
        if category.is_new:
            condition, guard = AttributeNotExists("PK"), GUARD_ABSENT
        else:
            condition, guard = AttributeEquals("Version", category.expected_version.value), GUARD_VERSION
        category.link_stamp = keys.new_link_stamp()
        self._add(Put(
            category_to_item(category),
            condition=condition,
            guard=guard,
            resource=("category", str(category.id)),
        ))
        self.sink.track(category)

    def delete(self, category: Category) -> int:
        """Register deletion of the category and all of its memberships.

        Returns:
            Number of nodes unassigned
        """
        self._add(Delete(
            keys.category_key(category.user_id, category.id),
            condition=And(
                AttributeEquals("Version", (category.expected_version or category.version).value),
                AttributeEquals(keys.LINK_STAMP, category.link_stamp),
            ),
            guard=GUARD_VERSION,
            resource=("category", str(category.id)),
        ))
        node_ids = self.node_ids_in(category.user_id, category.id)
        for node_id in node_ids:
            self._add(Delete(keys.membership_key(category.user_id, node_id, category.id)))
        return len(node_ids)

    def assign(self, user_id: UserID, category_id: CategoryID, node_id: NodeID) -> None:
        """Register a membership; both node and category must exist at commit."""
        self._add(Put(membership_item(user_id, category_id, node_id)))
        self._stamp_link(keys.node_key(user_id, node_id), ("node", str(node_id)))
        self._stamp_link(keys.category_key(user_id, category_id), ("category", str(category_id)))
        self.sink.publish_event(NodeCategorized(str(user_id), str(node_id), category_id=str(category_id)))

    def unassign(self, user_id: UserID, category_id: CategoryID, node_id: NodeID) -> None:
        key: Key = keys.membership_key(user_id, node_id, category_id)
        self._add(Delete(
            key,
            condition=AttributeExists("PK"),
            guard=GUARD_EXISTS,
            resource=("membership", f"{node_id}@{category_id}"),
        ))
        self.sink.publish_event(NodeUncategorized(str(user_id), str(node_id), category_id=str(category_id)))
