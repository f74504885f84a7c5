"""Category command tests.

Tests:
- Create/update/delete with validation and versioning
- Membership assign/unassign and its guards
- Deleting a category unassigns its nodes, including ones assigned mid-delete
"""

import pytest

from graphmem.commands.models import (
    CategorizeNodeCommand,
    CreateCategoryCommand,
    CreateNodeCommand,
    DeleteCategoryCommand,
    UpdateCategoryCommand,
)
from graphmem.db import keys
from graphmem.db.category_repository import StoreCategoryRepository
from graphmem.domain.events import CategoryDeleted, CategoryUpdated, NodeCategorized, NodeUncategorized
from graphmem.domain.values import CategoryID, NodeID, UserID
from graphmem.errors import ConflictError, NotFoundError, ValidationError

USER = "user-1"
MISSING = "00000000-0000-4000-8000-000000000000"


@pytest.fixture
def category(category_handler):
    return category_handler.create_category(
        CreateCategoryCommand(user_id=USER, name="Databases", description="Storage notes", color="#00ff00")
    )


def members(store, category_id) -> set[str]:
    return {str(n) for n in StoreCategoryRepository(store).node_ids_in(UserID(USER), CategoryID(category_id))}


class TestCreateCategory:
    def test_create(self, category):
        assert category.name == "Databases"
        assert category.color == "#00FF00"
        assert category.version == 1

    @pytest.mark.parametrize("kwargs", [
        {"name": "  "},
        {"name": "x" * 101},
        {"name": "ok", "color": "green"},
    ])
    def test_invalid_input(self, category_handler, kwargs):
        with pytest.raises(ValidationError) as exc_info:
            category_handler.create_category(CreateCategoryCommand(user_id=USER, **kwargs))
        assert exc_info.value.step == "validate"


class TestUpdateCategory:
    def test_update_bumps_version(self, category_handler, category, bus):
        updated = category_handler.update_category(
            UpdateCategoryCommand(user_id=USER, category_id=category.category_id, name="Storage")
        )
        assert updated.name == "Storage"
        assert updated.description == "Storage notes"
        assert updated.version == 2
        assert len(bus.events_of(CategoryUpdated)) == 1

    def test_unchanged_is_noop(self, category_handler, category):
        same = category_handler.update_category(
            UpdateCategoryCommand(user_id=USER, category_id=category.category_id, name="Databases")
        )
        assert same.version == 1

    def test_expected_version_mismatch(self, category_handler, category):
        with pytest.raises(ConflictError):
            category_handler.update_category(UpdateCategoryCommand(
                user_id=USER, category_id=category.category_id, name="Storage", expected_version=3,
            ))

    def test_missing_category(self, category_handler):
        with pytest.raises(NotFoundError):
            category_handler.update_category(UpdateCategoryCommand(user_id=USER, category_id=MISSING, name="x"))


class TestMembership:
    def test_assign_and_unassign(self, store, category_handler, category, create_node, bus):
        node_id = create_node("Graph storage", "Single table design").node.node_id
        cmd = CategorizeNodeCommand(user_id=USER, category_id=category.category_id, node_id=node_id)

        assert category_handler.assign_node(cmd) is True
        assert members(store, category.category_id) == {node_id}
        assert [str(c) for c in StoreCategoryRepository(store).category_ids_for_node(UserID(USER), NodeID(node_id))] == [
            category.category_id
        ]

        category_handler.unassign_node(cmd)
        assert members(store, category.category_id) == set()
        assert len(bus.events_of(NodeCategorized)) == 1
        assert len(bus.events_of(NodeUncategorized)) == 1

    def test_assign_twice_is_idempotent(self, category_handler, category, create_node):
        node_id = create_node("Graph storage", "Single table design").node.node_id
        cmd = CategorizeNodeCommand(user_id=USER, category_id=category.category_id, node_id=node_id)
        assert category_handler.assign_node(cmd) is True
        assert category_handler.assign_node(cmd) is False

    def test_assign_missing_node(self, store, category_handler, category):
        with pytest.raises(NotFoundError):
            category_handler.assign_node(
                CategorizeNodeCommand(user_id=USER, category_id=category.category_id, node_id=MISSING)
            )
        assert members(store, category.category_id) == set()

    def test_assign_to_missing_category(self, category_handler, create_node):
        node_id = create_node("Graph storage", "Single table design").node.node_id
        with pytest.raises(NotFoundError):
            category_handler.assign_node(CategorizeNodeCommand(user_id=USER, category_id=MISSING, node_id=node_id))

    def test_unassign_non_member(self, category_handler, category, create_node):
        node_id = create_node("Graph storage", "Single table design").node.node_id
        with pytest.raises(NotFoundError):
            category_handler.unassign_node(
                CategorizeNodeCommand(user_id=USER, category_id=category.category_id, node_id=node_id)
            )


class TestDeleteCategory:
    def test_delete_unassigns_nodes(self, store, category_handler, category, create_node, bus):
        node_ids = [create_node(f"Note {i}", f"Body {i}").node.node_id for i in range(3)]
        for node_id in node_ids:
            category_handler.assign_node(
                CategorizeNodeCommand(user_id=USER, category_id=category.category_id, node_id=node_id)
            )

        result = category_handler.delete_category(DeleteCategoryCommand(user_id=USER, category_id=category.category_id))

        assert result.nodes_unassigned == 3
        assert members(store, category.category_id) == set()
        assert StoreCategoryRepository(store).find_by_id(UserID(USER), CategoryID(category.category_id)) is None
        for node_id in node_ids:
            assert StoreCategoryRepository(store).category_ids_for_node(UserID(USER), NodeID(node_id)) == []
        [event] = bus.events_of(CategoryDeleted)
        assert event.nodes_unassigned == 3

    def test_delete_missing(self, category_handler):
        with pytest.raises(NotFoundError):
            category_handler.delete_category(DeleteCategoryCommand(user_id=USER, category_id=MISSING))

    def test_membership_assigned_during_delete_is_removed(self, interfering_store, interfering_handlers, bus):
        """An assign that commits while the delete is in flight does not survive it."""
        nodes, categories = interfering_handlers
        node_id = nodes.create_node(
            CreateNodeCommand(user_id=USER, title="Graph storage", content="Single table design")
        ).node.node_id
        category = categories.create_category(CreateCategoryCommand(user_id=USER, name="Databases"))
        interfering_store.interfere.append(lambda: categories.assign_node(
            CategorizeNodeCommand(user_id=USER, category_id=category.category_id, node_id=node_id)
        ))

        result = categories.delete_category(DeleteCategoryCommand(user_id=USER, category_id=category.category_id))

        assert result.nodes_unassigned == 1
        assert members(interfering_store, category.category_id) == set()
        repo = StoreCategoryRepository(interfering_store)
        assert repo.category_ids_for_node(UserID(USER), NodeID(node_id)) == []
        assert len(bus.events_of(CategoryDeleted)) == 1

    def test_assign_refreshes_link_stamps(self, store, category_handler, category, create_node):
        node_id = create_node("Graph storage", "Single table design").node.node_id
        node_key = keys.node_key(USER, node_id)
        category_key = keys.category_key(USER, category.category_id)
        before = [store.get(node_key)[keys.LINK_STAMP], store.get(category_key)[keys.LINK_STAMP]]

        category_handler.assign_node(
            CategorizeNodeCommand(user_id=USER, category_id=category.category_id, node_id=node_id)
        )

        after = [store.get(node_key)[keys.LINK_STAMP], store.get(category_key)[keys.LINK_STAMP]]
        assert after[0] != before[0] and after[1] != before[1]
        assert store.get(category_key)["Version"] == category.version
