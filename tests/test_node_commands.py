"""Node command handler tests.

Tests:
- create_node connects to similar nodes and publishes events
- update_node re-derives keywords and refreshes outgoing edges
- archive_node freezes a node
- delete_node cascades atomically (keywords, memberships, both edge directions)
- Links committed while a delete is in flight are deleted with the node or abort it
- bulk_create_nodes / bulk_delete_nodes partial success
- connect_nodes / delete_edge
- Errors keep their kind and carry the failing step
"""

import pytest

from graphmem.commands.models import (
    ArchiveNodeCommand,
    BulkCreateNodesCommand,
    BulkDeleteNodesCommand,
    CategorizeNodeCommand,
    ConnectNodesCommand,
    CreateCategoryCommand,
    CreateNodeCommand,
    DeleteEdgeCommand,
    DeleteNodeCommand,
    UpdateNodeCommand,
    parse_command,
)
from graphmem.context import RequestContext
from graphmem.db import keys
from graphmem.db.category_repository import StoreCategoryRepository
from graphmem.db.edge_repository import StoreEdgeRepository
from graphmem.db.node_repository import StoreNodeRepository
from graphmem.domain.events import (
    BulkNodesDeleted,
    EdgeCreated,
    EdgeDeleted,
    NodeArchived,
    NodeCreated,
    NodeDeleted,
)
from graphmem.domain.values import CategoryID, NodeID, UserID
from graphmem.errors import (
    ConflictError,
    NotFoundError,
    OperationCancelledError,
    RetryExhaustedError,
    ValidationError,
)
from graphmem.store.protocol import Key

USER = "user-1"
MISSING = "00000000-0000-4000-8000-000000000000"


def node_ids(store) -> set[str]:
    return {str(n.id) for n in StoreNodeRepository(store).all_for_user(UserID(USER))}


def edge_pairs(store) -> set[tuple[str, str]]:
    return {
        (str(e.source_id), str(e.target_id))
        for e in StoreEdgeRepository(store).all_for_user(UserID(USER))
    }


class TestParseCommand:
    def test_valid_input(self):
        cmd = parse_command(CreateNodeCommand, {"user_id": USER, "title": "T", "content": "C"})
        assert cmd.tags == []

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_command(CreateNodeCommand, {"user_id": USER, "title": "T", "content": "C", "color": "red"})
        assert "color" in str(exc_info.value)

    def test_missing_field_rejected(self):
        with pytest.raises(ValidationError):
            parse_command(CreateNodeCommand, {"user_id": USER, "title": "T"})

    def test_bulk_bounds(self):
        with pytest.raises(ValidationError):
            parse_command(BulkDeleteNodesCommand, {"user_id": USER, "node_ids": []})
        with pytest.raises(ValidationError):
            parse_command(BulkDeleteNodesCommand, {"user_id": USER, "node_ids": [MISSING] * 101})


class TestCreateNode:
    def test_creates_node_without_connections(self, store, create_node):
        result = create_node("Graph storage", "Single table design", tags=["DB"])
        assert result.node.version == 1
        assert result.node.tags == ["db"]
        assert result.edges == []
        assert node_ids(store) == {result.node.node_id}

    def test_connects_to_similar_nodes(self, store, create_node):
        first = create_node("Graph storage", "Single table design")
        unrelated = create_node("Cooking", "Pasta recipe")
        second = create_node("Graph storage", "Single table layout")

        assert [e.target_id for e in second.edges] == [first.node.node_id]
        assert second.edges[0].weight == pytest.approx(4 / 6)
        assert edge_pairs(store) == {(second.node.node_id, first.node.node_id)}
        assert unrelated.edges == []

    def test_publishes_events_after_commit(self, bus, create_node):
        create_node("Graph storage", "Single table design")
        create_node("Graph storage", "Single table layout")
        assert len(bus.events_of(NodeCreated)) == 2
        assert len(bus.events_of(EdgeCreated)) == 1

    def test_validation_error_carries_step(self, create_node):
        with pytest.raises(ValidationError) as exc_info:
            create_node("   ", "Body")
        assert exc_info.value.step == "validate"

    def test_configured_limits_apply(self, create_node, config):
        with pytest.raises(ValidationError):
            create_node("x" * (config.max_title_length + 1), "Body")
        with pytest.raises(ValidationError):
            create_node("Title", "Body", tags=[f"t{i}" for i in range(config.max_tags_per_node + 1)])

    def test_cancelled_request_writes_nothing(self, store, node_handler):
        ctx = RequestContext()
        ctx.cancel()
        with pytest.raises(OperationCancelledError):
            node_handler.create_node(CreateNodeCommand(user_id=USER, title="T", content="Body"), ctx)
        assert node_ids(store) == set()


class TestUpdateNode:
    def test_content_update_bumps_version(self, node_handler, create_node):
        node_id = create_node("Graph storage", "Single table design").node.node_id
        result = node_handler.update_node(UpdateNodeCommand(user_id=USER, node_id=node_id, content="Cursor paging"))
        assert result.changed
        assert result.node.version == 2
        assert "cursor" in result.node.keywords
        assert "design" not in result.node.keywords

    def test_no_change_is_noop(self, node_handler, create_node):
        node = create_node("Graph storage", "Single table design").node
        result = node_handler.update_node(UpdateNodeCommand(user_id=USER, node_id=node.node_id, title=node.title))
        assert not result.changed
        assert result.node.version == 1

    def test_expected_version_mismatch(self, node_handler, create_node):
        node_id = create_node("Graph storage", "Single table design").node.node_id
        with pytest.raises(ConflictError) as exc_info:
            node_handler.update_node(
                UpdateNodeCommand(user_id=USER, node_id=node_id, content="New body", expected_version=7)
            )
        assert exc_info.value.step == "check version"

    def test_missing_node(self, node_handler):
        with pytest.raises(NotFoundError) as exc_info:
            node_handler.update_node(UpdateNodeCommand(user_id=USER, node_id=MISSING, content="x"))
        assert exc_info.value.step == "load node"

    def test_keyword_change_replaces_outgoing_edges(self, store, node_handler, create_node):
        graph = create_node("Graph storage", "Single table design").node
        cooking = create_node("Cooking pasta", "Tomato sauce recipe").node
        moving = create_node("Graph storage", "Single table layout")
        assert [e.target_id for e in moving.edges] == [graph.node_id]

        result = node_handler.update_node(UpdateNodeCommand(
            user_id=USER, node_id=moving.node.node_id, title="Cooking pasta", content="Tomato sauce ideas",
        ))

        assert result.connections_refreshed
        assert (result.edges_written, result.edges_removed) == (1, 1)
        assert edge_pairs(store) == {(moving.node.node_id, cooking.node_id)}

    def test_tag_only_update_keeps_edges(self, store, node_handler, create_node):
        create_node("Graph storage", "Single table design")
        moving = create_node("Graph storage", "Single table layout")
        before = edge_pairs(store)

        result = node_handler.update_node(UpdateNodeCommand(user_id=USER, node_id=moving.node.node_id, tags=["x"]))
        assert result.changed
        assert not result.connections_refreshed
        assert edge_pairs(store) == before


class TestArchiveNode:
    def test_archive_freezes_node(self, queries, node_handler, create_node, bus):
        node_id = create_node("Graph storage", "Single table design").node.node_id

        result = node_handler.archive_node(ArchiveNodeCommand(user_id=USER, node_id=node_id))
        assert result.changed
        assert result.node.archived
        assert result.node.version == 2
        assert len(bus.events_of(NodeArchived)) == 1
        assert queries.get_node(USER, node_id).archived

        with pytest.raises(ValidationError) as exc_info:
            node_handler.update_node(UpdateNodeCommand(user_id=USER, node_id=node_id, content="New body"))
        assert exc_info.value.step == "apply changes"

    def test_archive_twice_is_noop(self, node_handler, create_node):
        node_id = create_node("Graph storage", "Single table design").node.node_id
        node_handler.archive_node(ArchiveNodeCommand(user_id=USER, node_id=node_id))
        again = node_handler.archive_node(ArchiveNodeCommand(user_id=USER, node_id=node_id))
        assert not again.changed
        assert again.node.version == 2

    def test_archive_keeps_edges(self, store, node_handler, create_node):
        first = create_node("Graph storage", "Single table design").node.node_id
        second = create_node("Graph storage", "Single table layout").node.node_id
        node_handler.archive_node(ArchiveNodeCommand(user_id=USER, node_id=first))
        assert edge_pairs(store) == {(second, first)}

    def test_expected_version_mismatch(self, node_handler, create_node):
        node_id = create_node("Graph storage", "Single table design").node.node_id
        with pytest.raises(ConflictError):
            node_handler.archive_node(ArchiveNodeCommand(user_id=USER, node_id=node_id, expected_version=3))

    def test_missing_node(self, node_handler):
        with pytest.raises(NotFoundError):
            node_handler.archive_node(ArchiveNodeCommand(user_id=USER, node_id=MISSING))


class TestDeleteNode:
    def test_cascade_removes_everything(self, store, node_handler, category_handler, create_node, bus):
        """Node, keywords, memberships and edges in both directions go in one commit."""
        hub = create_node("Graph storage", "Single table design").node
        inbound = create_node("Graph storage", "Single table layout")
        category = category_handler.create_category(CreateCategoryCommand(user_id=USER, name="Databases"))
        category_handler.assign_node(CategorizeNodeCommand(
            user_id=USER, category_id=category.category_id, node_id=hub.node_id,
        ))
        node_handler.connect_nodes(ConnectNodesCommand(user_id=USER, source_id=hub.node_id, target_ids=[inbound.node.node_id]))
        assert len(edge_pairs(store)) == 2

        result = node_handler.delete_node(DeleteNodeCommand(user_id=USER, node_id=hub.node_id))

        assert result.edges_removed == 2
        assert result.items_removed == 6  # five keywords plus one membership
        assert node_ids(store) == {inbound.node.node_id}
        assert edge_pairs(store) == set()
        assert StoreNodeRepository(store).partition_items(UserID(USER), NodeID(hub.node_id)) == []
        assert len(bus.events_of(NodeDeleted)) == 1
        assert len(bus.events_of(EdgeDeleted)) == 2

    def test_failed_delete_is_atomic(self, store, node_handler, create_node):
        """A stale version aborts the whole cascade."""
        hub = create_node("Graph storage", "Single table design").node
        create_node("Graph storage", "Single table layout")
        before_nodes, before_edges = node_ids(store), edge_pairs(store)

        with pytest.raises(ConflictError):
            node_handler.delete_node(DeleteNodeCommand(user_id=USER, node_id=hub.node_id, expected_version=2))

        assert node_ids(store) == before_nodes
        assert edge_pairs(store) == before_edges

    def test_missing_node(self, node_handler):
        with pytest.raises(NotFoundError):
            node_handler.delete_node(DeleteNodeCommand(user_id=USER, node_id=MISSING))

    def test_other_users_node_is_not_found(self, node_handler, create_node):
        node_id = create_node("Graph storage", "Single table design", user_id="user-2").node.node_id
        with pytest.raises(NotFoundError):
            node_handler.delete_node(DeleteNodeCommand(user_id=USER, node_id=node_id))


class TestDeleteAgainstConcurrentLinks:
    """Edges and memberships committed while a delete is in flight never outlive the node."""

    @staticmethod
    def _create(handler, title, content):
        return handler.create_node(CreateNodeCommand(user_id=USER, title=title, content=content))

    def test_edge_created_during_delete_is_removed(self, interfering_store, interfering_handlers):
        nodes, _ = interfering_handlers
        target = self._create(nodes, "Graph storage", "Single table design").node.node_id
        linked = []
        interfering_store.interfere.append(
            lambda: linked.append(self._create(nodes, "Graph storage", "Single table layout"))
        )

        result = nodes.delete_node(DeleteNodeCommand(user_id=USER, node_id=target))

        [newcomer] = linked
        assert [e.target_id for e in newcomer.edges] == [target]
        assert result.edges_removed == 1
        assert node_ids(interfering_store) == {newcomer.node.node_id}
        assert edge_pairs(interfering_store) == set()

    def test_delete_with_expected_version_conflicts(self, interfering_store, interfering_handlers):
        """With a pinned version the delete is not retried and nothing is removed."""
        nodes, _ = interfering_handlers
        target = self._create(nodes, "Graph storage", "Single table design").node.node_id
        interfering_store.interfere.append(lambda: self._create(nodes, "Graph storage", "Single table layout"))

        with pytest.raises(ConflictError):
            nodes.delete_node(DeleteNodeCommand(user_id=USER, node_id=target, expected_version=1))

        assert target in node_ids(interfering_store)
        assert len(node_ids(interfering_store)) == 2
        assert {t for _, t in edge_pairs(interfering_store)} == {target}

    def test_membership_assigned_during_delete_is_removed(self, interfering_store, interfering_handlers):
        nodes, categories = interfering_handlers
        target = self._create(nodes, "Graph storage", "Single table design").node.node_id
        category = categories.create_category(CreateCategoryCommand(user_id=USER, name="Databases"))
        interfering_store.interfere.append(lambda: categories.assign_node(
            CategorizeNodeCommand(user_id=USER, category_id=category.category_id, node_id=target)
        ))

        result = nodes.delete_node(DeleteNodeCommand(user_id=USER, node_id=target))

        assert result.items_removed == 6  # five keywords plus the late membership
        repo = StoreCategoryRepository(interfering_store)
        assert repo.node_ids_in(UserID(USER), CategoryID(category.category_id)) == []
        assert StoreNodeRepository(interfering_store).partition_items(UserID(USER), NodeID(target)) == []

    def test_gives_up_when_links_keep_arriving(self, interfering_store, interfering_handlers):
        nodes, _ = interfering_handlers
        target = self._create(nodes, "Graph storage", "Single table design").node.node_id

        def relink():
            interfering_store.update(keys.node_key(USER, target), {keys.LINK_STAMP: keys.new_link_stamp()})

        interfering_store.interfere.extend([relink, relink, relink])

        with pytest.raises(RetryExhaustedError):
            nodes.delete_node(DeleteNodeCommand(user_id=USER, node_id=target))
        assert target in node_ids(interfering_store)


class TestBulkCreate:
    def test_creates_and_connects_within_batch(self, store, node_handler):
        result = node_handler.bulk_create_nodes(BulkCreateNodesCommand(user_id=USER, items=[
            {"title": "Graph storage", "content": "Single table design"},
            {"title": "Graph storage", "content": "Single table layout"},
            {"title": "Cooking", "content": "Pasta recipe"},
        ]))
        assert result.created_count == 3
        assert result.failed == []
        first, second, _ = (n.node_id for n in result.created)
        assert edge_pairs(store) == {(second, first)}

    def test_failed_item_does_not_abort(self, store, node_handler):
        result = node_handler.bulk_create_nodes(BulkCreateNodesCommand(user_id=USER, items=[
            {"title": "One", "content": "First body"},
            {"title": "   ", "content": "Invalid title"},
            {"title": "Three", "content": "Third body"},
        ]))
        assert result.created_count == 2
        assert [f.index for f in result.failed] == [1]
        assert result.failed[0].code == "validation"
        assert len(node_ids(store)) == 2

    def test_connects_to_existing_nodes(self, store, node_handler, create_node):
        existing = create_node("Graph storage", "Single table design").node
        result = node_handler.bulk_create_nodes(BulkCreateNodesCommand(user_id=USER, items=[
            {"title": "Graph storage", "content": "Single table layout"},
        ]))
        assert [e.target_id for e in result.edges] == [existing.node_id]


class TestBulkDelete:
    def test_one_invalid_among_valid(self, store, node_handler, create_node, bus):
        """Five valid ids are deleted; the malformed one is reported."""
        ids = [create_node(f"Note {i}", f"Body {i}").node.node_id for i in range(5)]
        result = node_handler.bulk_delete_nodes(BulkDeleteNodesCommand(user_id=USER, node_ids=ids[:2] + ["bogus"] + ids[2:]))

        assert result.deleted_count == 5
        assert result.deleted_ids == ids
        assert result.failed_ids == ["bogus"]
        assert "bogus" in result.errors
        assert node_ids(store) == set()
        [event] = bus.events_of(BulkNodesDeleted)
        assert list(event.deleted_ids) == ids

    def test_missing_ids_are_reported(self, node_handler, create_node):
        existing = create_node("Note", "Body").node.node_id
        result = node_handler.bulk_delete_nodes(BulkDeleteNodesCommand(user_id=USER, node_ids=[existing, MISSING]))
        assert result.deleted_ids == [existing]
        assert result.failed_ids == [MISSING]

    def test_connected_nodes_deleted_together(self, store, node_handler, create_node):
        a = create_node("Graph storage", "Single table design").node.node_id
        b = create_node("Graph storage", "Single table layout").node.node_id
        result = node_handler.bulk_delete_nodes(BulkDeleteNodesCommand(user_id=USER, node_ids=[a, b]))
        assert result.deleted_count == 2
        assert edge_pairs(store) == set()
        assert store.get(Key(f"USER#{USER}#NODE#{b}", f"EDGE#RELATES_TO#{a}")) is None


class TestEdges:
    def test_connect_creates_and_reweights(self, store, node_handler, create_node):
        a = create_node("Alpha", "First body").node.node_id
        b = create_node("Beta", "Second body").node.node_id
        c = create_node("Gamma", "Third body").node.node_id

        result = node_handler.connect_nodes(ConnectNodesCommand(user_id=USER, source_id=a, target_ids=[b, c], weight=0.5))
        assert {e.target_id for e in result.connected} == {b, c}

        again = node_handler.connect_nodes(ConnectNodesCommand(user_id=USER, source_id=a, target_ids=[b], weight=0.9))
        assert again.connected[0].weight == 0.9
        assert again.connected[0].version == 2

    def test_connect_partial_failure(self, node_handler, create_node):
        a = create_node("Alpha", "First body").node.node_id
        b = create_node("Beta", "Second body").node.node_id
        result = node_handler.connect_nodes(
            ConnectNodesCommand(user_id=USER, source_id=a, target_ids=[b, a, MISSING, "bogus"])
        )
        assert [e.target_id for e in result.connected] == [b]
        assert set(result.failed) == {a, MISSING, "bogus"}

    def test_connect_missing_source(self, node_handler):
        with pytest.raises(NotFoundError):
            node_handler.connect_nodes(ConnectNodesCommand(user_id=USER, source_id=MISSING, target_ids=[MISSING]))

    def test_delete_edge(self, store, node_handler, create_node):
        a = create_node("Graph storage", "Single table design").node.node_id
        b = create_node("Graph storage", "Single table layout").node.node_id
        node_handler.delete_edge(DeleteEdgeCommand(user_id=USER, source_id=b, target_id=a))
        assert edge_pairs(store) == set()
        with pytest.raises(NotFoundError):
            node_handler.delete_edge(DeleteEdgeCommand(user_id=USER, source_id=b, target_id=a))

    def test_connect_refreshes_endpoint_link_stamps(self, store, node_handler, create_node):
        """An edge write touches both endpoints without bumping their versions."""
        a = create_node("Alpha", "First body").node.node_id
        b = create_node("Beta", "Second body").node.node_id
        before = {n: store.get(keys.node_key(USER, n)) for n in (a, b)}

        node_handler.connect_nodes(ConnectNodesCommand(user_id=USER, source_id=a, target_ids=[b]))

        for n in (a, b):
            after = store.get(keys.node_key(USER, n))
            assert after[keys.LINK_STAMP] != before[n][keys.LINK_STAMP]
            assert after["Version"] == before[n]["Version"]
