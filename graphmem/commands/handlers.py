"""Write-side command handlers.

Every command follows the same pipeline:

    validate -> (idempotency check) -> begin -> load -> mutate / analyze
    -> register writes -> commit -> publish events -> invalidate cache
    -> (store idempotency result)

Single-item commands are all-or-nothing: any failure before commit rolls
the unit of work back and nothing is persisted. Bulk commands run the same
pipeline per item and report partial success. Errors keep their kind and
gain the failing step (``err.step``).
"""

from graphmem.commands.models import (
    ArchiveNodeCommand,
    BulkCreateNodesCommand,
    BulkCreateResult,
    BulkDeleteNodesCommand,
    BulkDeleteResult,
    BulkItemFailure,
    CategorizeNodeCommand,
    CategoryView,
    ConnectNodesCommand,
    ConnectNodesResult,
    CreateCategoryCommand,
    CreateNodeCommand,
    CreateNodeResult,
    DeleteCategoryCommand,
    DeleteCategoryResult,
    DeleteEdgeCommand,
    DeleteEdgeResult,
    DeleteNodeCommand,
    DeleteNodeResult,
    EdgeView,
    NodeView,
    UpdateCategoryCommand,
    UpdateNodeCommand,
    UpdateNodeResult,
)
from graphmem.config import Config
from graphmem.context import RequestContext, check_context
from graphmem.db.node_repository import StoreNodeRepository
from graphmem.domain.category import Category
from graphmem.domain.connection_analyzer import ConnectionAnalyzer
from graphmem.domain.edge import Edge
from graphmem.domain.events import BulkNodesDeleted, CategoryDeleted, DomainEvent, NodeDeleted
from graphmem.domain.node import Node
from graphmem.domain.values import CategoryID, Content, NodeID, Tags, Title, UserID, Weight
from graphmem.errors import ConflictError, GraphMemError, wrap_step
from graphmem.event_bus import EventBus
from graphmem.idempotency import IdempotencyKey, IdempotencyStore
from graphmem.log_config import get_logger
from graphmem.queries.cache import QueryCache
from graphmem.retry import RetryPolicy, run_with_optimistic_retry
from graphmem.store.protocol import Store
from graphmem.uow import UnitOfWork

log = get_logger("commands")

OP_CREATE_NODE = "CreateNode"


class _CommandHandler:
    """Shared wiring for handlers: store, bus, cache, limits and retry policy."""

    def __init__(
        self,
        store: Store,
        event_bus: EventBus | None = None,
        cache: QueryCache | None = None,
        config: Config | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.store = store
        self.event_bus = event_bus
        self.cache = cache
        self.config = config or Config()
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)

    def _unit_of_work(self, ctx: RequestContext | None) -> UnitOfWork:
        return UnitOfWork(self.store, self.event_bus).begin(ctx)

    def _invalidate_user(self, user_id: UserID) -> None:
        if self.cache is not None:
            self.cache.invalidate_user(user_id)

    def _invalidate_node(self, user_id: UserID, node_id: NodeID) -> None:
        if self.cache is not None:
            self.cache.invalidate_node(user_id, node_id)

    def _publish(self, event: DomainEvent) -> None:
        """Publish outside a unit of work (best-effort, like UnitOfWork)."""
        if self.event_bus is None:
            return
        try:
            self.event_bus.publish(event)
        except Exception as e:
            log.warning(f"Failed to publish {event.event_type}: {e}")

    # Value parsing, using the configured limits

    def _title(self, raw: str) -> Title:
        return Title(raw, max_length=self.config.max_title_length)

    def _content(self, raw: str) -> Content:
        return Content(raw, max_length=self.config.max_content_length)

    def _tags(self, raw: list[str] | None) -> Tags:
        return Tags.of(raw, max_tags=self.config.max_tags_per_node)


class NodeCommandHandler(_CommandHandler):
    """Create, update, delete and connect nodes."""

    def __init__(
        self,
        store: Store,
        analyzer: ConnectionAnalyzer | None = None,
        event_bus: EventBus | None = None,
        idempotency: IdempotencyStore | None = None,
        cache: QueryCache | None = None,
        retry_policy: RetryPolicy | None = None,
        config: Config | None = None,
    ):
        super().__init__(store, event_bus, cache, config, retry_policy)
        self.analyzer = analyzer or ConnectionAnalyzer.from_config(self.config)
        self.idempotency = idempotency

    def _edges_for(self, node: Node, corpus: list[Node]) -> list[Edge]:
        candidates = self.analyzer.find_connections(node, corpus)
        return [Edge.create(node.user_id, node.id, c.target.id, Weight(c.score)) for c in candidates]

    # =========================================================================
    # Create
    # =========================================================================

    def create_node(self, cmd: CreateNodeCommand, ctx: RequestContext | None = None) -> CreateNodeResult:
        """Create a node and connect it to similar existing nodes.

        With an idempotency key, replaying the same command returns the first
        result (``replayed=True``) without creating anything.

        Raises:
            ValidationError: Malformed input
            ConflictError: A concurrent write collided (not retried here)
        """
        with wrap_step("validate"):
            user_id = UserID(cmd.user_id)
            title = self._title(cmd.title)
            content = self._content(cmd.content)
            tags = self._tags(cmd.tags)

        idem_key = None
        if cmd.idempotency_key is not None and self.idempotency is not None:
            with wrap_step("idempotency check"):
                idem_key = IdempotencyKey.for_request(user_id, OP_CREATE_NODE, cmd.idempotency_key)
                stored, found = self.idempotency.get(idem_key)
            if found:
                log.info(f"create_node: replaying stored result for user {user_id}")
                return self._replay(stored)

        try:
            result, folded = self._create_once(user_id, title, content, tags, idem_key, ctx)
        except ConflictError:
            if idem_key is None:
                raise
            # A concurrent duplicate may have committed first
            stored, found = self.idempotency.get(idem_key)
            if not found:
                raise
            log.info(f"create_node: concurrent duplicate for user {user_id}, returning first result")
            return self._replay(stored)

        if idem_key is not None and not folded:
            try:
                self.idempotency.store(idem_key, result.model_dump(mode="json"))
            except GraphMemError as e:
                # Node is committed; a retry may duplicate it (at-least-once)
                log.warning(f"create_node: failed to store idempotency result: {e}")
        return result

    def _create_once(
        self,
        user_id: UserID,
        title: Title,
        content: Content,
        tags: Tags,
        idem_key: IdempotencyKey | None,
        ctx: RequestContext | None,
    ) -> tuple[CreateNodeResult, bool]:
        with self._unit_of_work(ctx) as uow:
            node = Node.create(user_id, title, content, tags)
            with wrap_step("load corpus"):
                corpus = uow.nodes.all_for_user(user_id)
            with wrap_step("analyze connections"):
                edges = self._edges_for(node, corpus)
            with wrap_step("persist"):
                uow.nodes.save(node)
                for edge in edges:
                    uow.edges.save(edge)

            result = CreateNodeResult(
                node=NodeView.from_node(node),
                edges=[EdgeView.from_edge(e) for e in edges],
            )
            folded = False
            if idem_key is not None:
                op = self.idempotency.prepare_put(idem_key, result.model_dump(mode="json"))
                if op is not None:
                    uow.add(op)
                    folded = True

            with wrap_step("commit"):
                uow.commit(ctx)

        self._invalidate_user(user_id)
        log.info(f"Created node {node.id} for user {user_id} with {len(edges)} edges")
        return result, folded

    @staticmethod
    def _replay(stored: dict) -> CreateNodeResult:
        return CreateNodeResult.model_validate(stored).model_copy(update={"replayed": True})

    # =========================================================================
    # Update
    # =========================================================================

    def _parse_update(self, cmd: UpdateNodeCommand) -> tuple[UserID, NodeID, Title | None, Content | None, Tags | None]:
        with wrap_step("validate"):
            return (
                UserID(cmd.user_id),
                NodeID(cmd.node_id),
                self._title(cmd.title) if cmd.title is not None else None,
                self._content(cmd.content) if cmd.content is not None else None,
                self._tags(cmd.tags) if cmd.tags is not None else None,
            )

    def update_node(self, cmd: UpdateNodeCommand, ctx: RequestContext | None = None) -> UpdateNodeResult:
        """Single-attempt update; a version mismatch surfaces as ConflictError."""
        parsed = self._parse_update(cmd)
        return self._update_once(*parsed, expected_version=cmd.expected_version, ctx=ctx)

    def safe_update_node(self, cmd: UpdateNodeCommand, ctx: RequestContext | None = None) -> UpdateNodeResult:
        """Update under the optimistic retry loop.

        Each attempt re-reads the node and writes against the version it just
        read; ``cmd.expected_version`` is ignored.

        Raises:
            RetryExhaustedError: Conflicts on every attempt
        """
        user_id, node_id, title, content, tags = self._parse_update(cmd)
        return run_with_optimistic_retry(
            lambda: self._update_once(user_id, node_id, title, content, tags, expected_version=None, ctx=ctx),
            policy=self.retry_policy,
            ctx=ctx,
            operation=f"update node {node_id}",
        )

    def _update_once(
        self,
        user_id: UserID,
        node_id: NodeID,
        title: Title | None,
        content: Content | None,
        tags: Tags | None,
        expected_version: int | None,
        ctx: RequestContext | None,
    ) -> UpdateNodeResult:
        with self._unit_of_work(ctx) as uow:
            with wrap_step("load node"):
                node = uow.nodes.get_by_id(user_id, node_id)
                node.ensure_owned_by(user_id)
            if expected_version is not None and node.version.value != expected_version:
                raise ConflictError(
                    f"node {node_id} is at version {node.version.value}, expected {expected_version}",
                    step="check version",
                )

            with wrap_step("apply changes"):
                content_changed = node.update_content(title, content)
                tags_changed = node.replace_tags(tags) if tags is not None else False
            if not (content_changed or tags_changed):
                return UpdateNodeResult(node=NodeView.from_node(node), changed=False)

            refresh = node.keywords_changed or (tags_changed and self.analyzer.tag_bonus > 0)
            written = removed = 0
            with wrap_step("persist"):
                uow.nodes.save(node)
            if refresh:
                with wrap_step("analyze connections"):
                    edges = self._edges_for(node, uow.nodes.all_for_user(user_id))
                with wrap_step("persist"):
                    written, removed = uow.edges.replace_outgoing(user_id, node.id, edges)

            with wrap_step("commit"):
                uow.commit(ctx)

        if refresh:
            self._invalidate_user(user_id)
        else:
            self._invalidate_node(user_id, node_id)
        log.info(f"Updated node {node_id} to version {node.version.value} (+{written}/-{removed} edges)")
        return UpdateNodeResult(
            node=NodeView.from_node(node),
            changed=True,
            connections_refreshed=refresh,
            edges_written=written,
            edges_removed=removed,
        )

    def archive_node(self, cmd: ArchiveNodeCommand, ctx: RequestContext | None = None) -> UpdateNodeResult:
        """Archive a node; archiving an archived node changes nothing.

        Edges and memberships are kept. Archived nodes stay readable but
        reject updates with ValidationError.

        Raises:
            ConflictError: ``cmd.expected_version`` does not match, or a concurrent write won
        """
        with wrap_step("validate"):
            user_id = UserID(cmd.user_id)
            node_id = NodeID(cmd.node_id)

        with self._unit_of_work(ctx) as uow:
            with wrap_step("load node"):
                node = uow.nodes.get_by_id(user_id, node_id)
                node.ensure_owned_by(user_id)
            if cmd.expected_version is not None and node.version.value != cmd.expected_version:
                raise ConflictError(
                    f"node {node_id} is at version {node.version.value}, expected {cmd.expected_version}",
                    step="check version",
                )
            if not node.archive():
                return UpdateNodeResult(node=NodeView.from_node(node), changed=False)
            with wrap_step("persist"):
                uow.nodes.save(node)
            with wrap_step("commit"):
                uow.commit(ctx)

        self._invalidate_node(user_id, node_id)
        log.info(f"Archived node {node_id} at version {node.version.value}")
        return UpdateNodeResult(node=NodeView.from_node(node), changed=True)

    # =========================================================================
    # Delete
    # =========================================================================

    def delete_node(self, cmd: DeleteNodeCommand, ctx: RequestContext | None = None) -> DeleteNodeResult:
        """Delete a node with its keywords, memberships and every touching edge, atomically.

        An edge or membership committed between the read and the commit fails
        the delete with a conflict. Without ``cmd.expected_version`` the delete
        is retried (re-reading the cascade); with it, the conflict surfaces.

        Raises:
            ConflictError: Version mismatch, or a concurrent link with an expected version
            RetryExhaustedError: Concurrent links kept arriving on every attempt
        """
        with wrap_step("validate"):
            user_id = UserID(cmd.user_id)
            node_id = NodeID(cmd.node_id)
        result = self._delete(user_id, node_id, cmd.expected_version, ctx)
        self._invalidate_user(user_id)
        return result

    def _delete(
        self,
        user_id: UserID,
        node_id: NodeID,
        expected_version: int | None,
        ctx: RequestContext | None,
    ) -> DeleteNodeResult:
        if expected_version is not None:
            return self._delete_once(user_id, node_id, expected_version, ctx)
        return run_with_optimistic_retry(
            lambda: self._delete_once(user_id, node_id, None, ctx),
            policy=self.retry_policy,
            ctx=ctx,
            operation=f"delete node {node_id}",
        )

    def _delete_once(
        self,
        user_id: UserID,
        node_id: NodeID,
        expected_version: int | None,
        ctx: RequestContext | None,
    ) -> DeleteNodeResult:
        with self._unit_of_work(ctx) as uow:
            with wrap_step("load node"):
                node = uow.nodes.get_by_id(user_id, node_id)
            if expected_version is not None and node.version.value != expected_version:
                raise ConflictError(
                    f"node {node_id} is at version {node.version.value}, expected {expected_version}",
                    step="check version",
                )
            with wrap_step("persist"):
                items_removed = uow.nodes.delete(node)
                edges = uow.edges.delete_all_for_node(user_id, node_id)
                uow.publish_event(NodeDeleted(str(user_id), str(node_id), edges_removed=len(edges)))
            with wrap_step("commit"):
                uow.commit(ctx)

        log.info(f"Deleted node {node_id} ({len(edges)} edges, {items_removed} items)")
        return DeleteNodeResult(node_id=str(node_id), edges_removed=len(edges), items_removed=items_removed)

    # =========================================================================
    # Bulk
    # =========================================================================

    def bulk_create_nodes(self, cmd: BulkCreateNodesCommand, ctx: RequestContext | None = None) -> BulkCreateResult:
        """Create many nodes; each item commits on its own.

        Items are connected to pre-existing nodes with the regular analyzer and
        to earlier items of the same batch with bidirectional analysis. A failed
        item is reported and does not stop the batch.
        Each item is its own transaction rather than a ``batch_write``, so an
        item never lands with only part of its keywords or edges.
        """
        with wrap_step("validate"):
            user_id = UserID(cmd.user_id)
        with wrap_step("load corpus"):
            corpus = StoreNodeRepository(self.store).all_for_user(user_id)

        result = BulkCreateResult()
        batch: list[Node] = []
        for index, item in enumerate(cmd.items):
            try:
                with wrap_step(f"bulk item {index}"):
                    check_context(ctx)
                    node = Node.create(user_id, self._title(item.title), self._content(item.content), self._tags(item.tags))
                    edges = self._bulk_edges(node, corpus, batch)
                    with self._unit_of_work(ctx) as uow:
                        uow.nodes.save(node)
                        for edge in edges:
                            uow.edges.save(edge)
                        uow.commit(ctx)
            except GraphMemError as e:
                log.debug(f"bulk_create_nodes: item {index} failed: {e}")
                result.failed.append(BulkItemFailure(index=index, identifier=item.title[:50], error=str(e), code=e.code))
                continue

            batch.append(node)
            result.created.append(NodeView.from_node(node))
            result.edges.extend(EdgeView.from_edge(e) for e in edges)

        if result.created:
            self._invalidate_user(user_id)
        log.info(f"Bulk created {len(result.created)}/{len(cmd.items)} nodes for user {user_id}")
        return result

    def _bulk_edges(self, node: Node, corpus: list[Node], batch: list[Node]) -> list[Edge]:
        scored: list[tuple[Node, float]] = [
            (c.target, c.score) for c in self.analyzer.find_connections(node, corpus)
        ]
        for other in batch:
            analysis = self.analyzer.analyze_bidirectional(node, other)
            if analysis.should_connect:
                scored.append((other, analysis.weight))
        # list.sort is stable: corpus candidates win ties
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return [
            Edge.create(node.user_id, node.id, target.id, Weight(score))
            for target, score in scored[: self.analyzer.connection_limit]
        ]

    def bulk_delete_nodes(self, cmd: BulkDeleteNodesCommand, ctx: RequestContext | None = None) -> BulkDeleteResult:
        """Delete many nodes, each atomically; failures are reported per id.

        Every id runs the full ``delete_node`` cascade in its own transaction.
        """
        with wrap_step("validate"):
            user_id = UserID(cmd.user_id)

        result = BulkDeleteResult()
        for raw_id in dict.fromkeys(cmd.node_ids):
            try:
                with wrap_step("bulk delete node"):
                    check_context(ctx)
                    self._delete(user_id, NodeID(raw_id), None, ctx)
            except GraphMemError as e:
                result.failed_ids.append(raw_id)
                result.errors[raw_id] = str(e)
                continue
            result.deleted_ids.append(str(NodeID(raw_id)))

        result.deleted_count = len(result.deleted_ids)
        if result.deleted_ids:
            self._invalidate_user(user_id)
            self._publish(BulkNodesDeleted(
                str(user_id),
                str(user_id),
                deleted_ids=tuple(result.deleted_ids),
                failed_ids=tuple(result.failed_ids),
            ))
        log.info(f"Bulk deleted {result.deleted_count}/{len(cmd.node_ids)} nodes for user {user_id}")
        return result

    # =========================================================================
    # Edges
    # =========================================================================

    def connect_nodes(self, cmd: ConnectNodesCommand, ctx: RequestContext | None = None) -> ConnectNodesResult:
        """Manually connect one source to many targets with a fixed weight.

        Existing edges are reweighted. Each target commits separately.

        Raises:
            NotFoundError: The source node does not exist
        """
        with wrap_step("validate"):
            user_id = UserID(cmd.user_id)
            source_id = NodeID(cmd.source_id)
            weight = Weight(cmd.weight)
        with wrap_step("load node"):
            StoreNodeRepository(self.store).get_by_id(user_id, source_id)

        result = ConnectNodesResult(source_id=str(source_id))
        for raw_target in dict.fromkeys(cmd.target_ids):
            try:
                with wrap_step("connect"):
                    target_id = NodeID(raw_target)
                    with self._unit_of_work(ctx) as uow:
                        edge = uow.edges.find(user_id, source_id, target_id)
                        if edge is None:
                            edge = Edge.create(user_id, source_id, target_id, weight)
                            uow.edges.save(edge)
                        elif edge.reweight(weight):
                            uow.edges.save(edge)
                        uow.commit(ctx)
            except GraphMemError as e:
                result.failed[raw_target] = str(e)
                continue
            result.connected.append(EdgeView.from_edge(edge))

        if result.connected:
            self._invalidate_user(user_id)
        return result

    def delete_edge(self, cmd: DeleteEdgeCommand, ctx: RequestContext | None = None) -> DeleteEdgeResult:
        with wrap_step("validate"):
            user_id = UserID(cmd.user_id)
            source_id = NodeID(cmd.source_id)
            target_id = NodeID(cmd.target_id)

        with self._unit_of_work(ctx) as uow:
            with wrap_step("load edge"):
                edge = uow.edges.get(user_id, source_id, target_id)
            with wrap_step("persist"):
                uow.edges.delete(edge)
            with wrap_step("commit"):
                uow.commit(ctx)

        self._invalidate_user(user_id)
        return DeleteEdgeResult(source_id=str(source_id), target_id=str(target_id))


class CategoryCommandHandler(_CommandHandler):
    """Category CRUD and node membership."""

    def create_category(self, cmd: CreateCategoryCommand, ctx: RequestContext | None = None) -> CategoryView:
        with wrap_step("validate"):
            user_id = UserID(cmd.user_id)
            category = Category.create(user_id, cmd.name, cmd.description, cmd.color)
        with self._unit_of_work(ctx) as uow:
            uow.categories.save(category)
            with wrap_step("commit"):
                uow.commit(ctx)
        self._invalidate_user(user_id)
        return CategoryView.from_category(category)

    def update_category(self, cmd: UpdateCategoryCommand, ctx: RequestContext | None = None) -> CategoryView:
        with wrap_step("validate"):
            user_id = UserID(cmd.user_id)
            category_id = CategoryID(cmd.category_id)

        with self._unit_of_work(ctx) as uow:
            with wrap_step("load category"):
                category = uow.categories.get_by_id(user_id, category_id)
                category.ensure_owned_by(user_id)
            if cmd.expected_version is not None and category.version.value != cmd.expected_version:
                raise ConflictError(
                    f"category {category_id} is at version {category.version.value}, expected {cmd.expected_version}",
                    step="check version",
                )
            with wrap_step("apply changes"):
                changed = category.update(cmd.name, cmd.description, cmd.color)
            if not changed:
                return CategoryView.from_category(category)
            uow.categories.save(category)
            with wrap_step("commit"):
                uow.commit(ctx)

        self._invalidate_user(user_id)
        return CategoryView.from_category(category)

    def delete_category(self, cmd: DeleteCategoryCommand, ctx: RequestContext | None = None) -> DeleteCategoryResult:
        """Delete a category and unassign every node in it.

        Retried when a membership lands between the read and the commit.
        """
        with wrap_step("validate"):
            user_id = UserID(cmd.user_id)
            category_id = CategoryID(cmd.category_id)

        unassigned = run_with_optimistic_retry(
            lambda: self._delete_category_once(user_id, category_id, ctx),
            policy=self.retry_policy,
            ctx=ctx,
            operation=f"delete category {category_id}",
        )
        self._invalidate_user(user_id)
        return DeleteCategoryResult(category_id=str(category_id), nodes_unassigned=unassigned)

    def _delete_category_once(self, user_id: UserID, category_id: CategoryID, ctx: RequestContext | None) -> int:
        with self._unit_of_work(ctx) as uow:
            with wrap_step("load category"):
                category = uow.categories.get_by_id(user_id, category_id)
            with wrap_step("persist"):
                unassigned = uow.categories.delete(category)
                uow.publish_event(CategoryDeleted(str(user_id), str(category_id), nodes_unassigned=unassigned))
            with wrap_step("commit"):
                uow.commit(ctx)
        log.info(f"Deleted category {category_id} ({unassigned} nodes unassigned)")
        return unassigned

    def assign_node(self, cmd: CategorizeNodeCommand, ctx: RequestContext | None = None) -> bool:
        """Put a node into a category.

        Returns:
            False when the node was already a member
        """
        with wrap_step("validate"):
            user_id = UserID(cmd.user_id)
            category_id = CategoryID(cmd.category_id)
            node_id = NodeID(cmd.node_id)

        with self._unit_of_work(ctx) as uow:
            if uow.categories.is_member(user_id, category_id, node_id):
                return False
            with wrap_step("persist"):
                uow.categories.assign(user_id, category_id, node_id)
            with wrap_step("commit"):
                uow.commit(ctx)

        self._invalidate_user(user_id)
        return True

    def unassign_node(self, cmd: CategorizeNodeCommand, ctx: RequestContext | None = None) -> None:
        """Remove a node from a category (NotFoundError if it was not a member)."""
        with wrap_step("validate"):
            user_id = UserID(cmd.user_id)
            category_id = CategoryID(cmd.category_id)
            node_id = NodeID(cmd.node_id)

        with self._unit_of_work(ctx) as uow:
            with wrap_step("persist"):
                uow.categories.unassign(user_id, category_id, node_id)
            with wrap_step("commit"):
                uow.commit(ctx)

        self._invalidate_user(user_id)
