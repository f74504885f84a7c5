"""Read-side query service.

Queries never write. Results are served through the QueryCache when one
is configured; command handlers invalidate it after each commit. Entries
that depend on a single node are tagged with its id so content-only
updates can drop them selectively.
"""

from collections import Counter

from graphmem.commands.models import CategoryView, EdgeView, NodeView
from graphmem.config import Config
from graphmem.db.category_repository import StoreCategoryRepository
from graphmem.db.edge_repository import StoreEdgeRepository
from graphmem.db.node_repository import StoreNodeRepository
from graphmem.domain.connection_analyzer import ConnectionAnalyzer, graph_density
from graphmem.domain.values import CategoryID, NodeID, UserID
from graphmem.errors import ValidationError
from graphmem.log_config import get_logger
from graphmem.queries.cache import QueryCache
from graphmem.queries.models import (
    CategoryPage,
    GraphStats,
    GraphView,
    KeywordCount,
    NodeConnections,
    NodePage,
    SimilarNode,
)
from graphmem.store.protocol import Store

log = get_logger("queries")

DEFAULT_TOP_KEYWORDS = 10


class GraphQueryService:
    """Queries over a user's graph.

    Args:
        store: Store to read from
        cache: Optional QueryCache; None disables caching
        analyzer: Analyzer used by find_similar_nodes
        config: Settings for the default analyzer
    """

    def __init__(
        self,
        store: Store,
        cache: QueryCache | None = None,
        analyzer: ConnectionAnalyzer | None = None,
        config: Config | None = None,
    ):
        self.store = store
        self.cache = cache
        self.analyzer = analyzer or ConnectionAnalyzer.from_config(config or Config())
        self.nodes = StoreNodeRepository(store)
        self.edges = StoreEdgeRepository(store)
        self.categories = StoreCategoryRepository(store)

    def _cached(self, operation: str, user_id: UserID, params: dict, loader, tags=()):
        if self.cache is None:
            return loader()
        return self.cache.get_or_load(operation, user_id, params, loader, tags)

    # =========================================================================
    # Nodes
    # =========================================================================

    def get_node(self, user_id: str, node_id: str) -> NodeView:
        """Raises NotFoundError if the node does not exist."""
        user, node = UserID(user_id), NodeID(node_id)
        return self._cached(
            "get_node", user, {"node_id": str(node)},
            lambda: NodeView.from_node(self.nodes.get_by_id(user, node)),
            tags=[str(node)],
        )

    def list_nodes(self, user_id: str, limit: int | None = None, cursor: str | None = None) -> NodePage:
        user = UserID(user_id)

        def load() -> NodePage:
            page = self.nodes.list_by_user(user, limit=limit, cursor=cursor)
            return NodePage(
                items=[NodeView.from_node(n) for n in page.items],
                next_cursor=page.next_cursor,
                has_more=page.has_more,
            )

        return self._cached("list_nodes", user, {"limit": limit, "cursor": cursor}, load)

    def get_node_connections(self, user_id: str, node_id: str) -> NodeConnections:
        """Outgoing and incoming edges of a node (NotFoundError if missing)."""
        user, node = UserID(user_id), NodeID(node_id)

        def load() -> NodeConnections:
            self.nodes.get_by_id(user, node)
            return NodeConnections(
                node_id=str(node),
                outgoing=[EdgeView.from_edge(e) for e in self.edges.outgoing(user, node)],
                incoming=[EdgeView.from_edge(e) for e in self.edges.incoming(user, node)],
            )

        return self._cached("get_node_connections", user, {"node_id": str(node)}, load, tags=[str(node)])

    # =========================================================================
    # Graph
    # =========================================================================

    def get_graph(self, user_id: str, max_nodes: int | None = None) -> GraphView:
        """The user's nodes and the edges among them.

        With ``max_nodes`` only the first nodes in key order are returned and
        edges leaving that set are dropped.
        """
        if max_nodes is not None and max_nodes < 1:
            raise ValidationError(f"max_nodes must be positive, got {max_nodes}")
        user = UserID(user_id)

        def load() -> GraphView:
            nodes = self.nodes.all_for_user(user)
            truncated = max_nodes is not None and len(nodes) > max_nodes
            if truncated:
                nodes = nodes[:max_nodes]
            included = {n.id for n in nodes}
            edges = [
                e for e in self.edges.all_for_user(user)
                if e.source_id in included and e.target_id in included
            ]
            return GraphView(
                nodes=[NodeView.from_node(n) for n in nodes],
                edges=[EdgeView.from_edge(e) for e in edges],
                truncated=truncated,
            )

        return self._cached("get_graph", user, {"max_nodes": max_nodes}, load)

    def get_graph_stats(self, user_id: str, top_keywords: int = DEFAULT_TOP_KEYWORDS) -> GraphStats:
        user = UserID(user_id)

        def load() -> GraphStats:
            nodes = self.nodes.all_for_user(user)
            edges = self.edges.all_for_user(user)
            connected = {e.source_id for e in edges} | {e.target_id for e in edges}
            counts = Counter(kw for n in nodes for kw in n.keywords)
            ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:max(top_keywords, 0)]
            node_count = len(nodes)
            return GraphStats(
                node_count=node_count,
                edge_count=len(edges),
                category_count=self.categories.count_by_user(user),
                density=graph_density(node_count, len(edges)),
                average_degree=(2 * len(edges) / node_count) if node_count else 0.0,
                isolated_nodes=sum(1 for n in nodes if n.id not in connected),
                top_keywords=[KeywordCount(keyword=kw, count=c) for kw, c in ranked],
            )

        return self._cached("get_graph_stats", user, {"top_keywords": top_keywords}, load)

    def find_similar_nodes(self, user_id: str, node_id: str, limit: int | None = None) -> list[SimilarNode]:
        """Run the analyzer for an existing node without writing anything."""
        user, node_key = UserID(user_id), NodeID(node_id)

        def load() -> list[SimilarNode]:
            node = self.nodes.get_by_id(user, node_key)
            candidates = self.analyzer.find_connections(node, self.nodes.all_for_user(user), max_connections=limit)
            return [
                SimilarNode(
                    node=NodeView.from_node(c.target),
                    score=c.score,
                    matched_keywords=c.matched_keywords,
                    shared_tags=c.shared_tags,
                    reason=c.reason,
                )
                for c in candidates
            ]

        return self._cached("find_similar_nodes", user, {"node_id": str(node_key), "limit": limit}, load)

    # =========================================================================
    # Categories
    # =========================================================================

    def list_categories(self, user_id: str, limit: int | None = None, cursor: str | None = None) -> CategoryPage:
        user = UserID(user_id)

        def load() -> CategoryPage:
            page = self.categories.list_by_user(user, limit=limit, cursor=cursor)
            return CategoryPage(
                items=[CategoryView.from_category(c) for c in page.items],
                next_cursor=page.next_cursor,
                has_more=page.has_more,
            )

        return self._cached("list_categories", user, {"limit": limit, "cursor": cursor}, load)

    def list_nodes_in_category(self, user_id: str, category_id: str) -> list[NodeView]:
        """Raises NotFoundError if the category does not exist."""
        user, category = UserID(user_id), CategoryID(category_id)

        def load() -> list[NodeView]:
            self.categories.get_by_id(user, category)
            node_ids = self.categories.node_ids_in(user, category)
            return [NodeView.from_node(n) for n in self.nodes.find_many(user, node_ids)]

        return self._cached("list_nodes_in_category", user, {"category_id": str(category)}, load)

    def list_categories_for_node(self, user_id: str, node_id: str) -> list[CategoryView]:
        user, node = UserID(user_id), NodeID(node_id)

        def load() -> list[CategoryView]:
            self.nodes.get_by_id(user, node)
            views = []
            for category_id in self.categories.category_ids_for_node(user, node):
                category = self.categories.find_by_id(user, category_id)
                if category is not None:
                    views.append(CategoryView.from_category(category))
            return views

        return self._cached("list_categories_for_node", user, {"node_id": str(node)}, load, tags=[str(node)])
