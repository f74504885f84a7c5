"""Read-side result models."""

from pydantic import BaseModel, Field

from graphmem.commands.models import CategoryView, EdgeView, NodeView


class NodePage(BaseModel):
    items: list[NodeView] = Field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False


class CategoryPage(BaseModel):
    items: list[CategoryView] = Field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False


class NodeConnections(BaseModel):
    node_id: str
    outgoing: list[EdgeView] = Field(default_factory=list)
    incoming: list[EdgeView] = Field(default_factory=list)

    @property
    def degree(self) -> int:
        return len(self.outgoing) + len(self.incoming)


class GraphView(BaseModel):
    """Nodes plus the edges among them."""

    nodes: list[NodeView] = Field(default_factory=list)
    edges: list[EdgeView] = Field(default_factory=list)
    truncated: bool = Field(default=False, description="True when max_nodes cut the node list")


class KeywordCount(BaseModel):
    keyword: str
    count: int


class GraphStats(BaseModel):
    node_count: int = 0
    edge_count: int = 0
    category_count: int = 0
    density: float = 0.0
    average_degree: float = Field(default=0.0, description="Mean of in-degree plus out-degree")
    isolated_nodes: int = 0
    top_keywords: list[KeywordCount] = Field(default_factory=list)


class SimilarNode(BaseModel):
    node: NodeView
    score: float
    matched_keywords: list[str] = Field(default_factory=list)
    shared_tags: list[str] = Field(default_factory=list)
    reason: str = ""
