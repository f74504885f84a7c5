"""Command and result models for the write side.

Commands carry raw caller input; handlers turn it into value objects,
which do the domain validation. Pydantic only enforces shape and the
coarse bounds that do not depend on configuration.
"""

from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from graphmem.domain.category import Category
from graphmem.domain.edge import Edge
from graphmem.domain.node import Node
from graphmem.errors import ValidationError

MAX_BULK_ITEMS = 100

M = TypeVar("M", bound=BaseModel)


def parse_command(model: type[M], data: dict[str, Any]) -> M:
    """Validate raw input into a command model.

    Raises:
        ValidationError: With pydantic's messages joined into one line
    """
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"invalid {model.__name__}: {problems}") from None


class Command(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(..., min_length=1, description="Owner of the affected aggregates")


# =============================================================================
# Node commands
# =============================================================================


class CreateNodeCommand(Command):
    title: str = Field(..., description="Node title")
    content: str = Field(..., description="Node body text")
    tags: list[str] = Field(default_factory=list, description="User supplied tags")
    idempotency_key: str | None = Field(default=None, description="Client token for safe retries")


class UpdateNodeCommand(Command):
    node_id: str
    title: str | None = None
    content: str | None = None
    tags: list[str] | None = Field(default=None, description="Replacement tag set (None keeps current)")
    expected_version: int | None = Field(default=None, ge=1, description="Reject if the stored version differs")


class DeleteNodeCommand(Command):
    node_id: str
    expected_version: int | None = Field(default=None, ge=1)


class ArchiveNodeCommand(Command):
    """Freeze a node: archived nodes reject further content and tag changes."""

    node_id: str
    expected_version: int | None = Field(default=None, ge=1)


class BulkNodeInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    content: str
    tags: list[str] = Field(default_factory=list)


class BulkCreateNodesCommand(Command):
    items: list[BulkNodeInput] = Field(..., min_length=1, max_length=MAX_BULK_ITEMS)


class BulkDeleteNodesCommand(Command):
    node_ids: list[str] = Field(..., min_length=1, max_length=MAX_BULK_ITEMS)


class ConnectNodesCommand(Command):
    source_id: str
    target_ids: list[str] = Field(..., min_length=1, max_length=MAX_BULK_ITEMS)
    weight: float = Field(default=1.0, ge=0.0, le=1.0)


class DeleteEdgeCommand(Command):
    source_id: str
    target_id: str


# =============================================================================
# Category commands
# =============================================================================


class CreateCategoryCommand(Command):
    name: str
    description: str | None = None
    color: str | None = None


class UpdateCategoryCommand(Command):
    category_id: str
    name: str | None = None
    description: str | None = None
    color: str | None = None
    expected_version: int | None = Field(default=None, ge=1)


class DeleteCategoryCommand(Command):
    category_id: str


class CategorizeNodeCommand(Command):
    category_id: str
    node_id: str


# =============================================================================
# Views and results
# =============================================================================


class NodeView(BaseModel):
    node_id: str
    user_id: str
    title: str
    content: str
    tags: list[str]
    keywords: list[str]
    version: int
    archived: bool = False
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_node(cls, node: Node) -> "NodeView":
        return cls(
            node_id=str(node.id),
            user_id=str(node.user_id),
            title=node.title.value,
            content=node.content.value,
            tags=node.tags.as_list(),
            keywords=sorted(node.keywords),
            version=node.version.value,
            archived=node.archived,
            created_at=node.created_at,
            updated_at=node.updated_at,
        )


class EdgeView(BaseModel):
    source_id: str
    target_id: str
    weight: float
    version: int = 1
    created_at: datetime | None = None

    @classmethod
    def from_edge(cls, edge: Edge) -> "EdgeView":
        return cls(
            source_id=str(edge.source_id),
            target_id=str(edge.target_id),
            weight=edge.weight.value,
            version=edge.version.value,
            created_at=edge.created_at,
        )


class CategoryView(BaseModel):
    category_id: str
    user_id: str
    name: str
    description: str = ""
    color: str | None = None
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_category(cls, category: Category) -> "CategoryView":
        return cls(
            category_id=str(category.id),
            user_id=str(category.user_id),
            name=category.name,
            description=category.description,
            color=category.color,
            version=category.version.value,
            created_at=category.created_at,
            updated_at=category.updated_at,
        )


class CreateNodeResult(BaseModel):
    node: NodeView
    edges: list[EdgeView] = Field(default_factory=list)
    replayed: bool = Field(default=False, description="True when served from the idempotency store")


class UpdateNodeResult(BaseModel):
    node: NodeView
    changed: bool
    connections_refreshed: bool = False
    edges_written: int = 0
    edges_removed: int = 0


class DeleteNodeResult(BaseModel):
    node_id: str
    edges_removed: int = 0
    items_removed: int = 0


class BulkItemFailure(BaseModel):
    index: int
    identifier: str | None = None
    error: str
    code: str = "internal"


class BulkCreateResult(BaseModel):
    created: list[NodeView] = Field(default_factory=list)
    edges: list[EdgeView] = Field(default_factory=list)
    failed: list[BulkItemFailure] = Field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)


class BulkDeleteResult(BaseModel):
    deleted_count: int = 0
    deleted_ids: list[str] = Field(default_factory=list)
    failed_ids: list[str] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)


class ConnectNodesResult(BaseModel):
    source_id: str
    connected: list[EdgeView] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)


class DeleteEdgeResult(BaseModel):
    source_id: str
    target_id: str


class DeleteCategoryResult(BaseModel):
    category_id: str
    nodes_unassigned: int = 0
