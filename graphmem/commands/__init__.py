"""Write side: command models and handlers.

Module Structure:
- models.py: Pydantic commands, views and results
- handlers.py: NodeCommandHandler, CategoryCommandHandler
"""

from graphmem.commands.handlers import CategoryCommandHandler, NodeCommandHandler
from graphmem.commands.models import (
    ArchiveNodeCommand,
    BulkCreateNodesCommand,
    BulkCreateResult,
    BulkDeleteNodesCommand,
    BulkDeleteResult,
    BulkNodeInput,
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
    parse_command,
)

__all__ = [
    "ArchiveNodeCommand",
    "BulkCreateNodesCommand",
    "BulkCreateResult",
    "BulkDeleteNodesCommand",
    "BulkDeleteResult",
    "BulkNodeInput",
    "CategorizeNodeCommand",
    "CategoryCommandHandler",
    "CategoryView",
    "ConnectNodesCommand",
    "ConnectNodesResult",
    "CreateCategoryCommand",
    "CreateNodeCommand",
    "CreateNodeResult",
    "DeleteCategoryCommand",
    "DeleteCategoryResult",
    "DeleteEdgeCommand",
    "DeleteEdgeResult",
    "DeleteNodeCommand",
    "DeleteNodeResult",
    "EdgeView",
    "NodeCommandHandler",
    "NodeView",
    "UpdateCategoryCommand",
    "UpdateNodeCommand",
    "UpdateNodeResult",
    "parse_command",
]
