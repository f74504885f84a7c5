"""Domain model for GraphMem.

Module Structure:
- values.py: Self-validating value objects (IDs, Title, Content, Tags, ...)
- keywords.py: Keyword extraction from free text
- events.py: Domain events buffered by the unit of work
- node.py, edge.py, category.py: Aggregates
- connection_analyzer.py: Similarity scoring and edge proposal
"""

from graphmem.domain.category import Category
from graphmem.domain.connection_analyzer import (
    BidirectionalAnalysis,
    ConnectionAnalyzer,
    ConnectionCandidate,
    graph_density,
)
from graphmem.domain.edge import Edge
from graphmem.domain.keywords import extract_keywords
from graphmem.domain.node import Node
from graphmem.domain.values import (
    CategoryID,
    Content,
    Keywords,
    NodeID,
    Tags,
    Title,
    UserID,
    Version,
    Weight,
)

__all__ = [
    "BidirectionalAnalysis",
    "Category",
    "CategoryID",
    "ConnectionAnalyzer",
    "ConnectionCandidate",
    "Content",
    "Edge",
    "Keywords",
    "Node",
    "NodeID",
    "Tags",
    "Title",
    "UserID",
    "Version",
    "Weight",
    "extract_keywords",
    "graph_density",
]
