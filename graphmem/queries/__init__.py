"""Read side: cached query services.

Module Structure:
- cache.py: QueryCache (TTL + LRU, user/node invalidation)
- models.py: Read-side result models
- service.py: GraphQueryService
"""

from graphmem.queries.cache import CacheStats, QueryCache
from graphmem.queries.models import (
    CategoryPage,
    GraphStats,
    GraphView,
    KeywordCount,
    NodeConnections,
    NodePage,
    SimilarNode,
)
from graphmem.queries.service import GraphQueryService

__all__ = [
    "CacheStats",
    "CategoryPage",
    "GraphQueryService",
    "GraphStats",
    "GraphView",
    "KeywordCount",
    "NodeConnections",
    "NodePage",
    "QueryCache",
    "SimilarNode",
]
