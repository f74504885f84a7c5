"""Connection discovery between nodes.

Scores node pairs by keyword overlap and proposes edges:
1. Jaccard ratio of the two keyword sets (0 when either is empty)
2. Optional tag-overlap bonus when both nodes carry tags
3. Optional recency boost for recently updated targets
4. Filter at threshold (inclusive), stable sort descending, cap

No I/O: the caller supplies the corpus. Degenerate input yields no
candidates instead of an error.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from graphmem.domain.events import utcnow
from graphmem.domain.node import Node
from graphmem.log_config import get_logger

log = get_logger("analyzer")

DEFAULT_THRESHOLD = 0.3
DEFAULT_MAX_CONNECTIONS = 5
DEFAULT_MAX_CONNECTIONS_LIMIT = 10
DEFAULT_TAG_BONUS = 0.1
RECENCY_DECAY_DAYS = 30.0
SYMMETRY_TOLERANCE = 0.1


@dataclass
class ConnectionCandidate:
    """Proposed edge from an analyzed node to ``target``."""

    target: Node
    score: float
    matched_keywords: list[str] = field(default_factory=list)
    shared_tags: list[str] = field(default_factory=list)
    reason: str = ""


@dataclass
class BidirectionalAnalysis:
    forward_score: float
    backward_score: float
    threshold: float

    @property
    def should_connect(self) -> bool:
        return self.forward_score >= self.threshold or self.backward_score >= self.threshold

    @property
    def weight(self) -> float:
        """Edge weight always follows the forward direction."""
        return self.forward_score

    @property
    def is_symmetric(self) -> bool:
        return abs(self.forward_score - self.backward_score) < SYMMETRY_TOLERANCE


def recency(node: Node, now: datetime | None = None) -> float:
    """Exponential decay in [0, 1] on days since the node was last updated."""
    now = now or utcnow()
    age_days = max((now - node.updated_at).total_seconds(), 0.0) / 86400.0
    return math.exp(-age_days / RECENCY_DECAY_DAYS)


class ConnectionAnalyzer:
    """Keyword-similarity analyzer proposing edges for a node.

    Args:
        threshold: Minimum score for a candidate (compared with >=)
        max_connections: Default number of candidates returned
        max_connections_limit: Hard cap on any requested maximum
        tag_bonus: Multiplier for tag Jaccard, applied when both sides have tags
        recency_weight: Multiplier for the target's recency score
    """

    def __init__(
        self,
        threshold: float = DEFAULT_THRESHOLD,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        max_connections_limit: int = DEFAULT_MAX_CONNECTIONS_LIMIT,
        tag_bonus: float = DEFAULT_TAG_BONUS,
        recency_weight: float = 0.0,
    ):
        self.threshold = threshold
        self.max_connections = max_connections
        self.max_connections_limit = max_connections_limit
        self.tag_bonus = tag_bonus
        self.recency_weight = recency_weight

    @classmethod
    def from_config(cls, config) -> "ConnectionAnalyzer":
        return cls(
            threshold=config.similarity_threshold,
            max_connections=config.max_connections,
            max_connections_limit=config.max_connections_limit,
            tag_bonus=config.tag_bonus,
            recency_weight=config.recency_weight,
        )

    def similarity(self, source: Node | None, target: Node | None, now: datetime | None = None) -> float:
        """Score ``target`` as seen from ``source``, in [0, 1]."""
        if source is None or target is None:
            return 0.0
        if not source.keywords or not target.keywords:
            return 0.0

        score = source.keywords.overlap(target.keywords)
        if score == 0.0:
            return 0.0
        if self.tag_bonus and source.tags and target.tags:
            score += self.tag_bonus * source.tags.overlap(target.tags)
        if self.recency_weight:
            score += self.recency_weight * recency(target, now)
        return min(score, 1.0)

    @property
    def connection_limit(self) -> int:
        """Effective number of candidates returned by default."""
        return self._limit(None)

    def _limit(self, max_connections: int | None) -> int:
        requested = self.max_connections if max_connections is None else max_connections
        return max(0, min(requested, self.max_connections_limit))

    def find_connections(
        self,
        node: Node | None,
        corpus: Iterable[Node] | None,
        max_connections: int | None = None,
        now: datetime | None = None,
    ) -> list[ConnectionCandidate]:
        """Propose edges from ``node`` to members of ``corpus``.

        Args:
            node: Node being analyzed
            corpus: Existing nodes of the same user (may include ``node``)
            max_connections: Override for the default cap (still bounded by the limit)
            now: Reference time for recency

        Returns:
            Candidates sorted by score descending; ties keep corpus order
        """
        if node is None or not corpus or not node.keywords:
            return []

        limit = self._limit(max_connections)
        if limit == 0:
            return []

        candidates = []
        for other in corpus:
            if other is None or other.id == node.id:
                continue
            score = self.similarity(node, other, now)
            if score < self.threshold or score <= 0.0:
                continue
            matched = node.keywords.shared_with(other.keywords)
            shared_tags = node.tags.shared_with(other.tags)
            reason = f"{len(matched)} shared keyword(s): {', '.join(matched[:5])}"
            if shared_tags:
                reason += f"; shared tags: {', '.join(shared_tags)}"
            candidates.append(ConnectionCandidate(
                target=other,
                score=score,
                matched_keywords=matched,
                shared_tags=shared_tags,
                reason=reason,
            ))

        # list.sort is stable
        candidates.sort(key=lambda c: c.score, reverse=True)
        result = candidates[:limit]
        log.debug(f"Analyzer: node={node.id} candidates={len(candidates)} kept={len(result)}")
        return result

    def analyze_bidirectional(self, a: Node, b: Node, now: datetime | None = None) -> BidirectionalAnalysis:
        """Score both directions independently (used for intra-batch pairs)."""
        return BidirectionalAnalysis(
            forward_score=self.similarity(a, b, now),
            backward_score=self.similarity(b, a, now),
            threshold=self.threshold,
        )


def graph_density(node_count: int, edge_count: int) -> float:
    """Directed density: edges / (n * (n - 1)); 0 for fewer than two nodes."""
    if node_count < 2 or edge_count <= 0:
        return 0.0
    return edge_count / (node_count * (node_count - 1))
