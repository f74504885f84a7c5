"""Connection analyzer tests.

Tests:
- Jaccard scoring and the inclusive threshold boundary
- Ordering, tie stability and caps
- Tag bonus and recency boost
- Degenerate input (no keywords, empty corpus, self)
- Bidirectional analysis and graph density
"""

from datetime import datetime, timedelta, timezone

import pytest

from graphmem.domain.connection_analyzer import (
    BidirectionalAnalysis,
    ConnectionAnalyzer,
    graph_density,
    recency,
)
from graphmem.domain.node import Node
from graphmem.domain.values import Content, Tags, Title, UserID

USER = UserID("user-1")


def node(title: str, content: str, tags=(), now=None) -> Node:
    return Node.create(USER, Title(title), Content(content), Tags.of(tags), now=now)


@pytest.fixture
def plain():
    """Analyzer without tag bonus or recency."""
    return ConnectionAnalyzer(threshold=0.3, max_connections=5, max_connections_limit=10, tag_bonus=0.0)


class TestSimilarity:
    """Test pairwise scoring."""

    def test_jaccard_ratio(self, plain):
        a = node("alpha", "beta")
        b = node("alpha", "gamma")
        assert plain.similarity(a, b) == pytest.approx(1 / 3)

    def test_identical_keywords_score_one(self, plain):
        assert plain.similarity(node("alpha", "beta"), node("beta", "alpha")) == 1.0

    def test_disjoint_scores_zero(self, plain):
        assert plain.similarity(node("alpha", "beta"), node("delta", "epsilon")) == 0.0

    def test_missing_or_empty_scores_zero(self, plain):
        """None nodes and keyword-less nodes never raise."""
        empty = node("the", "a an")
        assert plain.similarity(None, node("alpha", "beta")) == 0.0
        assert plain.similarity(empty, node("alpha", "beta")) == 0.0

    def test_tag_bonus_applies_only_with_keyword_overlap(self):
        analyzer = ConnectionAnalyzer(tag_bonus=0.1)
        a = node("alpha", "beta", tags=["x"])
        b = node("alpha", "gamma", tags=["x"])
        c = node("delta", "epsilon", tags=["x"])
        assert analyzer.similarity(a, b) == pytest.approx(1 / 3 + 0.1)
        assert analyzer.similarity(a, c) == 0.0

    def test_score_capped_at_one(self):
        analyzer = ConnectionAnalyzer(tag_bonus=0.5)
        a = node("alpha", "beta", tags=["x"])
        b = node("alpha", "beta", tags=["x"])
        assert analyzer.similarity(a, b) == 1.0

    def test_recency_boost(self):
        now = datetime(2026, 1, 31, tzinfo=timezone.utc)
        analyzer = ConnectionAnalyzer(tag_bonus=0.0, recency_weight=0.1)
        a = node("alpha", "beta", now=now)
        fresh = node("alpha", "gamma", now=now)
        stale = node("alpha", "delta", now=now - timedelta(days=300))
        assert analyzer.similarity(a, fresh, now) == pytest.approx(1 / 3 + 0.1)
        assert analyzer.similarity(a, stale, now) < analyzer.similarity(a, fresh, now)

    def test_recency_decay(self):
        now = datetime(2026, 1, 31, tzinfo=timezone.utc)
        assert recency(node("alpha", "beta", now=now), now) == pytest.approx(1.0)
        assert recency(node("alpha", "beta", now=now - timedelta(days=30)), now) == pytest.approx(0.3679, abs=1e-3)


class TestFindConnections:
    """Test candidate selection."""

    def test_threshold_boundary_is_inclusive(self):
        """A score exactly at the threshold is kept; just above it is not."""
        a = node("alpha", "beta")
        b = node("alpha", "gamma")

        at = ConnectionAnalyzer(threshold=1 / 3, tag_bonus=0.0)
        above = ConnectionAnalyzer(threshold=0.34, tag_bonus=0.0)

        assert [c.target for c in at.find_connections(a, [b])] == [b]
        assert above.find_connections(a, [b]) == []

    def test_sorted_descending_and_capped(self, plain):
        a = node("alpha beta", "gamma delta")
        strong = node("alpha beta", "gamma delta")       # 1.0
        medium = node("alpha beta", "gamma omega")       # 3/5
        weak = node("alpha beta", "sigma omega")         # 2/6
        none = node("zeta", "theta")

        result = plain.find_connections(a, [weak, none, medium, strong])
        assert [c.target for c in result] == [strong, medium, weak]
        assert [round(c.score, 3) for c in result] == [1.0, 0.6, 0.333]

        capped = plain.find_connections(a, [weak, none, medium, strong], max_connections=2)
        assert [c.target for c in capped] == [strong, medium]

    def test_requested_max_bounded_by_limit(self):
        analyzer = ConnectionAnalyzer(max_connections=5, max_connections_limit=2, tag_bonus=0.0)
        a = node("alpha", "beta")
        corpus = [node("alpha", "beta") for _ in range(4)]
        assert len(analyzer.find_connections(a, corpus, max_connections=50)) == 2
        assert analyzer.connection_limit == 2

    def test_ties_keep_corpus_order(self, plain):
        a = node("alpha", "beta")
        first, second, third = (node("alpha", "beta") for _ in range(3))
        result = plain.find_connections(a, [first, second, third])
        assert [c.target for c in result] == [first, second, third]

    def test_excludes_self(self, plain):
        a = node("alpha", "beta")
        assert plain.find_connections(a, [a]) == []

    def test_degenerate_inputs(self, plain):
        a = node("alpha", "beta")
        assert plain.find_connections(None, [a]) == []
        assert plain.find_connections(a, []) == []
        assert plain.find_connections(a, None) == []
        assert plain.find_connections(node("the", "and"), [a]) == []
        assert plain.find_connections(a, [a, node("alpha", "beta")], max_connections=0) == []

    def test_candidate_explains_match(self):
        analyzer = ConnectionAnalyzer(tag_bonus=0.1)
        a = node("alpha", "beta", tags=["x"])
        b = node("alpha", "beta", tags=["x", "y"])
        [candidate] = analyzer.find_connections(a, [b])
        assert candidate.matched_keywords == ["alpha", "beta"]
        assert candidate.shared_tags == ["x"]
        assert "2 shared keyword(s)" in candidate.reason

    def test_from_config(self, config):
        analyzer = ConnectionAnalyzer.from_config(config)
        assert analyzer.threshold == config.similarity_threshold
        assert analyzer.max_connections == config.max_connections


class TestBidirectional:
    """Test analyze_bidirectional."""

    def test_symmetric_without_boosts(self, plain):
        analysis = plain.analyze_bidirectional(node("alpha", "beta"), node("alpha", "gamma"))
        assert analysis.is_symmetric
        assert analysis.should_connect
        assert analysis.weight == analysis.forward_score

    def test_connects_if_either_direction_passes(self):
        analysis = BidirectionalAnalysis(forward_score=0.1, backward_score=0.5, threshold=0.3)
        assert analysis.should_connect
        assert not analysis.is_symmetric
        assert analysis.weight == 0.1

    def test_below_threshold_both_ways(self, plain):
        analysis = plain.analyze_bidirectional(node("alpha", "beta"), node("delta", "epsilon"))
        assert not analysis.should_connect


class TestGraphDensity:
    @pytest.mark.parametrize("nodes,edges,expected", [(0, 0, 0.0), (1, 0, 0.0), (2, 2, 1.0), (3, 3, 0.5), (4, 0, 0.0)])
    def test_density(self, nodes, edges, expected):
        assert graph_density(nodes, edges) == pytest.approx(expected)
