"""
tests/test_explorer.py - Reachable graph exploration

Every test has assert statements.
"""

import numpy as np
import pytest

from markov.constants import ABSORBING_LABEL
from markov.errors import GraphConstructionError, InvalidDistribution
from markov.explorer import ReachableGraph, explore, full_traversal
from markov.oracle import TransitionOracle
from markov.types_config import ChainConfig


class CountingRing:
    """Symmetric walk on a ring of n states, counting invocations per state."""

    def __init__(self, n):
        self.n = n
        self.seen = []

    def __call__(self, state):
        self.seen.append(state)
        return [((state + 1) % self.n, "cw", 0.5), ((state - 1) % self.n, "ccw", 0.5)]


def random_walk(state):
    return [(state + 1, "right", 0.5), (state - 1, "left", 0.5)]


class TestExhaustive:
    """Finite strongly connected chains."""

    def test_ring_visits_each_state_once(self):
        ring = CountingRing(5)
        oracle = TransitionOracle(ring)
        result = full_traversal(0, oracle)
        assert result.exhaustive, "Finite ring should be explored exhaustively"
        assert len(result.graph) == 5, f"Expected 5 states, got {len(result.graph)}"
        assert len(result.graph.edges()) == 10, f"Expected 10 edges, got {len(result.graph.edges())}"
        assert sorted(ring.seen) == [0, 1, 2, 3, 4], f"Each state resolved once, got {ring.seen}"
        assert oracle.calls == 5
        assert result.iterations == 5

    def test_order_independent(self):
        """Starting anywhere on the ring yields the same node set."""
        a = full_traversal(0, TransitionOracle(CountingRing(6))).graph
        b = full_traversal(3, TransitionOracle(CountingRing(6))).graph
        assert {a.state(h) for h in a.nodes()} == {b.state(h) for h in b.nodes()}

    def test_strongly_connected(self):
        result = full_traversal(0, TransitionOracle(CountingRing(4)))
        assert result.graph.is_strongly_connected()

    def test_reuses_oracle_cache(self):
        """A second traversal over the same oracle does not re-run the function."""
        ring = CountingRing(5)
        oracle = TransitionOracle(ring)
        full_traversal(0, oracle)
        full_traversal(2, oracle)
        assert len(ring.seen) == 5

    def test_two_state_ring_keeps_both_labels(self):
        """Edges to the same target with different labels stay distinct."""
        result = full_traversal(0, TransitionOracle(CountingRing(2)))
        successors = result.graph.successors(result.graph.registry.hash_of(0))
        assert sorted(e.label for e in successors) == ["ccw", "cw"]

    def test_transition_matrix_row_stochastic(self):
        graph = full_traversal(0, TransitionOracle(CountingRing(5))).graph
        matrix = graph.transition_matrix()
        assert matrix.shape == (5, 5)
        assert np.allclose(matrix.sum(axis=1), 1.0)

    def test_state_graph(self):
        graph = full_traversal(0, TransitionOracle(CountingRing(3))).graph
        sg = graph.state_graph()
        assert set(sg.nodes) == {0, 1, 2}
        assert sg.has_edge(0, 1, key="cw")


class TestIterationLimit:
    """Partial exploration."""

    def test_partial_graph(self):
        oracle = TransitionOracle(random_walk)
        result = full_traversal(0, oracle, iteration_limit=3)
        assert not result.exhaustive, "Infinite walk cannot be exhausted"
        assert result.iterations == 3
        assert oracle.calls == 3
        assert len(result.graph.frontier_nodes()) > 0

    def test_zero_limit(self):
        result = full_traversal(0, TransitionOracle(random_walk), iteration_limit=0)
        assert not result.exhaustive
        assert len(result.graph) == 1
        assert result.graph.frontier_nodes() == result.graph.nodes()

    def test_config_limit(self):
        oracle = TransitionOracle(random_walk, ChainConfig(iteration_limit=4))
        result = full_traversal(0, oracle)
        assert result.iterations == 4

    def test_limit_not_hit(self):
        result = full_traversal(0, TransitionOracle(CountingRing(3)), iteration_limit=100)
        assert result.exhaustive


class TestModifyState:
    """Canonicalization and pruning of discovered states."""

    def test_canonicalization(self):
        """Folding the infinite walk to |state| bounded by 2 makes it finite."""
        result = full_traversal(0, TransitionOracle(random_walk), modify_state=lambda s: min(abs(s), 2))
        assert result.exhaustive
        assert {result.graph.state(h) for h in result.graph.nodes()} == {0, 1, 2}

    def test_pruning(self):
        """Returning None drops the edge and never enqueues the target."""
        result = full_traversal(0, TransitionOracle(random_walk),
                                modify_state=lambda s: s if 0 <= s <= 3 else None)
        assert result.exhaustive
        states = {result.graph.state(h) for h in result.graph.nodes()}
        assert states == {0, 1, 2, 3}


class TestAbsorbing:
    """Absorbing states get an explicit self-loop."""

    def test_self_loop_edge(self):
        oracle = TransitionOracle(lambda s: [] if s == "end" else [("end", "finish", 1.0)])
        result = full_traversal("start", oracle)
        end = oracle.registry.hash_of("end")
        assert result.exhaustive
        assert end in result.graph.absorbing_nodes()
        loops = result.graph.successors(end)
        assert len(loops) == 1
        assert loops[0].target == end and loops[0].label == ABSORBING_LABEL and loops[0].weight == 1.0


class TestErrors:
    """Invalid states abort exploration."""

    def test_graph_construction_error(self):
        def broken(state):
            if state == 2:
                return [(3, "bad", 0.4)]
            return [(state + 1, "next", 1.0)]

        oracle = TransitionOracle(broken)
        with pytest.raises(GraphConstructionError) as exc_info:
            full_traversal(0, oracle)
        assert exc_info.value.state_hash == oracle.registry.hash_of(2)
        assert isinstance(exc_info.value.__cause__, InvalidDistribution)

    def test_pruned_initial_state(self):
        with pytest.raises(ValueError):
            full_traversal(0, TransitionOracle(random_walk), modify_state=lambda s: None)


class TestParallel:
    """Parallel batches build the sequential graph."""

    def test_parallel_matches_sequential(self):
        seq = full_traversal(0, TransitionOracle(random_walk), iteration_limit=25).graph
        par = full_traversal(0, TransitionOracle(random_walk), iteration_limit=25, max_workers=4).graph
        assert seq.nodes() == par.nodes(), "Discovery order must match"
        assert seq.edges() == par.edges()
        assert seq.expanded_nodes() == par.expanded_nodes()

    def test_parallel_exactly_once(self):
        ring = CountingRing(12)
        result = full_traversal(0, TransitionOracle(ring, ChainConfig(max_workers=4)))
        assert result.exhaustive
        assert sorted(ring.seen) == list(range(12))


class TestExplore:
    """Multiple roots and receipts."""

    def test_two_roots(self):
        oracle = TransitionOracle(lambda s: [])
        result = explore(["a", "b"], oracle)
        assert len(result.graph) == 2
        assert len(result.graph.absorbing_nodes()) == 2

    def test_traversal_receipt(self):
        receipts = []
        full_traversal(0, TransitionOracle(CountingRing(4)), receipts=receipts)
        assert len(receipts) == 1
        assert receipts[0]["receipt_type"] == "traversal"
        assert receipts[0]["nodes"] == 4
        assert receipts[0]["exhaustive"] is True

    def test_empty_graph_not_connected(self):
        graph = ReachableGraph(TransitionOracle(random_walk).registry)
        assert not graph.is_strongly_connected()
