"""
markov/types_result.py - Result Containers

Immutable results returned by the explorer and the convergence analyzer.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, NamedTuple

from .distribution import Distribution

if TYPE_CHECKING:
    from .explorer import ReachableGraph


class TraversalResult(NamedTuple):
    """Reachable graph plus whether exploration ran to an empty frontier."""
    graph: "ReachableGraph"
    exhaustive: bool

    @property
    def iterations(self) -> int:
        """Number of states whose transitions were expanded."""
        return len(self.graph.expanded_nodes())


@dataclass(frozen=True)
class ConvergenceResult:
    """Outcome of iterating a distribution towards a fixed point."""
    distribution: Distribution
    iterations: int
    converged: bool
    max_deviation: float
