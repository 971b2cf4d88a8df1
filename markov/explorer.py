"""
markov/explorer.py - Reachable State Graph Exploration

Breadth-first discovery of every state reachable from an initial state.

Exploration Pattern:
1. Pop a FIFO batch from the frontier (one state, or max_workers states)
2. Resolve the batch through the oracle (thread pool when max_workers > 1)
3. On the calling thread, add edges and enqueue unseen targets
4. Stop when the frontier is empty (exhaustive) or iteration_limit states
   have been expanded (partial, still a valid graph)

Graph bookkeeping never leaves the calling thread, so a parallel traversal
builds exactly the graph a sequential one does.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence

import networkx as nx
import numpy as np

from receipts import emit_receipt

from .constants import ABSORBING_LABEL
from .errors import GraphConstructionError, InvalidDistribution
from .types_result import TraversalResult
from .types_state import StateHash, StateRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Edge:
    """One labeled transition in the reachable graph."""
    source: StateHash
    target: StateHash
    label: str
    weight: float


# =============================================================================
# REACHABLE GRAPH
# =============================================================================

class ReachableGraph:
    """
    Directed multigraph over StateHash nodes.

    Edges are keyed by label, so two rules leading to the same target stay
    distinguishable. Node attributes: `state`, `expanded`, `absorbing`.
    """

    def __init__(self, registry: StateRegistry):
        self.registry = registry
        self._graph = nx.MultiDiGraph()

    # --- construction ---

    def add_node(self, h: StateHash) -> None:
        if h not in self._graph:
            self._graph.add_node(h, state=self.registry.get(h), expanded=False, absorbing=False)

    def mark_expanded(self, h: StateHash, absorbing: bool = False) -> None:
        self.add_node(h)
        self._graph.nodes[h]["expanded"] = True
        self._graph.nodes[h]["absorbing"] = absorbing

    def add_edge(self, source: StateHash, target: StateHash, label: str, weight: float) -> None:
        """Add a labeled edge; a repeated (source, target, label) accumulates weight."""
        self.add_node(source)
        self.add_node(target)
        if self._graph.has_edge(source, target, key=label):
            self._graph.edges[source, target, label]["weight"] += weight
        else:
            self._graph.add_edge(source, target, key=label, weight=weight)

    # --- accessors ---

    def __contains__(self, h: object) -> bool:
        return h in self._graph

    def __len__(self) -> int:
        return self._graph.number_of_nodes()

    def nodes(self) -> List[StateHash]:
        return list(self._graph.nodes)

    def edges(self) -> List[Edge]:
        return [Edge(u, v, k, d["weight"]) for u, v, k, d in self._graph.edges(keys=True, data=True)]

    def state(self, h: StateHash) -> Any:
        try:
            return self._graph.nodes[h]["state"]
        except KeyError:
            raise KeyError(f"StateHash {h:#x} is not in the reachable graph") from None

    def expanded_nodes(self) -> List[StateHash]:
        return [h for h, expanded in self._graph.nodes(data="expanded") if expanded]

    def frontier_nodes(self) -> List[StateHash]:
        """Discovered states whose transitions were never resolved."""
        return [h for h, expanded in self._graph.nodes(data="expanded") if not expanded]

    def absorbing_nodes(self) -> List[StateHash]:
        return [h for h, absorbing in self._graph.nodes(data="absorbing") if absorbing]

    def successors(self, h: StateHash) -> List[Edge]:
        return [Edge(h, v, k, d["weight"]) for _, v, k, d in self._graph.out_edges(h, keys=True, data=True)]

    def to_networkx(self) -> nx.MultiDiGraph:
        """Copy of the underlying graph, StateHash nodes."""
        return self._graph.copy()

    def state_graph(self) -> nx.MultiDiGraph:
        """Copy of the graph relabeled with state values as nodes."""
        mapping = {h: data for h, data in self._graph.nodes(data="state")}
        return nx.relabel_nodes(self._graph, mapping, copy=True)

    def transition_matrix(self, order: Optional[Sequence[StateHash]] = None) -> np.ndarray:
        """
        Row-stochastic matrix of the expanded part of the graph.

        Args:
            order: Node order for rows and columns (default: nodes())

        Returns:
            np.ndarray: M[i, j] = total weight from order[i] to order[j].
            Rows of frontier nodes are all zero.
        """
        order = list(order) if order is not None else self.nodes()
        index = {h: i for i, h in enumerate(order)}
        matrix = np.zeros((len(order), len(order)), dtype=np.float64)
        for u, v, w in self._graph.edges(data="weight"):
            if u in index and v in index:
                matrix[index[u], index[v]] += w
        return matrix

    def is_strongly_connected(self) -> bool:
        if self._graph.number_of_nodes() == 0:
            return False
        return nx.is_strongly_connected(self._graph)


# =============================================================================
# TRAVERSAL
# =============================================================================

def _expand(graph: ReachableGraph, h: StateHash, outgoing, registry: StateRegistry,
            modify_state: Optional[Callable[[Any], Any]], frontier: Deque[StateHash]) -> None:
    if not outgoing:
        graph.mark_expanded(h, absorbing=True)
        graph.add_edge(h, h, ABSORBING_LABEL, 1.0)
        return
    graph.mark_expanded(h)
    for t in outgoing:
        if modify_state is None:
            th = t.target_hash
        else:
            target = modify_state(t.target)
            if target is None:
                continue
            th = registry.register(target)
        if th not in graph:
            graph.add_node(th)
            frontier.append(th)
        graph.add_edge(h, th, t.label, t.weight)


def full_traversal(initial_state: Any, oracle,
                   modify_state: Optional[Callable[[Any], Any]] = None,
                   iteration_limit: Optional[int] = None,
                   max_workers: Optional[int] = None,
                   receipts: Optional[List[Dict[str, Any]]] = None) -> TraversalResult:
    """
    Explore the states reachable from initial_state.

    Args:
        initial_state: Exploration root
        oracle: TransitionOracle; every state is resolved at most once
        modify_state: Maps each discovered state before deduplication;
            returning None prunes the edge. Also applied to initial_state.
        iteration_limit: Max number of states to expand (config default)
        max_workers: Thread pool width for batch resolution (config default)
        receipts: Ledger to append a traversal receipt to

    Returns:
        TraversalResult(graph, exhaustive)

    Raises:
        GraphConstructionError: a reached state has invalid transitions
    """
    return explore([initial_state], oracle, modify_state, iteration_limit, max_workers, receipts)


def explore(initial_states: Sequence[Any], oracle,
            modify_state: Optional[Callable[[Any], Any]] = None,
            iteration_limit: Optional[int] = None,
            max_workers: Optional[int] = None,
            receipts: Optional[List[Dict[str, Any]]] = None) -> TraversalResult:
    """full_traversal() seeded with several roots, expanded in the given order."""
    config = oracle.config
    limit = config.iteration_limit if iteration_limit is None else iteration_limit
    workers = config.max_workers if max_workers is None else max_workers
    registry = oracle.registry

    roots: List[StateHash] = []
    for state in initial_states:
        if modify_state is not None:
            state = modify_state(state)
            if state is None:
                raise ValueError("modify_state pruned an initial state")
        roots.append(registry.register(state))
    roots = list(dict.fromkeys(roots))
    if not roots:
        raise ValueError("traversal needs at least one initial state")

    graph = ReachableGraph(registry)
    for h in roots:
        graph.add_node(h)
    frontier: Deque[StateHash] = deque(roots)
    expanded = 0

    while frontier:
        if limit is not None and expanded >= limit:
            break
        size = min(workers, len(frontier))
        if limit is not None:
            size = min(size, limit - expanded)
        batch = [frontier.popleft() for _ in range(size)]
        try:
            resolved = oracle.resolve_hashes(batch, workers)
        except InvalidDistribution as exc:
            failed = exc.state_hash if exc.state_hash is not None else batch[0]
            raise GraphConstructionError(failed, exc) from exc
        for h, outgoing in zip(batch, resolved):
            _expand(graph, h, outgoing, registry, modify_state, frontier)
            expanded += 1

    exhaustive = not frontier
    logger.info(
        "traversal from %d root(s): %d states, %d expanded, exhaustive=%s",
        len(roots), len(graph), expanded, exhaustive,
    )
    if receipts is not None and config.emit_receipts:
        receipts.append(emit_receipt("traversal", {
            "tenant_id": config.tenant_id,
            "roots": [f"{h:#x}" for h in roots],
            "nodes": len(graph),
            "edges": len(graph.edges()),
            "expanded": expanded,
            "iteration_limit": limit,
            "exhaustive": exhaustive,
        }))
    return TraversalResult(graph, exhaustive)
