"""
markov/engine.py - SimulationEngine

Sequential evolution of a probability distribution over states.

Lifecycle:
    Initialized (t=0, history=[initial])  ->  Stepped(t)  ->  Stepped(t+1) ...

The chain never terminates on its own. Callers pull one distribution at a
time with next_step() or advance(); stopping is simply not pulling again.
Restarting means constructing a new engine.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from entropy import emit_entropy_measurement
from receipts import ReceiptLedger, emit_receipt

from .config_schema import config_hash
from .convergence import iterate_to_steady
from .distribution import Distribution, accumulate, normalize, prune, step
from .errors import CursorMismatch, HistoryTruncated, NotYetComputed
from .explorer import explore
from .oracle import TransitionOracle
from .rules import Rule, RuleEngine
from .types_config import ChainConfig
from .types_result import TraversalResult
from .types_state import StateHash, StateRegistry
from .validation import validate_conservation, validate_weight

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Cursor:
    """Position handed out by advance(); only valid for its engine and time."""
    engine_id: str
    time: int


def make_oracle(transition_function, oracle: Optional[TransitionOracle],
                config: Optional[ChainConfig]) -> TransitionOracle:
    if (transition_function is None) == (oracle is None):
        raise ValueError("pass exactly one of transition_function or oracle")
    if oracle is not None:
        return oracle
    if isinstance(transition_function, RuleEngine):
        return transition_function.oracle(config)
    return TransitionOracle(transition_function, config)


class SimulationEngine:
    """
    Owns the history of a chain and steps it through a shared oracle.

    States are identified by type and value: 1, 1.0 and True are three
    different states even though they compare equal in Python. Instances of
    plain classes are identified by their type and instance attributes.

    Args:
        initial_state: State holding all mass at t=0
        transition_function: Pure state -> transitions callable (or RuleEngine)
        oracle: Existing TransitionOracle to share instead of a function
        config: ChainConfig (defaults to the oracle's)
        receipt_sink: Open text handle receipts are streamed to as JSONL
            (default: config.receipt_path, if set)
    """

    def __init__(self, initial_state: Any, transition_function=None, *,
                 oracle: Optional[TransitionOracle] = None,
                 config: Optional[ChainConfig] = None, receipt_sink=None):
        oracle = make_oracle(transition_function, oracle, config)
        start = Distribution.point(oracle.registry.register(initial_state), oracle.registry.hash_bytes)
        self._setup(oracle, config, [start], 0, start, receipt_sink=receipt_sink)

    @classmethod
    def from_distribution(cls, masses: Mapping[Any, float], transition_function=None, *,
                          oracle: Optional[TransitionOracle] = None,
                          config: Optional[ChainConfig] = None,
                          receipt_sink=None) -> "SimulationEngine":
        """Engine whose t=0 distribution is state -> mass (must sum to 1)."""
        oracle = make_oracle(transition_function, oracle, config)
        tolerance = (config or oracle.config).probability_tolerance
        start = Distribution.from_states(masses, oracle.registry, tolerance)
        return cls._restore(oracle, config, [start], 0, start, receipt_sink=receipt_sink)

    @classmethod
    def from_rules(cls, initial_state: Any, rules: Iterable[Rule], weighting: str = "direct",
                   config: Optional[ChainConfig] = None) -> "SimulationEngine":
        """Engine over a fresh RuleEngine built from rules."""
        return cls(initial_state, RuleEngine(rules, weighting, config=config), config=config)

    @classmethod
    def _restore(cls, oracle: TransitionOracle, config: Optional[ChainConfig],
                 history: Sequence[Distribution], origin: int,
                 initial: Distribution, pruned_total: float = 0.0,
                 receipt_sink=None) -> "SimulationEngine":
        engine = cls.__new__(cls)
        engine._setup(oracle, config, history, origin, initial, pruned_total, receipt_sink)
        return engine

    def _setup(self, oracle, config, history, origin, initial,
               pruned_total: float = 0.0, receipt_sink=None) -> None:
        self.config = config or oracle.config
        self._oracle = oracle
        self._history: List[Distribution] = list(history)
        self._origin = origin
        self._initial = initial
        self._id = uuid.uuid4().hex
        self._config_hash = config_hash(self.config)
        self._pruned_total = pruned_total
        sink = receipt_sink if receipt_sink is not None else self.config.receipt_path
        self._receipts = ReceiptLedger(self.config.receipt_buffer, sink)

    # --- accessors ---

    @property
    def oracle(self) -> TransitionOracle:
        return self._oracle

    @property
    def registry(self) -> StateRegistry:
        return self._oracle.registry

    @property
    def time(self) -> int:
        return self._origin + len(self._history) - 1

    @property
    def origin(self) -> int:
        """Earliest time still held in history."""
        return self._origin

    @property
    def history(self) -> Tuple[Distribution, ...]:
        return tuple(self._history)

    @property
    def current(self) -> Distribution:
        return self._history[-1]

    @property
    def initial_distribution(self) -> Distribution:
        return self._initial

    @property
    def receipts(self) -> ReceiptLedger:
        return self._receipts

    @property
    def pruned_total(self) -> float:
        """Mass dropped by pruning over the whole run, truncated steps included."""
        return self._pruned_total

    def _prune_budget(self) -> float:
        return self.config.probability_tolerance - self._pruned_total

    # --- stepping ---

    def next_step(self) -> Distribution:
        """Compute and record the distribution at time + 1."""
        prev = self.current
        nxt = step(prev, self._oracle,
                   prune_threshold=self.config.prune_threshold,
                   tolerance=self.config.probability_tolerance,
                   max_workers=self.config.max_workers,
                   prune_budget=self._prune_budget())
        self._pruned_total += nxt.pruned_mass
        self._history.append(nxt)
        self._record("chain_step", prev, nxt)
        return nxt

    def run(self, steps: int) -> Distribution:
        """Take steps next_step()s; returns the final distribution."""
        if steps < 0:
            raise ValueError(f"steps must be >= 0, got {steps}")
        for _ in range(steps):
            self.next_step()
        return self.current

    def cursor(self) -> Cursor:
        return Cursor(self._id, self.time)

    def advance(self, cursor: Optional[Cursor] = None) -> Tuple[Distribution, Cursor]:
        """
        Pull exactly one new distribution.

        Args:
            cursor: The cursor returned by the previous advance() (None to start)

        Returns:
            (distribution at the new time, cursor for the next call)

        Raises:
            CursorMismatch: cursor is stale or belongs to another engine
        """
        expected = self.cursor()
        if cursor is not None and cursor != expected:
            raise CursorMismatch(expected, cursor)
        nxt = self.next_step()
        return nxt, self.cursor()

    # --- history queries ---

    def _index(self, t: int) -> int:
        if t > self.time:
            raise NotYetComputed(t, self.time)
        if t < self._origin:
            raise HistoryTruncated(t, self._origin)
        return t - self._origin

    def distribution(self, t: int) -> Distribution:
        return self._history[self._index(t)]

    def probability_distribution(self, t: int) -> Dict[Any, float]:
        """State value -> mass at time t."""
        dist = self.distribution(t)
        return {self.registry.get(h): m for h, m in dist.items()}

    def entropy(self, t: Optional[int] = None) -> float:
        return self.distribution(self.time if t is None else t).entropy()

    def probability(self, t: int, state: Any) -> float:
        return self.distribution(t).mass(self.registry.hash_of(state))

    def euclidean_norm(self, t: Optional[int] = None) -> float:
        return self.distribution(self.time if t is None else t).euclidean_norm()

    # --- intervention ---

    def apply_intervention(self, rule: Rule) -> Distribution:
        """
        Force rule's action on every supported state, ignoring its condition.

        With action weight w, w of a state's mass moves to the action target
        and 1 - w stays. A target equal to the source keeps its mass as is.
        The result is appended to history as the next time step.
        """
        prev = self.current
        registry = self.registry
        contributions: Dict[StateHash, List[float]] = defaultdict(list)
        for h, m in prev.items():
            state = registry.get(h)
            t = rule.apply(state)
            validate_weight(state, t.weight, h)
            th = registry.register(t.target)
            if th == h:
                contributions[h].append(m)
                continue
            moved = m * t.weight
            contributions[th].append(moved)
            contributions[h].append(m - moved)

        eps = self.config.probability_tolerance
        masses = accumulate(contributions, "intervention accumulation")
        masses = {h: m for h, m in masses.items() if m > 0.0}
        masses, dropped = prune(masses, self.config.prune_threshold, self._prune_budget())
        masses = normalize(masses, "intervention normalization")
        nxt = Distribution(masses, pruned_mass=dropped, hash_bytes=registry.hash_bytes)
        validate_conservation(nxt.total(), eps, self.time + 1)

        self._pruned_total += dropped
        self._history.append(nxt)
        logger.debug("intervention %r applied at time %d", rule.name, self.time)
        self._record("intervention", prev, nxt, rule_name=rule.name)
        return nxt

    # --- derived engines and analysis ---

    def clone_without_history(self) -> "SimulationEngine":
        """Engine sharing oracle, cache and registry, holding only the current step."""
        return self._restore(self._oracle, self.config, [self.current], self.time, self._initial,
                             self._pruned_total, self._receipts.sink)

    def known_states(self) -> Dict[StateHash, Any]:
        """States seen in retained history or in the transition cache."""
        seen = dict.fromkeys(h for dist in self._history for h in dist)
        cache = self._oracle.cache
        for h in cache.hashes():
            seen[h] = None
            for t in cache.get(h) or ():
                seen[t.target_hash] = None
        return {h: self.registry.get(h) for h in seen}

    def full_traversal(self, modify_state=None, iteration_limit: Optional[int] = None,
                       max_workers: Optional[int] = None) -> TraversalResult:
        """Reachable graph from the initial distribution's support; history is untouched."""
        roots = [self.registry.get(h) for h in self._initial]
        return explore(roots, self._oracle, modify_state, iteration_limit, max_workers, self._receipts)

    def uniform_distribution_is_steady(self, iteration_limit: Optional[int] = None) -> bool:
        """
        Explore the reachable states, then check whether the uniform
        distribution over them is a fixed point within iteration_limit steps
        (config.convergence_iteration_limit by default).
        """
        graph = self.full_traversal().graph
        uniform = Distribution.uniform(graph.nodes(), self.registry.hash_bytes)
        result = iterate_to_steady(self._oracle, uniform, iteration_limit,
                                   self.config.convergence_tolerance, self._receipts)
        return result.converged

    # --- receipts ---

    def _record(self, kind: str, prev: Distribution, nxt: Distribution, **extra) -> None:
        if not self.config.emit_receipts:
            return
        self._receipts.append(emit_receipt(kind, {
            "tenant_id": self.config.tenant_id,
            "time": self.time,
            "support_size": len(nxt),
            "entropy": nxt.entropy(),
            "pruned_mass": nxt.pruned_mass,
            "pruned_total": self._pruned_total,
            "oracle_calls": self._oracle.calls,
            "config_hash": self._config_hash,
            **extra,
        }))
        self._receipts.append(
            emit_entropy_measurement(self.config.tenant_id, self.time, prev.values(), nxt.values())
        )
