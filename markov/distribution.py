"""
markov/distribution.py - Probability Mass Over States

Distribution: immutable StateHash -> mass mapping with derived statistics.
step(): one application of the transition structure to a distribution.

Masses are accumulated with math.fsum per target and renormalized after each
step, so the total stays at 1.0 by construction rather than by luck.
"""

import logging
import math
from collections import defaultdict
from collections.abc import Mapping
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np

from entropy import euclidean_norm, shannon_entropy

from .constants import DEFAULT_HASH_BYTES, DEFAULT_PROBABILITY_TOLERANCE
from .errors import ArithmeticOverflow
from .types_state import StateHash, StateRegistry, state_hash
from .validation import checked_sum, validate_conservation

logger = logging.getLogger(__name__)


class Distribution(Mapping):
    """Immutable StateHash -> probability mass mapping (zero masses omitted)."""

    __slots__ = ("_masses", "_pruned_mass", "_hash_bytes")

    def __init__(self, masses: Mapping, pruned_mass: float = 0.0,
                 hash_bytes: int = DEFAULT_HASH_BYTES):
        clean: Dict[StateHash, float] = {}
        for h, m in masses.items():
            m = float(m)
            if not math.isfinite(m):
                raise ArithmeticOverflow(f"mass of state {h:#x}", m)
            if m < 0.0:
                raise ValueError(f"negative mass {m!r} for state {h:#x}")
            if m > 0.0:
                clean[h] = m
        self._masses = clean
        self._pruned_mass = pruned_mass
        self._hash_bytes = hash_bytes

    # --- constructors ---

    @classmethod
    def point(cls, h: StateHash, hash_bytes: int = DEFAULT_HASH_BYTES) -> "Distribution":
        return cls({h: 1.0}, hash_bytes=hash_bytes)

    @classmethod
    def uniform(cls, hashes: Iterable[StateHash], hash_bytes: int = DEFAULT_HASH_BYTES) -> "Distribution":
        unique = list(dict.fromkeys(hashes))
        if not unique:
            raise ValueError("uniform distribution needs at least one state")
        p = 1.0 / len(unique)
        return cls({h: p for h in unique}, hash_bytes=hash_bytes)

    @classmethod
    def from_states(cls, masses: Mapping, registry: StateRegistry,
                    tolerance: float = DEFAULT_PROBABILITY_TOLERANCE) -> "Distribution":
        """
        Build from a state -> mass mapping, registering each state.

        Masses for states with equal hashes are summed; the total must be 1
        within tolerance.
        """
        parts: Dict[StateHash, List[float]] = defaultdict(list)
        for state, mass in masses.items():
            parts[registry.register(state)].append(float(mass))
        combined = {h: checked_sum(ms, "initial distribution") for h, ms in parts.items()}
        validate_conservation(checked_sum(combined.values(), "initial distribution total"), tolerance)
        return cls(combined, hash_bytes=registry.hash_bytes)

    # --- Mapping protocol ---

    def __getitem__(self, h: StateHash) -> float:
        return self._masses[h]

    def __iter__(self) -> Iterator[StateHash]:
        return iter(self._masses)

    def __len__(self) -> int:
        return len(self._masses)

    def __repr__(self) -> str:
        body = ", ".join(f"{h:#x}: {m!r}" for h, m in self._masses.items())
        return f"Distribution({{{body}}})"

    # --- statistics ---

    @property
    def pruned_mass(self) -> float:
        """Mass dropped by pruning when this distribution was produced."""
        return self._pruned_mass

    @property
    def hash_bytes(self) -> int:
        """Width of the StateHash keys."""
        return self._hash_bytes

    @property
    def support(self) -> frozenset:
        return frozenset(self._masses)

    def mass(self, h: StateHash) -> float:
        return self._masses.get(h, 0.0)

    def probability(self, state: Any) -> float:
        """Mass of a state value, 0.0 when absent."""
        return self.mass(state_hash(state, self._hash_bytes))

    def total(self) -> float:
        return checked_sum(self._masses.values(), "distribution total")

    def entropy(self) -> float:
        """-sum(p * log2(p)) in bits."""
        return shannon_entropy(self._masses.values())

    def euclidean_norm(self) -> float:
        """sqrt(sum(p^2))."""
        return euclidean_norm(self._masses.values())

    def is_normalized(self, tolerance: float = DEFAULT_PROBABILITY_TOLERANCE) -> bool:
        return abs(self.total() - 1.0) <= tolerance

    def as_array(self, order: Iterable[StateHash]) -> np.ndarray:
        """Masses laid out in the given hash order (absent hashes are 0)."""
        return np.fromiter((self.mass(h) for h in order), dtype=np.float64)

    def max_deviation(self, other: "Distribution") -> float:
        """Largest absolute mass difference over the union of both supports."""
        keys = list(self.support | other.support)
        if not keys:
            return 0.0
        return float(np.max(np.abs(self.as_array(keys) - other.as_array(keys))))

    def approx_equal(self, other: "Distribution", tolerance: float = DEFAULT_PROBABILITY_TOLERANCE) -> bool:
        return self.max_deviation(other) <= tolerance

    def to_dict(self) -> Dict[StateHash, float]:
        return dict(self._masses)


# =============================================================================
# PRUNING AND NORMALIZATION
# =============================================================================

def prune(masses: Dict[StateHash, float], threshold: float,
          budget: float) -> Tuple[Dict[StateHash, float], float]:
    """
    Drop masses below threshold, smallest first, while the dropped mass stays
    strictly below budget. A budget of 0 or less drops nothing.

    Returns:
        (kept masses, dropped mass)
    """
    if threshold <= 0.0:
        return masses, 0.0
    small = sorted((m, h) for h, m in masses.items() if m < threshold)
    dropped = 0.0
    for m, h in small:
        if dropped + m >= budget:
            break
        dropped += m
        del masses[h]
    return masses, dropped


def normalize(masses: Dict[StateHash, float], context: str) -> Dict[StateHash, float]:
    """Rescale masses to sum to exactly 1 (up to one rounding per entry)."""
    total = checked_sum(masses.values(), context)
    if total <= 0.0:
        raise ArithmeticOverflow(context, total)
    if total == 1.0:
        return masses
    return {h: m / total for h, m in masses.items()}


def accumulate(contributions: Dict[StateHash, List[float]], context: str) -> Dict[StateHash, float]:
    """Sum the per-target contribution lists with exact rounding."""
    return {h: checked_sum(parts, context) for h, parts in contributions.items()}


# =============================================================================
# STEP
# =============================================================================

def step(current: Distribution, oracle, prune_threshold: Optional[float] = None,
         tolerance: Optional[float] = None, max_workers: Optional[int] = None,
         prune_budget: Optional[float] = None) -> Distribution:
    """
    Advance a distribution by one time step.

    Each supported state's mass is split along its transitions; absorbing
    states keep their mass. Contributions reaching the same target are summed.

    Args:
        current: Distribution at time t
        oracle: TransitionOracle resolving each supported state
        prune_threshold: Override of config.prune_threshold
        tolerance: Override of config.probability_tolerance
        max_workers: Override of config.max_workers
        prune_budget: Mass this step may still drop (default: tolerance). Callers
            running many steps pass tolerance minus the mass already pruned,
            so the total dropped over a run stays below tolerance.

    Returns:
        Distribution at time t + 1
    """
    config = oracle.config
    threshold = config.prune_threshold if prune_threshold is None else prune_threshold
    eps = config.probability_tolerance if tolerance is None else tolerance
    budget = eps if prune_budget is None else prune_budget

    hashes = [h for h, m in current.items() if m > 0.0]
    resolved = oracle.resolve_hashes(hashes, max_workers)

    contributions: Dict[StateHash, List[float]] = defaultdict(list)
    for h, outgoing in zip(hashes, resolved):
        m = current[h]
        if not outgoing:
            contributions[h].append(m)
            continue
        for t in outgoing:
            contributions[t.target_hash].append(m * t.weight)

    masses = accumulate(contributions, "step accumulation")
    masses = {h: m for h, m in masses.items() if m > 0.0}
    masses, dropped = prune(masses, threshold, budget)
    if dropped:
        logger.debug("pruned %.3e mass across the step", dropped)
    masses = normalize(masses, "step normalization")
    nxt = Distribution(masses, pruned_mass=dropped, hash_bytes=oracle.registry.hash_bytes)
    validate_conservation(nxt.total(), eps)
    return nxt
