"""
markov - Discrete-Time Markov Chain Engine

Public API for building, stepping and analyzing Markov chains over arbitrary
state values. Flat, focused files: one file = one responsibility.
"""

# =============================================================================
# TYPES (Dataclasses)
# =============================================================================
from .types_config import (
    ChainConfig,
    CONFIG_DEFAULT,
    CONFIG_PRUNED,
    CONFIG_PARALLEL,
    CONFIG_STRICT,
    PRESETS,
)
from .types_state import (
    StateHash,
    StateRegistry,
    Transition,
    canonical_form,
    state_hash,
)
from .types_result import TraversalResult, ConvergenceResult

# =============================================================================
# ERRORS
# =============================================================================
from .errors import (
    InvalidDistribution,
    NotYetComputed,
    HistoryTruncated,
    ArithmeticOverflow,
    ConservationViolation,
    GraphConstructionError,
    HashCollision,
    CursorMismatch,
    ConfigError,
    SnapshotError,
)

# =============================================================================
# CORE ENGINE
# =============================================================================
from .oracle import TransitionCache, TransitionOracle
from .distribution import Distribution, step
from .engine import Cursor, SimulationEngine

# =============================================================================
# EXPLORATION AND ANALYSIS
# =============================================================================
from .explorer import Edge, ReachableGraph, explore, full_traversal
from .convergence import iterate_to_steady, uniform_distribution_is_steady

# =============================================================================
# RULES
# =============================================================================
from .rules import (
    ALWAYS,
    NEVER,
    Condition,
    ConditionKind,
    PredicateCache,
    Rule,
    RuleEngine,
    compose,
)

# =============================================================================
# EXPORT
# =============================================================================
from .export import (
    snapshot,
    dumps_snapshot,
    write_snapshot,
    load_snapshot,
    read_snapshot,
    load_graph,
)

# =============================================================================
# PUBLIC API
# =============================================================================
__all__ = [
    # Types
    "ChainConfig",
    "StateHash",
    "StateRegistry",
    "Transition",
    "TraversalResult",
    "ConvergenceResult",
    "canonical_form",
    "state_hash",
    # Config presets
    "CONFIG_DEFAULT",
    "CONFIG_PRUNED",
    "CONFIG_PARALLEL",
    "CONFIG_STRICT",
    "PRESETS",
    # Errors
    "InvalidDistribution",
    "NotYetComputed",
    "HistoryTruncated",
    "ArithmeticOverflow",
    "ConservationViolation",
    "GraphConstructionError",
    "HashCollision",
    "CursorMismatch",
    "ConfigError",
    "SnapshotError",
    # Core engine
    "TransitionCache",
    "TransitionOracle",
    "Distribution",
    "step",
    "Cursor",
    "SimulationEngine",
    # Exploration and analysis
    "Edge",
    "ReachableGraph",
    "explore",
    "full_traversal",
    "iterate_to_steady",
    "uniform_distribution_is_steady",
    # Rules
    "ALWAYS",
    "NEVER",
    "Condition",
    "ConditionKind",
    "PredicateCache",
    "Rule",
    "RuleEngine",
    "compose",
    # Export
    "snapshot",
    "dumps_snapshot",
    "write_snapshot",
    "load_snapshot",
    "read_snapshot",
    "load_graph",
]
