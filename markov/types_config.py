"""
markov/types_config.py - ChainConfig Dataclass and Presets

Immutable configuration shared by oracle, engine, explorer and analyzer.
One set of tolerances for every component, never per-call constants.
"""

from dataclasses import dataclass
from typing import Optional

from .constants import (
    DEFAULT_PROBABILITY_TOLERANCE,
    DEFAULT_PRUNE_THRESHOLD,
    DEFAULT_CONVERGENCE_TOLERANCE,
    DEFAULT_CONVERGENCE_ITERATION_LIMIT,
    DEFAULT_HASH_BYTES,
    DEFAULT_RECEIPT_BUFFER,
    DEFAULT_TENANT_ID,
    MIN_HASH_BYTES,
    MAX_HASH_BYTES,
)
from .errors import ConfigError


@dataclass(frozen=True)
class ChainConfig:
    """Chain engine configuration (immutable)."""
    probability_tolerance: float = DEFAULT_PROBABILITY_TOLERANCE
    prune_threshold: float = DEFAULT_PRUNE_THRESHOLD
    convergence_tolerance: float = DEFAULT_CONVERGENCE_TOLERANCE
    convergence_iteration_limit: int = DEFAULT_CONVERGENCE_ITERATION_LIMIT
    iteration_limit: Optional[int] = None  # exploration budget, None = unbounded
    max_workers: int = 1  # >1 resolves distinct states on a thread pool
    hash_bytes: int = DEFAULT_HASH_BYTES
    emit_receipts: bool = True
    receipt_buffer: Optional[int] = DEFAULT_RECEIPT_BUFFER  # None = keep every receipt in memory
    receipt_path: Optional[str] = None  # JSONL file every receipt is appended to
    tenant_id: str = DEFAULT_TENANT_ID
    scenario_name: str = "DEFAULT"

    def __post_init__(self):
        if not 0.0 < self.probability_tolerance < 1.0:
            raise ConfigError(f"probability_tolerance must be in (0, 1), got {self.probability_tolerance}")
        if not 0.0 <= self.prune_threshold < 1.0:
            raise ConfigError(f"prune_threshold must be in [0, 1), got {self.prune_threshold}")
        if not 0.0 < self.convergence_tolerance < 1.0:
            raise ConfigError(f"convergence_tolerance must be in (0, 1), got {self.convergence_tolerance}")
        if self.convergence_iteration_limit < 0:
            raise ConfigError("convergence_iteration_limit must be >= 0")
        if self.iteration_limit is not None and self.iteration_limit < 0:
            raise ConfigError("iteration_limit must be >= 0 or None")
        if self.receipt_buffer is not None and self.receipt_buffer < 0:
            raise ConfigError("receipt_buffer must be >= 0 or None")
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be >= 1, got {self.max_workers}")
        if not MIN_HASH_BYTES <= self.hash_bytes <= MAX_HASH_BYTES:
            raise ConfigError(
                f"hash_bytes must be within {MIN_HASH_BYTES}..{MAX_HASH_BYTES}, got {self.hash_bytes}"
            )


# =============================================================================
# PRESETS
# =============================================================================

CONFIG_DEFAULT = ChainConfig()

# Bounded memory for long runs over wide state spaces
CONFIG_PRUNED = ChainConfig(
    prune_threshold=1e-12,
    scenario_name="PRUNED"
)

CONFIG_PARALLEL = ChainConfig(
    max_workers=4,
    scenario_name="PARALLEL"
)

# Wider hashes, tighter sums, no receipts
CONFIG_STRICT = ChainConfig(
    probability_tolerance=1e-12,
    convergence_tolerance=1e-12,
    hash_bytes=16,
    emit_receipts=False,
    scenario_name="STRICT"
)

PRESETS = {
    "DEFAULT": CONFIG_DEFAULT,
    "PRUNED": CONFIG_PRUNED,
    "PARALLEL": CONFIG_PARALLEL,
    "STRICT": CONFIG_STRICT,
}
