"""
markov/constants.py - Engine Constants

Tolerances, hash widths and labels shared by every engine module.
Centralized for tuning; ChainConfig defaults read from here.
"""

# =============================================================================
# PROBABILITY TOLERANCES
# =============================================================================

DEFAULT_PROBABILITY_TOLERANCE = 1e-9   # |sum(weights) - 1| allowed per state
DEFAULT_PRUNE_THRESHOLD = 0.0          # 0 disables pruning
DEFAULT_CONVERGENCE_TOLERANCE = 1e-9   # per-mass deviation counted as unchanged
DEFAULT_CONVERGENCE_ITERATION_LIMIT = 1000

# =============================================================================
# STATE HASHING
# =============================================================================

DEFAULT_HASH_BYTES = 8    # 64-bit StateHash
MIN_HASH_BYTES = 4
MAX_HASH_BYTES = 32       # full BLAKE3 digest

# =============================================================================
# TRANSITION LABELS
# =============================================================================

ABSORBING_LABEL = "absorbing"
NOTHING_LABEL = "Nothing"
LABEL_SEPARATOR = " | "
INTERVENTION_STAY_LABEL = "stay"

# =============================================================================
# RULE WEIGHTING MODES
# =============================================================================

WEIGHTING_DIRECT = "direct"      # action weights are probabilities
WEIGHTING_RELATIVE = "relative"  # action weights are rates, normalized per state
WEIGHTING_MODES = (WEIGHTING_DIRECT, WEIGHTING_RELATIVE)

# =============================================================================
# RECEIPTS
# =============================================================================

DEFAULT_TENANT_ID = "markov"
DEFAULT_RECEIPT_BUFFER = 1000   # receipts kept in memory per ledger

SNAPSHOT_VERSION = "1.0"
