"""
entropy.py - The Fundamental Module

Shannon entropy and Euclidean norm of probability masses. Every Distribution
statistic in the chain engine is computed here.
"""

from typing import Any, Dict, Iterable

import numpy as np

from receipts import emit_receipt


# =============================================================================
# CONSTANTS
# =============================================================================

# Module exports for receipt types
RECEIPT_SCHEMA = ["entropy_measurement"]


def _as_array(masses: Iterable[float]) -> np.ndarray:
    return np.fromiter((float(m) for m in masses), dtype=np.float64)


# =============================================================================
# CORE FUNCTION 1: shannon_entropy
# =============================================================================

def shannon_entropy(masses: Iterable[float]) -> float:
    """
    Shannon entropy H = -sum(p * log2(p)) over nonzero masses.

    Args:
        masses: Probability masses (need not be sorted)

    Returns:
        float: Entropy in bits

    Edge cases:
        - Empty input -> 0.0
        - Point mass -> 0.0 (0 * log(0) is taken as 0)
        - N states uniformly distributed -> log2(N)
    """
    p = _as_array(masses)
    p = p[p > 0.0]
    if p.size == 0:
        return 0.0
    h = float(-np.sum(p * np.log2(p)))
    # masses a few ulps above 1.0 give a tiny negative log term
    return max(0.0, h)


# =============================================================================
# CORE FUNCTION 2: euclidean_norm
# =============================================================================

def euclidean_norm(masses: Iterable[float]) -> float:
    """
    Euclidean norm sqrt(sum(p^2)).

    A point mass has norm 1.0; the uniform distribution over N states has
    norm 1/sqrt(N).
    """
    p = _as_array(masses)
    if p.size == 0:
        return 0.0
    return float(np.linalg.norm(p))


# =============================================================================
# CORE FUNCTION 3: entropy_delta
# =============================================================================

def entropy_delta(masses_before: Iterable[float], masses_after: Iterable[float]) -> float:
    """
    Entropy change between two distributions.

    delta = H_after - H_before
        - Positive = mass spread out
        - Negative = mass concentrated
    """
    return shannon_entropy(masses_after) - shannon_entropy(masses_before)


# =============================================================================
# RECEIPT TYPE 1: entropy_measurement
# =============================================================================

# --- SCHEMA ---
ENTROPY_MEASUREMENT_SCHEMA = {
    "receipt_type": "entropy_measurement",
    "ts": "ISO8601",
    "tenant_id": "str",
    "time": "int",
    "entropy_before": "float",
    "entropy_after": "float",
    "entropy_delta": "float",  # (after - before)
    "support_size": "int",
    "payload_hash": "str"
}


# --- EMIT ---
def emit_entropy_measurement(tenant_id: str, time: int,
                             masses_before: Iterable[float],
                             masses_after: Iterable[float]) -> Dict[str, Any]:
    """Emit entropy_measurement receipt for one transition between time steps."""
    before = list(masses_before)
    after = list(masses_after)
    return emit_receipt("entropy_measurement", {
        "tenant_id": tenant_id,
        "time": time,
        "entropy_before": shannon_entropy(before),
        "entropy_after": shannon_entropy(after),
        "entropy_delta": entropy_delta(before, after),
        "support_size": sum(1 for m in after if m > 0.0),
    })
