"""
markov/validation.py - Conservation and Validation Functions

Weight well-formedness, mass conservation and overflow checks.
Pure functions; each raises a StopRule subclass on violation.
"""

import math
from typing import Any, Iterable, Optional, Sequence

from .errors import ArithmeticOverflow, ConservationViolation, InvalidDistribution
from .types_state import StateHash, Transition


def checked_sum(values: Iterable[float], context: str) -> float:
    """
    Exact-rounding float sum that fails loudly instead of producing inf/nan.

    Args:
        values: Floats to sum
        context: Where the sum is taken (for the error message)

    Returns:
        float: math.fsum of values
    """
    try:
        total = math.fsum(values)
    except OverflowError as exc:
        raise ArithmeticOverflow(context, str(exc)) from exc
    check_finite(total, context)
    return total


def check_finite(value: float, context: str) -> float:
    """Raise ArithmeticOverflow if value is inf or nan."""
    if not math.isfinite(value):
        raise ArithmeticOverflow(context, value)
    return value


def validate_transitions(state: Any, transitions: Sequence[Transition], tolerance: float,
                         state_hash: Optional[StateHash] = None) -> None:
    """
    Check one state's outgoing weights.

    Empty transitions are an absorbing state and valid. Otherwise every weight
    must be finite and non-negative and the weights must sum to 1 within
    tolerance.

    Raises:
        InvalidDistribution: with the observed weight sum
    """
    if not transitions:
        return
    weights = [t.weight for t in transitions]
    for w in weights:
        if not math.isfinite(w):
            raise InvalidDistribution(state, w, state_hash, "non-finite weight")
    try:
        observed = math.fsum(weights)
    except OverflowError:
        observed = math.inf
    for w in weights:
        if w < 0.0:
            raise InvalidDistribution(state, observed, state_hash, f"negative weight {w!r}")
    if not abs(observed - 1.0) <= tolerance:
        raise InvalidDistribution(state, observed, state_hash, "weights do not sum to 1")


def validate_weight(state: Any, weight: float, state_hash: Optional[StateHash] = None) -> None:
    """A single intervention weight must be a probability in [0, 1]."""
    if not math.isfinite(weight) or weight < 0.0 or weight > 1.0:
        raise InvalidDistribution(state, weight, state_hash, "intervention weight outside [0, 1]")


def validate_conservation(total: float, tolerance: float, time: Optional[int] = None) -> None:
    """Total mass must equal 1 within tolerance."""
    check_finite(total, "probability mass total")
    if abs(total - 1.0) > tolerance:
        raise ConservationViolation(total, tolerance, time)
