"""
markov/convergence.py - Steady-State Checks

Bounded fixed-point iteration: step a distribution until no mass moves by
more than the convergence tolerance, or the iteration budget runs out.
A negative answer only means convergence was not observed within budget.
"""

import logging
import math
from typing import Any, Dict, Iterable, List, Optional

from receipts import emit_receipt

from .distribution import Distribution, step
from .types_result import ConvergenceResult

logger = logging.getLogger(__name__)


def iterate_to_steady(oracle, initial: Distribution,
                      iteration_limit: Optional[int] = None,
                      tolerance: Optional[float] = None,
                      receipts: Optional[List[Dict[str, Any]]] = None) -> ConvergenceResult:
    """
    Step initial until a step leaves every mass unchanged within tolerance.

    Args:
        oracle: TransitionOracle for the chain
        initial: Starting distribution
        iteration_limit: Max steps (config.convergence_iteration_limit)
        tolerance: Per-mass deviation counted as unchanged (config.convergence_tolerance)
        receipts: ReceiptLedger (or list) to append a convergence_check receipt to

    Returns:
        ConvergenceResult with the last distribution reached. With a limit of
        0 nothing is stepped, converged is False and max_deviation is inf.
    """
    config = oracle.config
    limit = config.convergence_iteration_limit if iteration_limit is None else iteration_limit
    tol = config.convergence_tolerance if tolerance is None else tolerance
    if limit < 0:
        raise ValueError(f"iteration_limit must be >= 0, got {limit}")

    eps = config.probability_tolerance
    current = initial
    deviation = math.inf
    converged = False
    iterations = 0
    pruned = 0.0
    while iterations < limit:
        nxt = step(current, oracle, prune_budget=eps - pruned)
        pruned += nxt.pruned_mass
        iterations += 1
        deviation = current.max_deviation(nxt)
        current = nxt
        if deviation <= tol:
            converged = True
            break

    logger.info("convergence check: converged=%s after %d iteration(s), max deviation %.3e",
                converged, iterations, deviation)
    if receipts is not None and config.emit_receipts:
        receipts.append(emit_receipt("convergence_check", {
            "tenant_id": config.tenant_id,
            "support_size": len(initial),
            "iteration_limit": limit,
            "iterations": iterations,
            "tolerance": tol,
            "max_deviation": deviation,
            "converged": converged,
        }))
    return ConvergenceResult(current, iterations, converged, deviation)


def uniform_distribution_is_steady(oracle, states: Iterable[Any],
                                   iteration_limit: Optional[int] = None,
                                   tolerance: Optional[float] = None,
                                   receipts: Optional[List[Dict[str, Any]]] = None) -> bool:
    """
    Whether the uniform distribution over states reaches a fixed point.

    Returns True as soon as one step leaves the distribution unchanged,
    False once iteration_limit steps have passed without that happening.
    """
    hashes = [oracle.registry.register(s) for s in states]
    if not hashes:
        raise ValueError("uniform_distribution_is_steady needs at least one state")
    uniform = Distribution.uniform(hashes, oracle.registry.hash_bytes)
    result = iterate_to_steady(oracle, uniform, iteration_limit, tolerance, receipts)
    return result.converged
