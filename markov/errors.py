"""
markov/errors.py - Engine Errors

Every error derives from receipts.StopRule. They are raised where the
violation is detected and never retried: a pure transition function
reproduces the same failure on every call.
"""

from typing import Any, Optional

from receipts import StopRule


class InvalidDistribution(StopRule):
    """Outgoing weights are negative, non-finite, or do not sum to 1."""

    def __init__(self, state: Any, observed_sum: float,
                 state_hash: Optional[int] = None, reason: str = ""):
        self.state = state
        self.observed_sum = observed_sum
        self.state_hash = state_hash
        self.reason = reason
        message = f"Invalid transition weights for state {state!r}: observed sum {observed_sum!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class NotYetComputed(StopRule):
    """History query for a time step that has not been computed."""

    def __init__(self, t: int, latest: int):
        self.t = t
        self.latest = latest
        super().__init__(f"Time {t} not yet computed (latest recorded time is {latest})")


class HistoryTruncated(StopRule):
    """History query for a time step dropped by clone_without_history."""

    def __init__(self, t: int, origin: int):
        self.t = t
        self.origin = origin
        super().__init__(f"Time {t} precedes retained history (earliest retained time is {origin})")


class ArithmeticOverflow(StopRule):
    """Hash or mass arithmetic left the representable range."""

    def __init__(self, context: str, value: Any = None):
        self.context = context
        self.value = value
        super().__init__(f"Arithmetic overflow in {context}: {value!r}")


class ConservationViolation(StopRule):
    """Total probability mass drifted outside tolerance."""

    def __init__(self, total: float, tolerance: float, time: Optional[int] = None):
        self.total = total
        self.tolerance = tolerance
        self.time = time
        where = f" at time {time}" if time is not None else ""
        super().__init__(f"Probability mass {total!r}{where} differs from 1.0 by more than {tolerance!r}")


class GraphConstructionError(StopRule):
    """Reachable-graph exploration aborted on an invalid state."""

    def __init__(self, state_hash: int, cause: Exception):
        self.state_hash = state_hash
        self.cause = cause
        super().__init__(f"Exploration aborted at state {state_hash:#x}: {cause}")


class HashCollision(StopRule):
    """Two unequal states produced the same StateHash."""

    def __init__(self, state_hash: int, existing: Any, incoming: Any):
        self.state_hash = state_hash
        self.existing = existing
        self.incoming = incoming
        super().__init__(
            f"StateHash {state_hash:#x} already identifies {existing!r}, cannot also identify {incoming!r}"
        )


class CursorMismatch(StopRule):
    """advance() was handed a cursor that does not match the engine position."""

    def __init__(self, expected: Any, received: Any):
        self.expected = expected
        self.received = received
        super().__init__(f"Stale or foreign cursor {received!r}, engine is at {expected!r}")


class ConfigError(StopRule):
    """Configuration values failed validation."""
    pass


class SnapshotError(StopRule):
    """A persisted snapshot is malformed or inconsistent with its states."""
    pass
