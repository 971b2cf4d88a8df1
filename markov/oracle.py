"""
markov/oracle.py - Memoized Transition Resolution

TransitionCache: shared StateHash -> transitions store, insert-if-absent.
TransitionOracle: wraps the caller's transition function, validates its
output and guarantees the function runs at most once per distinct state,
including under concurrent first resolution.
"""

import logging
import threading
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import InvalidDistribution
from .types_config import ChainConfig
from .types_state import StateHash, StateRegistry, Transition, as_transition
from .validation import validate_transitions

logger = logging.getLogger(__name__)

Transitions = Tuple[Transition, ...]
TransitionFunction = Callable[[Any], Any]


class TransitionCache:
    """
    Shared StateHash -> Transitions map.

    Entries are immutable once stored. The first caller for a hash computes the
    value; concurrent callers for the same hash wait on that computation
    instead of running it again. Validation failures are remembered so the
    transition function is not re-run to reproduce them.
    """

    def __init__(self):
        self._entries: Dict[StateHash, Transitions] = {}
        self._failures: Dict[StateHash, InvalidDistribution] = {}
        self._inflight: Dict[StateHash, Future] = {}
        self._lock = threading.Lock()

    def get(self, h: StateHash) -> Optional[Transitions]:
        with self._lock:
            return self._entries.get(h)

    def insert_if_absent(self, h: StateHash, transitions: Transitions) -> Transitions:
        """Store transitions unless an entry exists; return the stored entry."""
        with self._lock:
            return self._entries.setdefault(h, transitions)

    def get_or_compute(self, h: StateHash, compute: Callable[[], Transitions]) -> Transitions:
        """Return the cached entry for h, computing it exactly once if absent."""
        with self._lock:
            cached = self._entries.get(h)
            if cached is not None:
                return cached
            failure = self._failures.get(h)
            if failure is not None:
                raise failure
            future = self._inflight.get(h)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[h] = future

        if not owner:
            return future.result()

        try:
            value = compute()
        except InvalidDistribution as exc:
            with self._lock:
                self._failures[h] = exc
                self._inflight.pop(h, None)
            future.set_exception(exc)
            raise
        except BaseException as exc:
            with self._lock:
                self._inflight.pop(h, None)
            future.set_exception(exc)
            raise

        with self._lock:
            value = self._entries.setdefault(h, value)
            self._inflight.pop(h, None)
        future.set_result(value)
        return value

    def invalidate(self, hashes: Optional[Iterable[StateHash]] = None) -> int:
        """Drop entries (all when hashes is None). Returns the number dropped."""
        with self._lock:
            if hashes is None:
                dropped = len(self._entries) + len(self._failures)
                self._entries.clear()
                self._failures.clear()
                return dropped
            dropped = 0
            for h in hashes:
                if self._entries.pop(h, None) is not None:
                    dropped += 1
                if self._failures.pop(h, None) is not None:
                    dropped += 1
            return dropped

    def hashes(self) -> List[StateHash]:
        with self._lock:
            return list(self._entries)

    def failed_hashes(self) -> List[StateHash]:
        with self._lock:
            return list(self._failures)

    def __contains__(self, h: object) -> bool:
        with self._lock:
            return h in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class TransitionOracle:
    """
    Memoizing wrapper around a pure transition function.

    The function receives a state and returns its outgoing transitions as an
    iterable of Transition, an iterable of (target, label, weight) triples, or
    a mapping target -> (label, weight). An empty result marks an absorbing
    state.
    """

    def __init__(self, transition_function: TransitionFunction,
                 config: Optional[ChainConfig] = None,
                 cache: Optional[TransitionCache] = None,
                 registry: Optional[StateRegistry] = None):
        self.config = config or ChainConfig()
        self.transition_function = transition_function
        self.cache = cache if cache is not None else TransitionCache()
        self.registry = registry if registry is not None else StateRegistry(self.config.hash_bytes)
        if self.registry.hash_bytes != self.config.hash_bytes:
            raise ValueError(
                f"registry hash width {self.registry.hash_bytes} != config hash width {self.config.hash_bytes}"
            )
        self._calls = 0
        self._calls_lock = threading.Lock()

    @property
    def calls(self) -> int:
        """Number of times the underlying transition function has run."""
        with self._calls_lock:
            return self._calls

    @property
    def tolerance(self) -> float:
        return self.config.probability_tolerance

    def resolve(self, state: Any) -> Transitions:
        """Outgoing transitions of state, from cache after the first call."""
        h = self.registry.register(state)
        return self.cache.get_or_compute(h, lambda: self._evaluate(state, h))

    def resolve_hash(self, h: StateHash) -> Transitions:
        """Outgoing transitions of an already registered state."""
        cached = self.cache.get(h)
        if cached is not None:
            return cached
        state = self.registry.get(h)
        return self.cache.get_or_compute(h, lambda: self._evaluate(state, h))

    def resolve_many(self, states: Sequence[Any], max_workers: Optional[int] = None) -> List[Transitions]:
        """Resolve several states; aligned with the input order."""
        hashes = [self.registry.register(s) for s in states]
        return self.resolve_hashes(hashes, max_workers)

    def resolve_hashes(self, hashes: Sequence[StateHash],
                       max_workers: Optional[int] = None) -> List[Transitions]:
        """Resolve registered states, in parallel when max_workers > 1."""
        workers = max_workers if max_workers is not None else self.config.max_workers
        pending = [h for h in dict.fromkeys(hashes) if h not in self.cache]
        if workers > 1 and len(pending) > 1:
            with ThreadPoolExecutor(max_workers=min(workers, len(pending))) as pool:
                # list() surfaces the first worker exception here
                list(pool.map(self.resolve_hash, pending))
        return [self.resolve_hash(h) for h in hashes]

    def invalidate(self, hashes: Optional[Iterable[StateHash]] = None) -> int:
        dropped = self.cache.invalidate(hashes)
        logger.debug("invalidated %d cached transition entries", dropped)
        return dropped

    def _evaluate(self, state: Any, h: StateHash) -> Transitions:
        with self._calls_lock:
            self._calls += 1
        logger.debug("cache miss for state %#x, invoking transition function", h)
        raw = self.transition_function(state)
        if isinstance(raw, Mapping):
            items = [Transition(target, str(label), float(weight))
                     for target, (label, weight) in raw.items()]
        else:
            items = [as_transition(item) for item in raw]
        validate_transitions(state, items, self.tolerance, h)
        return tuple(t.with_hash(self.registry.register(t.target)) for t in items)
