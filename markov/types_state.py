"""
markov/types_state.py - State Identity and Transitions

StateHash derivation, the Transition record and the shared StateRegistry.

A StateHash is the leading `hash_bytes` of a BLAKE3 digest over a canonical,
type-tagged JSON encoding of the state. It is stable across processes and
never produced by integer arithmetic, so it cannot wrap.

Identity is by type and value: 1, 1.0 and True encode differently. Instances
of plain classes encode their instance attributes (__dict__ and __slots__),
so equal instances built on different paths share one StateHash.
"""

import dataclasses
import enum
import json
import math
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from receipts import digest_bytes

from .constants import DEFAULT_HASH_BYTES
from .errors import ArithmeticOverflow, HashCollision

StateHash = int


# =============================================================================
# CANONICAL ENCODING
# =============================================================================

def _canon(obj: Any) -> Any:
    """Type-tagged JSON-able form of a state value, independent of set/dict order."""
    if obj is None or isinstance(obj, str):
        return obj
    if isinstance(obj, bool):
        return {"b": obj}
    if isinstance(obj, enum.Enum):
        return {"enum": type(obj).__qualname__, "v": _canon(obj.value)}
    if isinstance(obj, int):
        # decimal string: arbitrary precision, no truncation
        return {"i": str(obj)}
    if isinstance(obj, float):
        if math.isnan(obj):
            return {"f": "nan"}
        return {"f": obj.hex()}
    if isinstance(obj, bytes):
        return {"y": obj.hex()}
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {
            "dc": type(obj).__qualname__,
            "v": [[f.name, _canon(getattr(obj, f.name))] for f in dataclasses.fields(obj)],
        }
    if isinstance(obj, tuple):
        if hasattr(obj, "_fields"):
            return {"nt": type(obj).__qualname__, "v": [_canon(v) for v in obj]}
        return {"t": [_canon(v) for v in obj]}
    if isinstance(obj, list):
        return {"l": [_canon(v) for v in obj]}
    if isinstance(obj, (set, frozenset)):
        items = [_canon(v) for v in obj]
        return {"s": sorted(items, key=_dump)}
    if isinstance(obj, dict):
        pairs = [[_canon(k), _canon(v)] for k, v in obj.items()]
        return {"d": sorted(pairs, key=lambda kv: _dump(kv[0]))}
    attrs = _instance_attrs(obj)
    if attrs is not None:
        return {
            "o": type(obj).__qualname__,
            "v": [[name, _canon(value)] for name, value in sorted(attrs.items())],
        }
    if type(obj).__repr__ is object.__repr__:
        # the default repr embeds id(), so equal instances would hash apart
        raise TypeError(
            f"cannot derive a StateHash for {type(obj).__qualname__}: no instance "
            "attributes and no __repr__; use a dataclass, a tuple or define __repr__"
        )
    # attribute-less caller type with its own repr, e.g. Decimal or complex
    return {"r": type(obj).__qualname__, "v": repr(obj)}


def _instance_attrs(obj: Any) -> Optional[Dict[str, Any]]:
    """Instance attributes from __dict__ and __slots__, None when it has neither."""
    attrs: Optional[Dict[str, Any]] = None
    if hasattr(obj, "__dict__"):
        attrs = dict(vars(obj))
    for klass in type(obj).__mro__:
        slots = klass.__dict__.get("__slots__", ())
        if isinstance(slots, str):
            slots = (slots,)
        for name in slots:
            if name in ("__dict__", "__weakref__"):
                continue
            if name.startswith("__") and not name.endswith("__"):
                name = f"_{klass.__name__.lstrip('_')}{name}"
            if attrs is None:
                attrs = {}
            if hasattr(obj, name):
                attrs.setdefault(name, getattr(obj, name))
    return attrs


def _dump(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def canonical_form(state: Any) -> Any:
    """Type-tagged JSON-able form of state (the value that gets hashed)."""
    return _canon(state)


def canonical_encoding(state: Any) -> bytes:
    """Canonical byte encoding used for hashing."""
    return _dump(_canon(state)).encode("utf-8")


def state_hash(state: Any, hash_bytes: int = DEFAULT_HASH_BYTES) -> StateHash:
    """
    Deterministic fixed-width StateHash of a state value.

    Args:
        state: Any hashable caller value
        hash_bytes: Width of the hash in bytes

    Returns:
        int: Unsigned integer in [0, 2**(8*hash_bytes))
    """
    value = int.from_bytes(digest_bytes(canonical_encoding(state), hash_bytes), "big")
    if value.bit_length() > 8 * hash_bytes:
        raise ArithmeticOverflow("state hash width", value)
    return value


# =============================================================================
# TRANSITION
# =============================================================================

@dataclass(frozen=True)
class Transition:
    """Weighted, labeled edge towards `target`.

    `target_hash` is filled in by the oracle on resolution and does not take
    part in equality.
    """
    target: Any
    label: str
    weight: float
    target_hash: Optional[StateHash] = field(default=None, compare=False)

    def with_hash(self, h: StateHash) -> "Transition":
        return dataclasses.replace(self, target_hash=h)


def as_transition(item: Any) -> Transition:
    """Coerce a Transition or a (target, label, weight) triple."""
    if isinstance(item, Transition):
        return item
    if isinstance(item, tuple) and len(item) == 3:
        target, label, weight = item
        return Transition(target, str(label), float(weight))
    raise TypeError(f"Expected Transition or (target, label, weight), got {item!r}")


# =============================================================================
# STATE REGISTRY
# =============================================================================

class StateRegistry:
    """
    Thread-safe StateHash -> State map shared across the engine.

    Registering a second, unequal state under an existing hash raises
    HashCollision instead of silently aliasing two states.
    """

    def __init__(self, hash_bytes: int = DEFAULT_HASH_BYTES):
        self.hash_bytes = hash_bytes
        self._states: Dict[StateHash, Any] = {}
        self._lock = threading.Lock()

    def hash_of(self, state: Any) -> StateHash:
        return state_hash(state, self.hash_bytes)

    def register(self, state: Any) -> StateHash:
        h = self.hash_of(state)
        with self._lock:
            existing = self._states.setdefault(h, state)
        if existing is not state and existing != state:
            raise HashCollision(h, existing, state)
        return h

    def get(self, h: StateHash) -> Any:
        with self._lock:
            try:
                return self._states[h]
            except KeyError:
                raise KeyError(f"Unknown StateHash {h:#x}") from None

    def __contains__(self, h: object) -> bool:
        with self._lock:
            return h in self._states

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def __iter__(self) -> Iterator[StateHash]:
        return iter(self.hashes())

    def hashes(self) -> List[StateHash]:
        with self._lock:
            return list(self._states)

    def states(self) -> List[Any]:
        with self._lock:
            return list(self._states.values())
