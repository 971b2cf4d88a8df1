"""
markov/export.py - Snapshot Interchange

Structural snapshots of an engine (and optionally a reachable graph) as JSON.

What a snapshot holds:
- states: StateHash (hex) -> encoded state value
- history: per-time masses from the retained origin to the current time
- pruned_total: mass dropped by pruning over the whole run, truncated steps included
- graph: nodes and labeled, weighted edges
- config, config_hash, rule names and a Merkle fingerprint of the history

What it never holds: transition functions, rule conditions or actions.
Those are reattached by the caller on load.
"""

import json
import logging
import warnings
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from receipts import merkle

from . import config_schema
from .constants import SNAPSHOT_VERSION
from .distribution import Distribution
from .engine import SimulationEngine, make_oracle
from .errors import ConfigError, ConservationViolation, SnapshotError
from .explorer import ReachableGraph
from .rules import RuleEngine
from .types_config import ChainConfig
from .types_state import StateHash, StateRegistry, canonical_form
from .validation import validate_conservation

logger = logging.getLogger(__name__)

StateCodec = Callable[[Any], Any]


# =============================================================================
# STATE CODEC
# =============================================================================

def decode_canonical(obj: Any) -> Any:
    """
    Inverse of canonical_form for plain values.

    Handles None, str, bool, int, float, bytes, tuple, list, frozenset and
    dict. Dataclasses, named tuples, enums and opaque types need a caller
    decode_state.
    """
    if obj is None or isinstance(obj, str):
        return obj
    if not isinstance(obj, dict) or len(obj) != 1:
        raise SnapshotError(f"Cannot decode state fragment {obj!r}, pass decode_state")
    (tag, value), = obj.items()
    if tag == "b":
        return bool(value)
    if tag == "i":
        return int(value)
    if tag == "f":
        return float("nan") if value == "nan" else float.fromhex(value)
    if tag == "y":
        return bytes.fromhex(value)
    if tag == "t":
        return tuple(decode_canonical(v) for v in value)
    if tag == "l":
        return [decode_canonical(v) for v in value]
    if tag == "s":
        return frozenset(decode_canonical(v) for v in value)
    if tag == "d":
        return {decode_canonical(k): decode_canonical(v) for k, v in value}
    raise SnapshotError(f"Cannot decode state tagged {tag!r}, pass decode_state")


def _hex(h: StateHash) -> str:
    return f"{h:#x}"


def _history_items(engine: SimulationEngine) -> List[Dict[str, Any]]:
    return [
        {"t": engine.origin + i, "masses": {_hex(h): m for h, m in dist.items()}}
        for i, dist in enumerate(engine.history)
    ]


# =============================================================================
# SNAPSHOT
# =============================================================================

def snapshot(engine: SimulationEngine, graph: Optional[ReachableGraph] = None,
             encode_state: Optional[StateCodec] = None) -> Dict[str, Any]:
    """
    Build a JSON-able snapshot of engine (and graph).

    Args:
        engine: Engine to capture
        graph: ReachableGraph to include, e.g. engine.full_traversal().graph
        encode_state: State -> JSON-able value (default: canonical_form)

    Returns:
        dict ready for json.dumps
    """
    encode = encode_state or canonical_form
    registry = engine.registry

    hashes = dict.fromkeys(h for dist in engine.history for h in dist)
    hashes.update(dict.fromkeys(engine.initial_distribution))
    if graph is not None:
        hashes.update(dict.fromkeys(graph.nodes()))

    history = _history_items(engine)
    transition_function = engine.oracle.transition_function
    rule_names = transition_function.rule_names if isinstance(transition_function, RuleEngine) else None

    data: Dict[str, Any] = {
        "version": SNAPSHOT_VERSION,
        "config": config_schema.to_dict(engine.config),
        "config_hash": config_schema.config_hash(engine.config),
        "hash_bytes": registry.hash_bytes,
        "states": {_hex(h): encode(registry.get(h)) for h in hashes},
        "origin": engine.origin,
        "time": engine.time,
        "initial": {_hex(h): m for h, m in engine.initial_distribution.items()},
        "history": history,
        "pruned_total": engine.pruned_total,
        "rule_names": rule_names,
        "fingerprint": merkle(history),
        "graph": None,
    }
    if graph is not None:
        expanded = set(graph.expanded_nodes())
        absorbing = set(graph.absorbing_nodes())
        data["graph"] = {
            "nodes": [
                {"hash": _hex(h), "expanded": h in expanded, "absorbing": h in absorbing}
                for h in graph.nodes()
            ],
            "edges": [[_hex(e.source), _hex(e.target), e.label, e.weight] for e in graph.edges()],
        }
    return data


def dumps_snapshot(engine: SimulationEngine, graph: Optional[ReachableGraph] = None,
                   encode_state: Optional[StateCodec] = None, indent: Optional[int] = 2) -> str:
    return json.dumps(snapshot(engine, graph, encode_state), indent=indent)


def write_snapshot(path: Union[str, Path], engine: SimulationEngine,
                   graph: Optional[ReachableGraph] = None,
                   encode_state: Optional[StateCodec] = None) -> Path:
    path = Path(path)
    path.write_text(dumps_snapshot(engine, graph, encode_state), encoding="utf-8")
    logger.info("snapshot of %d time step(s) written to %s", len(engine.history), path)
    return path


# =============================================================================
# LOADING
# =============================================================================

def _parse(data: Union[str, Mapping[str, Any]]) -> Mapping[str, Any]:
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as exc:
            raise SnapshotError(f"Snapshot is not valid JSON: {exc}") from exc
    if not isinstance(data, Mapping):
        raise SnapshotError(f"Snapshot must be a mapping, got {type(data).__name__}")
    if data.get("version") != SNAPSHOT_VERSION:
        raise SnapshotError(f"Unsupported snapshot version {data.get('version')!r}")
    missing = [k for k in ("states", "history", "origin", "initial", "hash_bytes") if k not in data]
    if missing:
        raise SnapshotError(f"Snapshot is missing {missing}")
    return data


def _register_states(data: Mapping[str, Any], registry: StateRegistry,
                     decode_state: Optional[StateCodec]) -> None:
    decode = decode_state or decode_canonical
    if registry.hash_bytes != data["hash_bytes"]:
        raise SnapshotError(
            f"Snapshot uses {data['hash_bytes']}-byte hashes, registry uses {registry.hash_bytes}"
        )
    for key, encoded in data["states"].items():
        state = decode(encoded)
        h = registry.register(state)
        if _hex(h) != key:
            raise SnapshotError(f"State recorded as {key} decodes to a state hashing to {_hex(h)}")


def _distribution(masses: Mapping[str, float], data: Mapping[str, Any]) -> Distribution:
    unknown = [k for k in masses if k not in data["states"]]
    if unknown:
        raise SnapshotError(f"Masses reference unrecorded states {unknown}")
    return Distribution({int(k, 16): m for k, m in masses.items()}, hash_bytes=int(data["hash_bytes"]))


def load_snapshot(data: Union[str, Mapping[str, Any]], transition_function=None,
                  decode_state: Optional[StateCodec] = None, *,
                  oracle=None, config: Optional[ChainConfig] = None) -> SimulationEngine:
    """
    Rebuild an engine from a snapshot, reattaching its transition logic.

    Args:
        data: Snapshot dict or JSON text
        transition_function: Callable or RuleEngine driving the restored chain
        decode_state: Encoded value -> state (default: decode_canonical)
        oracle: Existing oracle to use instead of transition_function
        config: Overrides the snapshot's recorded config

    Raises:
        SnapshotError: malformed snapshot, hash mismatch, broken fingerprint
            or history that does not conserve mass
    """
    data = _parse(data)
    if config is None:
        try:
            config = config_schema.load(data.get("config") or {})
        except ConfigError as exc:
            raise SnapshotError(f"Snapshot config is invalid: {exc}") from exc

    if isinstance(transition_function, RuleEngine) and data.get("rule_names") is not None:
        if list(data["rule_names"]) != transition_function.rule_names:
            message = (f"Snapshot was taken with rules {data['rule_names']}, "
                       f"reattached RuleEngine has {transition_function.rule_names}")
            warnings.warn(message, UserWarning, stacklevel=2)
            logger.warning(message)

    oracle = make_oracle(transition_function, oracle, config)
    _register_states(data, oracle.registry, decode_state)

    history = [_distribution(item["masses"], data) for item in data["history"]]
    if not history:
        raise SnapshotError("Snapshot history is empty")
    if merkle(list(data["history"])) != data.get("fingerprint"):
        raise SnapshotError("History fingerprint does not match its contents")
    for item, dist in zip(data["history"], history):
        try:
            validate_conservation(dist.total(), config.probability_tolerance, item["t"])
        except ConservationViolation as exc:
            raise SnapshotError(str(exc)) from exc

    initial = _distribution(data["initial"], data)
    pruned_total = float(data.get("pruned_total", 0.0))
    return SimulationEngine._restore(oracle, config, history, int(data["origin"]), initial, pruned_total)


def read_snapshot(path: Union[str, Path], transition_function=None,
                  decode_state: Optional[StateCodec] = None, **kwargs) -> SimulationEngine:
    text = Path(path).read_text(encoding="utf-8")
    return load_snapshot(text, transition_function, decode_state, **kwargs)


def load_graph(data: Union[str, Mapping[str, Any]], registry: StateRegistry,
               decode_state: Optional[StateCodec] = None) -> Optional[ReachableGraph]:
    """
    Rebuild the snapshot's reachable graph over registry.

    Returns None when the snapshot carries no graph.
    """
    data = _parse(data)
    if data.get("graph") is None:
        return None
    _register_states(data, registry, decode_state)
    graph = ReachableGraph(registry)
    for node in data["graph"]["nodes"]:
        h = int(node["hash"], 16)
        graph.add_node(h)
        if node["expanded"]:
            graph.mark_expanded(h, absorbing=node["absorbing"])
    for source, target, label, weight in data["graph"]["edges"]:
        graph.add_edge(int(source, 16), int(target, 16), label, weight)
    return graph
