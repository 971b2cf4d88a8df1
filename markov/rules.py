"""
markov/rules.py - Declarative Rule Composition

Rules are the frontend; TransitionOracle is the backend. A RuleEngine turns a
set of condition/action rules into an ordinary transition function.

Condition is a closed tagged variant (ALWAYS, NEVER, PREDICATE). Only
PREDICATE conditions are evaluated against a state, and only they populate the
predicate cache.

Rule definitions carry executable logic and are never serialized.
"""

import logging
import math
import threading
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from receipts import ReceiptLedger, emit_receipt

from .constants import (
    LABEL_SEPARATOR,
    NOTHING_LABEL,
    WEIGHTING_DIRECT,
    WEIGHTING_MODES,
    WEIGHTING_RELATIVE,
)
from .types_config import ChainConfig
from .types_state import StateHash, StateRegistry, Transition, as_transition

logger = logging.getLogger(__name__)


# =============================================================================
# CONDITION (closed tagged variant)
# =============================================================================

class ConditionKind(Enum):
    ALWAYS = "always"
    NEVER = "never"
    PREDICATE = "predicate"


@dataclass(frozen=True)
class Condition:
    """When a rule applies. Build with Condition.always/never/when."""
    kind: ConditionKind
    predicate: Optional[Callable[[Any], bool]] = None

    def __post_init__(self):
        if (self.kind is ConditionKind.PREDICATE) != (self.predicate is not None):
            raise ValueError("a predicate is required for PREDICATE conditions and only for them")

    @classmethod
    def always(cls) -> "Condition":
        return ALWAYS

    @classmethod
    def never(cls) -> "Condition":
        return NEVER

    @classmethod
    def when(cls, predicate: Callable[[Any], bool]) -> "Condition":
        return cls(ConditionKind.PREDICATE, predicate)

    @property
    def is_constant(self) -> bool:
        return self.kind is not ConditionKind.PREDICATE


ALWAYS = Condition(ConditionKind.ALWAYS)
NEVER = Condition(ConditionKind.NEVER)


# =============================================================================
# RULE
# =============================================================================

@dataclass(frozen=True)
class Rule:
    """
    A named condition/action pair.

    The action maps a state to one Transition (or a (target, label, weight)
    triple).
    """
    name: str
    condition: Condition
    action: Callable[[Any], Any]
    description: str = ""

    @classmethod
    def weighted(cls, name: str, condition: Condition, weight: float,
                 effect: Callable[[Any], Any], description: str = "") -> "Rule":
        """Rule whose action moves to effect(state) with a fixed weight, labelled by name."""
        def action(state: Any) -> Transition:
            return Transition(effect(state), name, weight)
        return cls(name, condition, action, description)

    def apply(self, state: Any) -> Transition:
        """Run the action, ignoring the condition."""
        return as_transition(self.action(state))


class PredicateCache:
    """(rule name, StateHash) -> bool, lock-guarded."""

    def __init__(self):
        self._entries: Dict[Tuple[str, StateHash], bool] = {}
        self._lock = threading.Lock()

    def lookup(self, rule_name: str, h: StateHash) -> Optional[bool]:
        with self._lock:
            return self._entries.get((rule_name, h))

    def store(self, rule_name: str, h: StateHash, applies: bool) -> bool:
        with self._lock:
            return self._entries.setdefault((rule_name, h), applies)

    def hashes_where(self, rule_name: str, applies: bool = True) -> Set[StateHash]:
        with self._lock:
            return {h for (name, h), v in self._entries.items() if name == rule_name and v == applies}

    def invalidate_rule(self, rule_name: str) -> int:
        with self._lock:
            keys = [k for k in self._entries if k[0] == rule_name]
            for k in keys:
                del self._entries[k]
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def rule_applies(rule: Rule, state: Any, h: Optional[StateHash] = None,
                 predicate_cache: Optional[PredicateCache] = None) -> bool:
    """Evaluate a rule's condition; predicates are cached when a cache and hash are given."""
    kind = rule.condition.kind
    if kind is ConditionKind.ALWAYS:
        return True
    if kind is ConditionKind.NEVER:
        return False
    if predicate_cache is None or h is None:
        return bool(rule.condition.predicate(state))
    cached = predicate_cache.lookup(rule.name, h)
    if cached is not None:
        return cached
    return predicate_cache.store(rule.name, h, bool(rule.condition.predicate(state)))


# =============================================================================
# COMPOSITION
# =============================================================================

def compose(rules: Iterable[Rule], state: Any,
            predicate_cache: Optional[PredicateCache] = None,
            registry: Optional[StateRegistry] = None) -> List[Transition]:
    """
    Transitions of state under a rule set: the action output of every rule
    whose condition holds, in rule order.
    """
    h = registry.register(state) if (registry is not None and predicate_cache is not None) else None
    return [rule.apply(state) for rule in rules if rule_applies(rule, state, h, predicate_cache)]


def relative_weights(state: Any, transitions: List[Transition],
                     registry: StateRegistry) -> List[Transition]:
    """
    Treat weights as independent rates.

    Transitions to the same target merge (weights add, labels join). The
    chance that no rule fires, prod(1 - w), becomes a transition back to the
    state itself. All weights are then normalized by their sum.
    """
    merged: "OrderedDict[StateHash, List[Any]]" = OrderedDict()
    for t in transitions:
        if t.weight == 0.0:
            continue
        th = registry.register(t.target)
        if th in merged:
            entry = merged[th]
            entry[1] = f"{entry[1]}{LABEL_SEPARATOR}{t.label}"
            entry[2].append(t.weight)
        else:
            merged[th] = [t.target, t.label, [t.weight]]

    weights = {th: math.fsum(entry[2]) for th, entry in merged.items()}
    nothing = math.prod(max(0.0, 1.0 - w) for w in weights.values())
    weight_sum = math.fsum(list(weights.values()) + [nothing])
    if weight_sum <= 0.0:
        return []

    out: "OrderedDict[StateHash, Transition]" = OrderedDict(
        (th, Transition(entry[0], entry[1], weights[th] / weight_sum)) for th, entry in merged.items()
    )
    if nothing > 0.0:
        sh = registry.register(state)
        stay = nothing / weight_sum
        if sh in out:
            t = out[sh]
            out[sh] = Transition(t.target, f"{t.label}{LABEL_SEPARATOR}{NOTHING_LABEL}", t.weight + stay)
        else:
            out[sh] = Transition(state, NOTHING_LABEL, stay)
    return list(out.values())


class RuleEngine:
    """
    Callable transition function built from rules.

    weighting="direct": action weights are probabilities and must already sum
    to 1 for every state. weighting="relative": weights are rates, see
    relative_weights().

    Changing the rule set invalidates only what the changed rule touches: its
    own predicate-cache entries, and in every bound oracle the cached states
    the rule applies to.
    """

    def __init__(self, rules: Iterable[Rule] = (), weighting: str = WEIGHTING_DIRECT,
                 registry: Optional[StateRegistry] = None, config: Optional[ChainConfig] = None):
        if weighting not in WEIGHTING_MODES:
            raise ValueError(f"weighting must be one of {WEIGHTING_MODES}, got {weighting!r}")
        self.config = config or ChainConfig()
        self.weighting = weighting
        self.registry = registry if registry is not None else StateRegistry(self.config.hash_bytes)
        self.predicate_cache = PredicateCache()
        self._rules: "OrderedDict[str, Rule]" = OrderedDict()
        self._oracles: List[Any] = []
        self.receipts = ReceiptLedger(self.config.receipt_buffer, self.config.receipt_path)
        for rule in rules:
            if rule.name in self._rules:
                raise ValueError(f"duplicate rule name {rule.name!r}")
            self._rules[rule.name] = rule

    @property
    def rules(self) -> Tuple[Rule, ...]:
        return tuple(self._rules.values())

    @property
    def rule_names(self) -> List[str]:
        return list(self._rules)

    def compose(self, state: Any) -> List[Transition]:
        transitions = compose(self._rules.values(), state, self.predicate_cache, self.registry)
        if self.weighting == WEIGHTING_RELATIVE:
            return relative_weights(state, transitions, self.registry)
        return transitions

    __call__ = compose

    # --- oracle binding ---

    def oracle(self, config: Optional[ChainConfig] = None):
        """A TransitionOracle over this engine, sharing its registry and bound for invalidation."""
        from .oracle import TransitionOracle

        oracle = TransitionOracle(self, config or self.config, registry=self.registry)
        self.bind(oracle)
        return oracle

    def bind(self, oracle) -> None:
        if oracle.transition_function is not self:
            raise ValueError("oracle does not resolve through this RuleEngine")
        if oracle.registry is not self.registry:
            raise ValueError("oracle must share the RuleEngine registry")
        if oracle not in self._oracles:
            self._oracles.append(oracle)

    # --- rule-set mutation ---

    def add_rule(self, rule: Rule) -> int:
        if rule.name in self._rules:
            raise ValueError(f"rule {rule.name!r} already exists")
        self._rules[rule.name] = rule
        return self._invalidate_for(rule, "add")

    def remove_rule(self, name: str) -> int:
        try:
            rule = self._rules.pop(name)
        except KeyError:
            raise KeyError(f"rule {name!r} not found") from None
        return self._invalidate_for(rule, "remove")

    def replace_rule(self, rule: Rule) -> int:
        if rule.name not in self._rules:
            raise KeyError(f"rule {rule.name!r} not found")
        old = self._rules[rule.name]
        self._rules[rule.name] = rule
        dropped = self._invalidate_for(old, "replace")
        return dropped + self._invalidate_for(rule, "replace")

    def _affected(self, rule: Rule, cached: List[StateHash]) -> List[StateHash]:
        kind = rule.condition.kind
        if kind is ConditionKind.NEVER:
            return []
        if kind is ConditionKind.ALWAYS:
            return cached
        affected = []
        for h in cached:
            if rule_applies(rule, self.registry.get(h), h, self.predicate_cache):
                affected.append(h)
        return affected

    def _invalidate_for(self, rule: Rule, change: str) -> int:
        # drop stale predicate results before re-evaluating against cached states
        self.predicate_cache.invalidate_rule(rule.name)
        dropped = 0
        for oracle in self._oracles:
            affected = self._affected(rule, oracle.cache.hashes())
            # a rule change may repair a state that failed validation
            dropped += oracle.invalidate(affected + oracle.cache.failed_hashes())
        if change == "remove":
            self.predicate_cache.invalidate_rule(rule.name)
        logger.debug("rule %r %s: %d transition entries invalidated", rule.name, change, dropped)
        if self.config.emit_receipts:
            self.receipts.append(emit_receipt("cache_invalidation", {
                "tenant_id": self.config.tenant_id,
                "rule_name": rule.name,
                "change": change,
                "condition": rule.condition.kind.value,
                "entries_dropped": dropped,
            }))
        return dropped
