"""
tests/test_types_state.py - StateHash, Transition and StateRegistry

Every test has assert statements.
"""

import os
import subprocess
import sys
from collections import namedtuple
from dataclasses import dataclass

import pytest

from markov.errors import HashCollision
from markov.types_state import (
    StateRegistry,
    Transition,
    as_transition,
    canonical_encoding,
    state_hash,
)


@dataclass(frozen=True)
class Position:
    x: int
    y: int


Pair = namedtuple("Pair", "a b")


class Token:
    """Plain class compared by value, default repr."""

    def __init__(self, name, count):
        self.name = name
        self.count = count

    def __eq__(self, other):
        return isinstance(other, Token) and (self.name, self.count) == (other.name, other.count)

    def __hash__(self):
        return hash((self.name, self.count))


class Slotted:
    __slots__ = ("row", "__col")

    def __init__(self, row, col):
        self.row = row
        self.__col = col


ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class TestStateHash:
    """Tests for state_hash."""

    def test_deterministic(self):
        assert state_hash((1, "a")) == state_hash((1, "a"))

    def test_default_width_is_64_bits(self):
        """Default hash fits in 8 bytes."""
        h = state_hash("anything")
        assert 0 <= h < 2 ** 64, f"Hash {h} outside 64-bit range"

    @pytest.mark.parametrize("width", [4, 16, 32])
    def test_configured_width(self, width):
        h = state_hash("anything", width)
        assert 0 <= h < 2 ** (8 * width), f"Hash {h} outside {width}-byte range"

    def test_int_and_float_differ(self):
        """1 and 1.0 are distinct states."""
        assert state_hash(1) != state_hash(1.0)

    def test_bool_and_int_differ(self):
        assert state_hash(True) != state_hash(1)

    def test_tuple_and_list_differ(self):
        assert state_hash((1, 2)) != state_hash([1, 2])

    def test_set_order_independent(self):
        """Sets and dicts hash independently of insertion order."""
        assert state_hash(frozenset([3, 1, 2])) == state_hash(frozenset([2, 3, 1]))
        assert state_hash({"b": 1, "a": 2}) == state_hash({"a": 2, "b": 1})

    def test_dataclass_and_namedtuple(self):
        assert state_hash(Position(1, 2)) == state_hash(Position(1, 2))
        assert state_hash(Position(1, 2)) != state_hash(Position(2, 1))
        assert state_hash(Pair(1, 2)) != state_hash((1, 2))

    def test_huge_int_does_not_wrap(self):
        """Integers beyond 64 bits hash without overflow and stay distinct."""
        big = 2 ** 200
        assert state_hash(big) != state_hash(big + 2 ** 64)
        assert state_hash(big) < 2 ** 64

    def test_stable_across_processes(self):
        """Hash does not depend on the per-process string hash seed."""
        code = "from markov.types_state import state_hash; print(state_hash(('walk', 3)))"
        out = subprocess.run(
            [sys.executable, "-c", code],
            capture_output=True, text=True, check=True,
            env={**os.environ, "PYTHONHASHSEED": "12345", "PYTHONPATH": ROOT},
        )
        assert int(out.stdout.strip()) == state_hash(("walk", 3))

    def test_canonical_encoding_is_bytes(self):
        assert isinstance(canonical_encoding({"a": [1, 2.5]}), bytes)

    def test_plain_class_hashes_by_attributes(self):
        """Equal instances without a __repr__ share one hash."""
        assert state_hash(Token("a", 1)) == state_hash(Token("a", 1))
        assert state_hash(Token("a", 1)) != state_hash(Token("a", 2))

    def test_slotted_class_hashes_by_slots(self):
        assert state_hash(Slotted(1, 2)) == state_hash(Slotted(1, 2))
        assert state_hash(Slotted(1, 2)) != state_hash(Slotted(1, 3)), "Private slots take part in the hash"

    def test_attribute_less_default_repr_rejected(self):
        with pytest.raises(TypeError):
            state_hash(object())

    def test_custom_repr_type(self):
        from decimal import Decimal

        assert state_hash(Decimal("1.50")) == state_hash(Decimal("1.50"))
        assert state_hash(Decimal("1.50")) != state_hash(Decimal("2"))

    def test_equal_values_of_different_types_register_apart(self):
        """1, 1.0 and True compare equal in Python but are three states."""
        registry = StateRegistry()
        hashes = {registry.register(1), registry.register(1.0), registry.register(True)}
        assert len(hashes) == 3
        assert len(registry) == 3


class TestTransition:
    """Tests for Transition and as_transition."""

    def test_target_hash_not_in_equality(self):
        a = Transition(1, "right", 0.5)
        assert a == a.with_hash(123)

    def test_from_triple(self):
        t = as_transition((2, "left", 1))
        assert t == Transition(2, "left", 1.0)
        assert isinstance(t.weight, float)

    def test_rejects_other_shapes(self):
        with pytest.raises(TypeError):
            as_transition((1, 2))


class TestStateRegistry:
    """Tests for StateRegistry."""

    def test_register_and_get(self):
        registry = StateRegistry()
        h = registry.register(("s", 1))
        assert registry.get(h) == ("s", 1)
        assert h in registry
        assert len(registry) == 1

    def test_register_idempotent(self):
        registry = StateRegistry()
        assert registry.register(5) == registry.register(5)
        assert len(registry) == 1

    def test_unknown_hash(self):
        with pytest.raises(KeyError):
            StateRegistry().get(42)

    def test_collision_detected(self):
        """Two unequal states under one hash raise instead of aliasing."""
        registry = StateRegistry()
        h = registry.register("a")
        registry._states[h] = "not-a"
        with pytest.raises(HashCollision):
            registry.register("a")

    def test_width_out_of_range(self):
        with pytest.raises(ValueError):
            state_hash(1, 0)
