"""
Tests for vector clock operations and causal comparison.
"""

import pytest

from clockmesh.causal_clock import (
    CausalOrder,
    VectorClock,
    compare,
    component,
    increment,
    merge,
    update_vector,
)
from clockmesh.errors import InvalidClockValue


class TestIncrement:
    """Tests for incrementing a process's own entry."""

    def test_increments_only_named_process(self):
        """Only the owner's component changes."""
        assert update_vector("a", {"a": 7, "b": 22}) == {"a": 8, "b": 22}

    def test_absent_entry_starts_at_zero(self):
        """A new process id is added with value 1."""
        assert increment({"a": 3}, "b") == {"a": 3, "b": 1}

    def test_does_not_mutate_input(self):
        """The caller's mapping is left untouched."""
        clock = {"a": 1}
        increment(clock, "a")
        increment(clock, "z")
        assert clock == {"a": 1}

    def test_increment_happens_after(self):
        """An incremented clock is causally after its predecessor."""
        for clock in ({}, {"a": 1}, {"a": 4, "b": 2}, {"b": 9}):
            later = increment(clock, "a")
            assert compare(clock, later) is CausalOrder.BEFORE
            assert compare(later, clock) is CausalOrder.AFTER


class TestMerge:
    """Tests for combining a received clock into the local one."""

    def test_componentwise_max(self):
        assert merge({"a": 6, "b": 2, "c": 6}, {"a": 1, "b": 200, "c": 6}) == {"a": 6, "b": 200, "c": 6}

    def test_disjoint_keys_copied_through(self):
        assert merge({"a": 2}, {"b": 3}) == {"a": 2, "b": 3}

    def test_commutative(self):
        v1 = {"a": 3, "b": 5}
        v2 = {"a": 7, "c": 2}
        assert merge(v1, v2) == merge(v2, v1)

    def test_associative(self):
        v1, v2, v3 = {"a": 1, "b": 4}, {"b": 2, "c": 8}, {"a": 5, "c": 3}
        assert merge(merge(v1, v2), v3) == merge(v1, merge(v2, v3))

    def test_idempotent(self):
        v = {"a": 4, "b": 0, "c": 9}
        assert merge(v, v) == v

    def test_does_not_mutate_inputs(self):
        current, received = {"a": 1}, {"a": 5, "b": 2}
        merge(current, received)
        assert current == {"a": 1}
        assert received == {"a": 5, "b": 2}


class TestCompare:
    """Tests for causal comparison."""

    def test_after(self):
        assert compare({"a": 8, "b": 6}, {"a": 7, "b": 5}) is CausalOrder.AFTER

    def test_before(self):
        assert compare({"a": 7, "b": 5}, {"a": 8, "b": 6}) is CausalOrder.BEFORE

    def test_equal_vectors_are_concurrent(self):
        assert compare({"a": 7, "b": 5}, {"a": 7, "b": 5}) is CausalOrder.CONCURRENT

    def test_crossed_vectors_are_concurrent(self):
        assert compare({"a": 1, "b": 2}, {"a": 2, "b": 1}) is CausalOrder.CONCURRENT

    def test_disjoint_vectors_are_concurrent(self):
        assert compare({"a": 22}, {"b": 66}) is CausalOrder.CONCURRENT

    def test_zero_entry_same_as_absent(self):
        """An explicit zero orders exactly like a missing id."""
        assert compare({"a": 0}, {"b": 5}) is CausalOrder.BEFORE
        assert compare({"b": 5}, {"a": 0}) is CausalOrder.AFTER
        assert compare({"a": 0}, {"b": 5}) is compare({}, {"b": 5})
        assert compare({"a": 0}, {}) is CausalOrder.CONCURRENT

    def test_agrees_with_value_object_ordering(self):
        zeroed, later = VectorClock({"a": 0}), VectorClock({"b": 5})
        assert zeroed <= later
        assert zeroed.happens_before(later)

    def test_missing_key_treated_as_zero(self):
        """A shorter vector can still happen before a longer one."""
        assert compare({"a": 3}, {"a": 3, "b": 1}) is CausalOrder.BEFORE
        assert compare({"a": 3, "b": 1}, {"a": 3}) is CausalOrder.AFTER

    def test_empty_vectors(self):
        assert compare({}, {}) is CausalOrder.CONCURRENT
        assert compare({}, {"a": 1}) is CausalOrder.BEFORE

    def test_antisymmetric(self):
        pairs = [({"a": 1}, {"a": 2}), ({"a": 1, "b": 1}, {"a": 1, "b": 4}), ({"x": 2}, {"x": 2, "y": 1})]
        for v1, v2 in pairs:
            assert compare(v1, v2) is CausalOrder.BEFORE
            assert compare(v2, v1) is CausalOrder.AFTER

    def test_does_not_extend_inputs(self):
        """Padding with zeros happens on copies."""
        v1, v2 = {"a": 1}, {"b": 2}
        compare(v1, v2)
        assert v1 == {"a": 1}
        assert v2 == {"b": 2}

    def test_result_compares_as_string(self):
        assert compare({"a": 2}, {"a": 1}) == "after"


class TestValidation:
    """Malformed vectors are rejected before any work is done."""

    def test_negative_entry(self):
        with pytest.raises(InvalidClockValue):
            merge({"a": -1}, {"a": 2})

    def test_non_integer_entry(self):
        with pytest.raises(InvalidClockValue):
            compare({"a": "3"}, {"a": 2})

    def test_not_a_mapping(self):
        with pytest.raises(InvalidClockValue):
            increment([1, 2], "a")

    def test_component_lookup_does_not_insert(self):
        clock = {"a": 1}
        assert component(clock, "b") == 0
        assert "b" not in clock


class TestVectorClock:
    """Tests for the VectorClock value object."""

    def test_tick_returns_new_clock(self):
        clock = VectorClock({"site-a": 5})
        ticked = clock.tick("site-a")
        assert ticked.get("site-a") == 6
        assert clock.get("site-a") == 5

    def test_merge_and_compare(self):
        local = VectorClock({"a": 2}).tick("a")
        remote = VectorClock({"b": 4})
        merged = local.merge(remote)
        assert merged.to_dict() == {"a": 3, "b": 4}
        assert local.happens_before(merged)
        assert local.is_concurrent(remote)

    def test_equality_ignores_zero_entries(self):
        assert VectorClock({"a": 1, "b": 0}) == VectorClock({"a": 1})
        assert VectorClock({"a": 1}) != VectorClock({"a": 2})

    def test_ordering_operators(self):
        early, late = VectorClock({"a": 1}), VectorClock({"a": 1, "b": 1})
        assert early <= late
        assert late >= early
        assert not late <= early

    def test_to_dict_is_a_copy(self):
        clock = VectorClock({"a": 3})
        d = clock.to_dict()
        d["a"] = 100
        assert clock.get("a") == 3

    def test_from_dict_copies_input(self):
        d = {"a": 3}
        clock = VectorClock.from_dict(d)
        d["a"] = 100
        assert clock.get("a") == 3

    def test_rejects_malformed_counters(self):
        with pytest.raises(InvalidClockValue):
            VectorClock({"a": -4})
