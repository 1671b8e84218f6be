"""
Vector Clock implementation for tracking causality between processes.

A vector clock is an open mapping from process id to event counter. Ids that
are absent from the mapping read as 0, so participants never need to be known
up front: keys appear the first time a process increments or merges them.
"""
from enum import Enum
from typing import Any, Dict, Hashable, Iterable, Mapping, Optional

from .errors import InvalidClockValue

Vector = Mapping[Hashable, int]


class CausalOrder(str, Enum):
    """Outcome of comparing two vector clocks."""
    BEFORE = "before"
    AFTER = "after"
    CONCURRENT = "concurrent"


_LESS = "less"
_GREATER = "greater"
_EQUAL = "equal"


def _check_counter(process_id: Hashable, counter: Any) -> None:
    if isinstance(counter, bool) or not isinstance(counter, int):
        raise InvalidClockValue(f"Counter for {process_id!r} must be an integer, got {counter!r}")
    if counter < 0:
        raise InvalidClockValue(f"Counter for {process_id!r} must be non-negative, got {counter}")


def validate_vector(clock: Vector) -> None:
    """Raise InvalidClockValue unless every entry of ``clock`` is a non-negative int."""
    if not isinstance(clock, Mapping):
        raise InvalidClockValue(f"Vector clock must be a mapping, got {type(clock).__name__}")
    for process_id, counter in clock.items():
        _check_counter(process_id, counter)


def component(clock: Vector, process_id: Hashable) -> int:
    """Read one counter, treating an absent id as 0. Never inserts the key."""
    return clock.get(process_id, 0)


def increment(clock: Vector, self_id: Hashable) -> Dict[Hashable, int]:
    """Return a copy of ``clock`` with the entry for ``self_id`` advanced by one."""
    validate_vector(clock)
    new_clock = dict(clock)
    new_clock[self_id] = component(clock, self_id) + 1
    return new_clock


def update_vector(process_id: Hashable, clock: Vector) -> Dict[Hashable, int]:
    """Event hook called by ``process_id`` on every send and receive."""
    return increment(clock, process_id)


def merge(current: Vector, received: Vector) -> Dict[Hashable, int]:
    """
    Combine two clocks into their componentwise maximum.

    A key present in only one input is copied through unchanged.
    """
    validate_vector(current)
    validate_vector(received)
    merged = dict(current)
    for process_id, counter in received.items():
        merged[process_id] = max(component(current, process_id), counter)
    return merged


def _extend(clock: Vector, keys: Iterable[Hashable]) -> Dict[Hashable, int]:
    # fresh copy padded with zeros for ids the other vector knows about
    extended = dict(clock)
    for key in keys:
        extended.setdefault(key, 0)
    return extended


def _compare_component(c1: int, c2: int) -> str:
    if c1 < c2:
        return _LESS
    if c1 > c2:
        return _GREATER
    return _EQUAL


def compare(v1: Vector, v2: Vector) -> CausalOrder:
    """
    Determine the causal order of two vector clocks.

    Returns BEFORE if ``v1`` happened before ``v2``, AFTER if ``v2`` happened
    before ``v1`` and CONCURRENT otherwise. Identical vectors are reported as
    CONCURRENT. Absent ids read as 0, so vectors with disjoint keys are
    CONCURRENT unless one side holds only zeros.
    """
    validate_vector(v1)
    validate_vector(v2)

    left = _extend(v1, v2.keys())
    right = _extend(v2, v1.keys())
    results = {_compare_component(left[key], right[key]) for key in left}

    if _LESS in results and _GREATER not in results:
        return CausalOrder.BEFORE
    if _GREATER in results and _LESS not in results:
        return CausalOrder.AFTER
    return CausalOrder.CONCURRENT


class VectorClock:
    """
    Represents a vector clock for tracking causal dependencies.

    Operations return new clocks; an instance is never modified after
    construction, so it can be attached to a message without copying.
    """

    def __init__(self, clocks: Optional[Vector] = None):
        clocks = dict(clocks) if clocks is not None else {}
        validate_vector(clocks)
        self.clocks: Dict[Hashable, int] = clocks

    def tick(self, node_id: Hashable) -> 'VectorClock':
        """Return a clock with the counter for the given node incremented."""
        return VectorClock(increment(self.clocks, node_id))

    def merge(self, other: 'VectorClock') -> 'VectorClock':
        """Return the componentwise maximum of this clock and another."""
        return VectorClock(merge(self.clocks, other.clocks))

    def compare(self, other: 'VectorClock') -> CausalOrder:
        return compare(self.clocks, other.clocks)

    def happens_before(self, other: 'VectorClock') -> bool:
        return self.compare(other) is CausalOrder.BEFORE

    def is_concurrent(self, other: 'VectorClock') -> bool:
        return self.compare(other) is CausalOrder.CONCURRENT

    def get(self, node_id: Hashable) -> int:
        """Get the counter for a node (0 if it has never been seen)."""
        return component(self.clocks, node_id)

    def __le__(self, other: 'VectorClock') -> bool:
        """Causally precedes or equals."""
        return all(counter <= other.get(node_id) for node_id, counter in self.clocks.items())

    def __ge__(self, other: 'VectorClock') -> bool:
        return other.__le__(self)

    def __eq__(self, other: object) -> bool:
        """Equal when every counter matches, absent ids counting as 0."""
        if not isinstance(other, VectorClock):
            return NotImplemented
        return self <= other and other <= self

    def __ne__(self, other: object) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def to_dict(self) -> Dict[Hashable, int]:
        """Convert to a dictionary for serialization."""
        return dict(self.clocks)

    @classmethod
    def from_dict(cls, data: Vector) -> 'VectorClock':
        """Create a VectorClock from a dictionary."""
        return cls(data)

    def __repr__(self) -> str:
        return f"VectorClock({self.clocks!r})"

    def __str__(self) -> str:
        return str(self.clocks)
