"""
ClockMesh - causality tracking and clock synchronization for message-passing processes.

This package implements classic distributed-time primitives:
- Lamport logical clocks
- Vector clocks with a causal-order comparator
- RTT-based physical clock synchronization with EWMA smoothing
- An asyncio process emulation to run them over a fuzzable network
"""

from .errors import ClockMeshError, InvalidClockValue, ProtocolViolation
from .logical_clock import LamportClock, update_on_receive, update_on_send
from .causal_clock import CausalOrder, VectorClock, compare, increment, merge, update_vector
from .messages import Control, PhysicalTimeMessage, VirtualTimeMessage
from .emulation import Delay, Drop, Emulation, Envelope, Process, TimerFired
from .time_sync import (
    ClockSynchronizer,
    ProbeRound,
    RttEstimator,
    RttStats,
    SyncConfig,
    SyncState,
    SyncStatus,
    compute_current_time,
    measure_rtt,
    pause_and_wait,
    time_sync,
)

__version__ = "0.1.0"
__all__ = [
    "ClockMeshError",
    "InvalidClockValue",
    "ProtocolViolation",
    "LamportClock",
    "update_on_receive",
    "update_on_send",
    "CausalOrder",
    "VectorClock",
    "compare",
    "increment",
    "merge",
    "update_vector",
    "Control",
    "PhysicalTimeMessage",
    "VirtualTimeMessage",
    "Delay",
    "Drop",
    "Emulation",
    "Envelope",
    "Process",
    "TimerFired",
    "ClockSynchronizer",
    "ProbeRound",
    "RttEstimator",
    "RttStats",
    "SyncConfig",
    "SyncState",
    "SyncStatus",
    "compute_current_time",
    "measure_rtt",
    "pause_and_wait",
    "time_sync",
]
