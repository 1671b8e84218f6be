"""
Exception types raised by the clock primitives and the process runtime.
"""


class ClockMeshError(Exception):
    """Base class for clockmesh errors."""
    pass


class InvalidClockValue(ClockMeshError, ValueError):
    """A clock value is outside its domain (negative or not an integer)."""
    pass


class ProtocolViolation(ClockMeshError):
    """A message of unexpected shape arrived where a clock-bearing reply was expected."""
    pass
