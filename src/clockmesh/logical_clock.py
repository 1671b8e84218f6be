"""
Lamport logical clock for ordering events between message-passing processes.
"""
from .errors import InvalidClockValue


def validate_timestamp(value: int, name: str) -> None:
    # bool is an int subclass but never a timestamp
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidClockValue(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise InvalidClockValue(f"{name} must be non-negative, got {value}")


def update_on_receive(current: int, received: int) -> int:
    """
    Compute the clock after receiving a message stamped ``received``.

    The result is strictly greater than both ``current`` and ``received``.
    A stale ``received`` (smaller than ``current``) is legal.
    """
    validate_timestamp(current, "current")
    validate_timestamp(received, "received")
    return max(current, received) + 1


def update_on_send(current: int) -> int:
    """Compute the clock to attach to an outgoing message."""
    validate_timestamp(current, "current")
    return current + 1


class LamportClock:
    """
    Lamport clock held as a field by the process that owns it.

    Only the owner calls ``tick``, ``send`` and ``receive``; other processes
    see the value only through the timestamps carried in messages.
    """

    def __init__(self, value: int = 0):
        validate_timestamp(value, "value")
        self.value = value

    def tick(self) -> int:
        """Advance the clock for a local event."""
        self.value = update_on_send(self.value)
        return self.value

    def send(self) -> int:
        """Advance the clock and return the timestamp for an outgoing message."""
        return self.tick()

    def receive(self, received: int) -> int:
        """Advance the clock past a received timestamp."""
        self.value = update_on_receive(self.value, received)
        return self.value

    def __repr__(self) -> str:
        return f"LamportClock({self.value})"
