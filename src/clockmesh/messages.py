"""
Wire payloads exchanged by clock-carrying processes.

Virtual time messages carry a Lamport timestamp and/or a vector clock
snapshot; physical time messages carry the timestamps of a synchronization
probe. Both serialize to plain dictionaries and to newline-delimited JSON.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from .causal_clock import validate_vector
from .errors import InvalidClockValue, ProtocolViolation
from .logical_clock import validate_timestamp


class Control(str, Enum):
    """In-band control tokens understood by the example servers and the synchronizer."""
    PAUSE = "pause"
    PAUSED = "paused"
    CURRENT_TIME = "current_time"


@dataclass
class VirtualTimeMessage:
    """Structure for logical clocks attached to a message."""

    lamport_clock: int = 0
    vector_clock: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        validate_timestamp(self.lamport_clock, "lamport_clock")
        validate_vector(self.vector_clock)
        # JSON object keys are strings
        for process_id in self.vector_clock:
            if not isinstance(process_id, str):
                raise InvalidClockValue(f"Process id {process_id!r} in vector_clock must be a string")

    @classmethod
    def new_lamport(cls, lamport_time: int) -> 'VirtualTimeMessage':
        return cls(lamport_clock=lamport_time)

    @classmethod
    def new_vector(cls, vector_time: Dict[str, int]) -> 'VirtualTimeMessage':
        return cls(vector_clock=dict(vector_time))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'virtual_time',
            'lamport_clock': self.lamport_clock,
            'vector_clock': dict(self.vector_clock),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VirtualTimeMessage':
        return cls(
            lamport_clock=data.get('lamport_clock', 0),
            vector_clock=dict(data.get('vector_clock', {})),
        )


@dataclass
class PhysicalTimeMessage:
    """
    Timestamps of one synchronization probe.

    The client fills ``client_send_time``; the reply echoes it and adds
    ``server_send_time`` (None on the request and on plain RTT echoes).
    """

    client_send_time: float
    server_send_time: Optional[float] = None

    @classmethod
    def request(cls, now: float) -> 'PhysicalTimeMessage':
        return cls(client_send_time=now)

    def reply(self, now: float) -> 'PhysicalTimeMessage':
        """Build the server's answer to this request."""
        return PhysicalTimeMessage(client_send_time=self.client_send_time, server_send_time=now)

    def echo(self) -> 'PhysicalTimeMessage':
        return PhysicalTimeMessage(client_send_time=self.client_send_time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'physical_time',
            'client_send_time': self.client_send_time,
            'server_send_time': self.server_send_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PhysicalTimeMessage':
        return cls(
            client_send_time=data['client_send_time'],
            server_send_time=data.get('server_send_time'),
        )


Message = Union[VirtualTimeMessage, PhysicalTimeMessage, Control]

_DECODERS = {
    'virtual_time': VirtualTimeMessage.from_dict,
    'physical_time': PhysicalTimeMessage.from_dict,
}


def encode(message: Message) -> bytes:
    """Serialize a message as one line of JSON.

    Only the payload classes and control tokens have a wire form; raw
    current-time answers from the ping servers stay in-process.
    """
    if isinstance(message, Control):
        data = {'type': 'control', 'value': message.value}
    elif isinstance(message, (VirtualTimeMessage, PhysicalTimeMessage)):
        data = message.to_dict()
    else:
        raise ProtocolViolation(f"Cannot encode {type(message).__name__} payload {message!r}")
    return json.dumps(data).encode() + b'\n'


def decode(line: bytes) -> Message:
    """Parse one line produced by ``encode``."""
    try:
        data = json.loads(line.decode().strip())
        msg_type = data['type']
        if msg_type == 'control':
            return Control(data['value'])
        return _DECODERS[msg_type](data)
    except (ValueError, KeyError, TypeError) as e:
        raise ProtocolViolation(f"Malformed message {line!r}: {e}") from e
