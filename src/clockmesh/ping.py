"""
Ping servers and clients that thread logical clocks through a request/reply
exchange, plus the reference servers used for physical clock synchronization.

Every server runs until its process is cancelled. A message of unexpected
shape is a protocol violation and terminates the receiving process.
"""
from typing import Dict

from .causal_clock import merge, update_vector
from .emulation import Process
from .errors import ProtocolViolation
from .logical_clock import update_on_receive, update_on_send
from .messages import Control, PhysicalTimeMessage, VirtualTimeMessage


async def lamport_ping_server(process: Process, clock: int = 0) -> None:
    """Answer each ping with the server's Lamport clock after the receive and send events."""
    while True:
        envelope = await process.receive()
        message = envelope.message

        if isinstance(message, VirtualTimeMessage):
            clock = update_on_receive(clock, message.lamport_clock)
            clock = update_on_send(clock)
            process.send(envelope.sender, VirtualTimeMessage.new_lamport(clock))
        elif message == Control.CURRENT_TIME:
            # query from outside the system: no clock attached
            clock = update_on_send(clock)
            clock = update_on_send(clock)
            process.send(envelope.sender, clock)
        else:
            raise ProtocolViolation(f"Unexpected message {message!r} from {envelope.sender}")
        process.logger.debug(f"Lamport clock is now {clock}")


async def lamport_ping_client(process: Process, server: str, clock: int) -> int:
    """Send one ping to ``server`` and return the client's clock after the reply."""
    clock = update_on_send(clock)
    process.send(server, VirtualTimeMessage.new_lamport(clock))

    envelope = await process.receive(lambda env: env.sender == server)
    if not isinstance(envelope.message, VirtualTimeMessage):
        raise ProtocolViolation(f"Unexpected message {envelope.message!r} from {server}")
    return update_on_receive(clock, envelope.message.lamport_clock)


async def vector_ping_server(process: Process, clock: Dict[str, int]) -> None:
    """Answer each ping with the server's vector clock merged with the client's."""
    me = process.name
    while True:
        envelope = await process.receive()
        message = envelope.message

        if isinstance(message, VirtualTimeMessage):
            clock = update_vector(me, clock)
            clock = merge(clock, message.vector_clock)
            clock = update_vector(me, clock)
            process.send(envelope.sender, VirtualTimeMessage.new_vector(clock))
        elif message == Control.CURRENT_TIME:
            clock = update_vector(me, clock)
            clock = update_vector(me, clock)
            process.send(envelope.sender, dict(clock))
        else:
            raise ProtocolViolation(f"Unexpected message {message!r} from {envelope.sender}")
        process.logger.debug(f"Vector clock is now {clock}")


async def vector_ping_client(process: Process, server: str, clock: Dict[str, int]) -> Dict[str, int]:
    """Send one ping to ``server`` and return the client's vector clock after the reply."""
    me = process.name
    clock = update_vector(me, clock)
    process.send(server, VirtualTimeMessage.new_vector(clock))

    envelope = await process.receive(lambda env: env.sender == server)
    if not isinstance(envelope.message, VirtualTimeMessage):
        raise ProtocolViolation(f"Unexpected message {envelope.message!r} from {server}")
    clock = update_vector(me, clock)
    return merge(clock, envelope.message.vector_clock)


async def physical_ping_server(process: Process) -> None:
    """Echo the client's send time back, for RTT measurement."""
    while True:
        envelope = await process.receive()
        if not isinstance(envelope.message, PhysicalTimeMessage):
            raise ProtocolViolation(f"Unexpected message {envelope.message!r} from {envelope.sender}")
        process.send(envelope.sender, envelope.message.echo())


async def time_server(process: Process) -> None:
    """Reference clock: echo the client's send time together with the server's own time."""
    while True:
        envelope = await process.receive()
        if not isinstance(envelope.message, PhysicalTimeMessage):
            raise ProtocolViolation(f"Unexpected message {envelope.message!r} from {envelope.sender}")
        process.send(envelope.sender, envelope.message.reply(process.now()))
