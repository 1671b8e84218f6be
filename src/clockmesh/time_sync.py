"""
Physical clock synchronization against a reference time server.

A client probes the server with its own send time; the server echoes it
together with its current time. Round-trip times are smoothed with an
exponentially weighted moving average and half of the smoothed RTT is taken
as the one-way delay, which projects the server's timestamp forward to an
estimate of "now" at the client.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Iterable, Optional, Tuple

import numpy as np

from .emulation import Process, TimerFired, TimerHandle
from .errors import InvalidClockValue, ProtocolViolation
from .messages import Control, PhysicalTimeMessage


@dataclass
class SyncConfig:
    """Tuning knobs for RTT estimation and periodic resynchronization."""

    alpha: float = 0.9  # weight of history over the newest sample
    sync_interval: float = 200
    msg_timeout: float = 10_000
    initial_rtt: float = 2.0
    history: int = 256  # RTT samples retained for statistics

    def __post_init__(self):
        if not 0.0 <= self.alpha <= 1.0:
            raise InvalidClockValue(f"alpha must be in [0, 1], got {self.alpha}")
        if not self.sync_interval > 0:
            raise InvalidClockValue(f"sync_interval must be positive, got {self.sync_interval}")
        if not self.msg_timeout > 0:
            raise InvalidClockValue(f"msg_timeout must be positive, got {self.msg_timeout}")
        if not self.initial_rtt >= 0:
            raise InvalidClockValue(f"initial_rtt must be non-negative, got {self.initial_rtt}")
        if isinstance(self.history, bool) or not isinstance(self.history, int):
            raise InvalidClockValue(f"history must be an integer, got {self.history!r}")
        if self.history < 1:
            raise InvalidClockValue(f"history must be at least 1, got {self.history}")


def ewma(previous: float, sample: float, alpha: float) -> float:
    """One step of an exponentially weighted moving average."""
    return alpha * previous + (1 - alpha) * sample


def compute_current_time(request_time: float, server_time: float, receive_time: float,
                         current_rtt: float, alpha: float = 0.9) -> Tuple[float, float]:
    """
    Fold one completed probe into the estimates.

    Returns ``(new_estimated_time, new_estimated_rtt)`` where the time is the
    server's reply timestamp advanced by half the smoothed round trip.
    """
    new_rtt = ewma(current_rtt, receive_time - request_time, alpha)
    return server_time + new_rtt / 2, new_rtt


@dataclass
class ProbeRound:
    """Timestamps of one completed probe."""
    request_send_time: float
    server_reply_time: float
    local_receive_time: float

    @property
    def rtt(self) -> float:
        return self.local_receive_time - self.request_send_time


@dataclass
class RttStats:
    """Summary of recently observed round-trip samples."""
    count: int = 0
    mean: float = 0.0
    stdev: float = 0.0
    minimum: float = 0.0
    maximum: float = 0.0
    p95: float = 0.0

    @classmethod
    def from_samples(cls, samples: Iterable[float]) -> 'RttStats':
        arr = np.asarray(list(samples), dtype=float)
        if arr.size == 0:
            return cls()
        return cls(
            count=int(arr.size),
            mean=float(np.mean(arr)),
            stdev=float(np.std(arr)),
            minimum=float(np.min(arr)),
            maximum=float(np.max(arr)),
            p95=float(np.percentile(arr, 95)),
        )


class RttEstimator:
    """EWMA of round-trip times; skipped rounds leave it untouched."""

    def __init__(self, alpha: float = 0.9, initial: float = 2.0, history: int = 256):
        self.alpha = alpha
        self.estimate = float(initial)
        self.samples: Deque[float] = deque(maxlen=history)

    def update(self, sample: float) -> float:
        return self.record(sample, ewma(self.estimate, sample, self.alpha))

    def record(self, sample: float, estimate: float) -> float:
        """Store a sample together with the estimate already derived from it."""
        self.estimate = estimate
        self.samples.append(sample)
        return estimate

    def stats(self) -> RttStats:
        return RttStats.from_samples(self.samples)


class SyncState(str, Enum):
    IDLE = "idle"
    PROBING = "probing"
    RECALIBRATING = "recalibrating"
    PAUSED = "paused"


@dataclass
class SyncStatus:
    """Snapshot of a synchronizer, safe to hand to other code."""
    state: SyncState
    estimated_rtt: float
    estimated_time: Optional[float]
    estimated_offset: Optional[float]
    rounds_completed: int
    rounds_skipped: int
    rtt_stats: RttStats = field(default_factory=RttStats)


class ClockSynchronizer:
    """
    Periodically resynchronizes a process's clock with a time server.

    State machine: IDLE -> PROBING -> RECALIBRATING -> PROBING ... and
    PROBING -> PAUSED on a pause request. PAUSED is terminal: ``run`` returns
    and the last estimates stay available through ``status()``.
    """

    def __init__(self, process: Process, time_server: str, config: Optional[SyncConfig] = None):
        self.process = process
        self.time_server = time_server
        self.config = config or SyncConfig()

        self.state = SyncState.IDLE
        self.estimator = RttEstimator(self.config.alpha, self.config.initial_rtt, self.config.history)
        self.estimated_time: Optional[float] = None
        self.estimated_offset: Optional[float] = None
        self.rounds_completed = 0
        self.rounds_skipped = 0

        # client_send_time of the probe awaiting a reply
        self._outstanding: Optional[float] = None

        self.logger = logging.getLogger(f"ClockSync-{process.name}")

    @property
    def estimated_rtt(self) -> float:
        return self.estimator.estimate

    def status(self) -> SyncStatus:
        return SyncStatus(
            state=self.state,
            estimated_rtt=self.estimated_rtt,
            estimated_time=self.estimated_time,
            estimated_offset=self.estimated_offset,
            rounds_completed=self.rounds_completed,
            rounds_skipped=self.rounds_skipped,
            rtt_stats=self.estimator.stats(),
        )

    async def run(self) -> SyncStatus:
        """Probe, recalibrate and wait until paused. Returns the final status."""
        if self.state is not SyncState.IDLE:
            raise RuntimeError(f"Synchronizer already ran (state={self.state.value})")
        self.logger.info(f"Starting time sync with {self.time_server} every {self.config.sync_interval}")

        wait_until = 0.0
        while True:
            if wait_until <= 0:
                self._send_probe()
                wait_until = self.config.sync_interval

            handle = self.process.timer(wait_until)
            self.state = SyncState.PROBING
            envelope = await self.process.receive()
            message = envelope.message

            if message == TimerFired(handle.timer_id):
                wait_until = 0.0
                continue

            if message == Control.PAUSE:
                self.process.cancel_timer(handle)
                self.process.send(envelope.sender, Control.PAUSED)
                self.state = SyncState.PAUSED
                self.logger.info(f"Paused after {self.rounds_completed} rounds, rtt={self.estimated_rtt:.3f}")
                return self.status()

            if envelope.sender == self.time_server and isinstance(message, PhysicalTimeMessage):
                remaining = self.process.cancel_timer(handle)
                wait_until = remaining or 0.0
                self._handle_reply(message)
                continue

            raise ProtocolViolation(f"Unexpected message {message!r} from {envelope.sender}")

    def _send_probe(self) -> None:
        if self._outstanding is not None:
            self.rounds_skipped += 1
            self.logger.warning(f"No reply from {self.time_server} within {self.config.sync_interval}, retrying")
        probe = PhysicalTimeMessage.request(self.process.now())
        self._outstanding = probe.client_send_time
        self.process.send(self.time_server, probe)

    def _handle_reply(self, message: PhysicalTimeMessage) -> None:
        if message.server_send_time is None:
            raise ProtocolViolation(f"Reply from {self.time_server} carries no server time")
        if message.client_send_time != self._outstanding:
            self.logger.warning(f"Ignoring stale reply for probe sent at {message.client_send_time}")
            return
        self.recalibrate(ProbeRound(
            request_send_time=message.client_send_time,
            server_reply_time=message.server_send_time,
            local_receive_time=self.process.now(),
        ))

    def recalibrate(self, probe: ProbeRound) -> Tuple[float, float]:
        """Apply one completed probe to the estimator and to the process clock."""
        self.state = SyncState.RECALIBRATING
        new_time, new_rtt = compute_current_time(
            probe.request_send_time,
            probe.server_reply_time,
            probe.local_receive_time,
            self.estimated_rtt,
            self.config.alpha,
        )
        self.estimator.record(probe.rtt, new_rtt)
        self.estimated_offset = new_time - probe.local_receive_time
        self.estimated_time = new_time
        self.process.set_time(new_time)
        self._outstanding = None
        self.rounds_completed += 1
        self.logger.debug(f"Round {self.rounds_completed}: rtt={probe.rtt:.3f} "
                          f"estimated_rtt={new_rtt:.3f} offset={self.estimated_offset:.3f}")
        return new_time, new_rtt


async def measure_rtt(process: Process, server: str, count: int, estimate: float,
                      config: Optional[SyncConfig] = None) -> float:
    """
    Measure the round trip to ``server`` over ``count`` answered probes.

    Probes that get no answer within ``msg_timeout`` are retried and do not
    count toward ``count``. Returns the EWMA seeded with ``estimate``.
    """
    config = config or SyncConfig()
    estimator = RttEstimator(config.alpha, estimate, config.history)
    logger = logging.getLogger(f"ClockSync-{process.name}")

    while count > 0:
        probe = PhysicalTimeMessage.request(process.now())
        handle = process.timer(config.msg_timeout)
        process.send(server, probe)

        sample = await _await_echo(process, server, probe, handle)
        if sample is None:
            logger.warning(f"Probe to {server} timed out, retrying")
            continue
        estimator.update(sample)
        count -= 1

    return estimator.estimate


async def _await_echo(process: Process, server: str, probe: PhysicalTimeMessage,
                      handle: TimerHandle) -> Optional[float]:
    # round trip of ``probe``, or None once its timer fires
    fired = TimerFired(handle.timer_id)
    while True:
        envelope = await process.receive(lambda env: env.message == fired or env.sender == server)
        message = envelope.message
        if message == fired:
            return None
        if not isinstance(message, PhysicalTimeMessage):
            raise ProtocolViolation(f"Unexpected message {message!r} from {server}")
        if message.client_send_time == probe.client_send_time:
            process.cancel_timer(handle)
            return process.now() - probe.client_send_time
        process.logger.debug(f"Discarding late echo of probe sent at {message.client_send_time}")


async def pause_and_wait(process: Process, client: str, timeout: Optional[float] = None) -> bool:
    """
    Ask a synchronizing process to pause and wait for its acknowledgement.

    Returns False if no acknowledgement arrives within ``timeout``.
    """
    process.send(client, Control.PAUSE)
    envelope = await process.receive(lambda env: env.sender == client, timeout=timeout)
    if envelope is None:
        return False
    if envelope.message != Control.PAUSED:
        raise ProtocolViolation(f"Unexpected message {envelope.message!r} from {client}")
    return True


async def time_sync(process: Process, time_server: str, config: Optional[SyncConfig] = None) -> SyncStatus:
    """Process body that keeps ``process`` synchronized with ``time_server`` until paused."""
    return await ClockSynchronizer(process, time_server, config).run()
