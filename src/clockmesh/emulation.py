"""
Asyncio process emulation used to run clock-carrying processes.

Each process is an asyncio task with a named mailbox, its own adjustable
virtual clock and its own timers. Processes interact only by sending
messages; the network between them can be fuzzed to delay or drop traffic.
Messages are deep-copied on send so no two processes ever share a clock.
"""
import asyncio
import copy
import itertools
import logging
import random
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple


@dataclass
class Envelope:
    """A delivered message together with the name of its sender."""
    sender: str
    message: Any


@dataclass(frozen=True)
class TimerHandle:
    timer_id: int
    deadline: float  # emulation time, unaffected by set_time


@dataclass(frozen=True)
class TimerFired:
    """Delivered to a process's own mailbox when one of its timers expires."""
    timer_id: int


Match = Callable[[Envelope], bool]


class Fuzzer:
    """Network fault injector applied to every fuzzable message."""

    def apply(self, rng: random.Random) -> Optional[float]:
        """Return the extra delay for one message, or None to drop it."""
        raise NotImplementedError


class Delay(Fuzzer):
    """Delay every message by ``delay`` plus up to ``jitter`` time units."""

    def __init__(self, delay: float, jitter: float = 0.0):
        if delay < 0 or jitter < 0:
            raise ValueError("Delay and jitter must be non-negative")
        self.delay = delay
        self.jitter = jitter

    def apply(self, rng: random.Random) -> Optional[float]:
        if self.jitter:
            return self.delay + rng.uniform(0, self.jitter)
        return self.delay


class Drop(Fuzzer):
    """Drop each message independently with the given probability."""

    def __init__(self, probability: float):
        if not 0.0 <= probability <= 1.0:
            raise ValueError(f"Drop probability must be in [0, 1], got {probability}")
        self.probability = probability

    def apply(self, rng: random.Random) -> Optional[float]:
        if rng.random() < self.probability:
            return None
        return 0.0


class Process:
    """
    A named participant in the emulation.

    Provides the runtime boundary the clock protocols are written against:
    ``send``, selective ``receive``, ``timer``/``cancel_timer`` and an
    adjustable ``now``. A Process without a task can still send and receive;
    test harnesses use such endpoints to talk to spawned processes.
    """

    def __init__(self, emulation: 'Emulation', name: str):
        self.emulation = emulation
        self.name = name
        self.task: Optional[asyncio.Task] = None
        self._mailbox: Deque[Envelope] = deque()
        self._arrived = asyncio.Event()
        self._offset = 0.0
        self._timers: Dict[int, Tuple[TimerHandle, asyncio.TimerHandle]] = {}

        self.logger = logging.getLogger(f"ClockMeshProcess-{name}")

    # --- Virtual time ---

    def now(self) -> float:
        return self.emulation.raw_time() + self._offset

    def set_time(self, new_time: float) -> None:
        """Move this process's clock so that ``now()`` reads ``new_time``."""
        self._offset = new_time - self.emulation.raw_time()

    # --- Messaging ---

    def send(self, destination: str, message: Any) -> None:
        self.emulation.deliver(self.name, destination, message)

    async def receive(self, match: Optional[Match] = None,
                      timeout: Optional[float] = None) -> Optional[Envelope]:
        """
        Take the oldest message accepted by ``match`` from the mailbox.

        Messages that do not match stay queued in arrival order. Waits for at
        most ``timeout`` time units and returns None if nothing matched.
        """
        loop = asyncio.get_running_loop()
        deadline = None
        if timeout is not None:
            deadline = loop.time() + self.emulation.to_real(timeout)

        while True:
            envelope = self._take(match)
            if envelope is not None:
                return envelope

            self._arrived.clear()
            if deadline is None:
                await self._arrived.wait()
                continue

            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            try:
                await asyncio.wait_for(self._arrived.wait(), remaining)
            except asyncio.TimeoutError:
                return None

    def pending(self) -> int:
        """Number of messages waiting in the mailbox."""
        return len(self._mailbox)

    def _enqueue(self, envelope: Envelope) -> None:
        self._mailbox.append(envelope)
        self._arrived.set()

    def _take(self, match: Optional[Match]) -> Optional[Envelope]:
        for index, envelope in enumerate(self._mailbox):
            if match is None or match(envelope):
                del self._mailbox[index]
                return envelope
        return None

    # --- Timers ---

    def timer(self, duration: float) -> TimerHandle:
        """Arm a timer that delivers TimerFired to this process after ``duration``."""
        loop = asyncio.get_running_loop()
        handle = TimerHandle(next(self.emulation.timer_ids), self.emulation.raw_time() + duration)
        scheduled = loop.call_later(self.emulation.to_real(duration), self._fire, handle)
        self._timers[handle.timer_id] = (handle, scheduled)
        return handle

    def cancel_timer(self, handle: TimerHandle) -> Optional[float]:
        """
        Cancel a timer and return the unused time left on it.

        Returns None if the timer had already fired; its TimerFired message is
        removed from the mailbox if it has not been received yet.
        """
        entry = self._timers.pop(handle.timer_id, None)
        if entry is None:
            self._take(lambda env: env.message == TimerFired(handle.timer_id))
            return None
        entry[1].cancel()
        return max(0.0, handle.deadline - self.emulation.raw_time())

    def _fire(self, handle: TimerHandle) -> None:
        self._timers.pop(handle.timer_id, None)
        self._enqueue(Envelope(self.name, TimerFired(handle.timer_id)))

    def _cancel_all_timers(self) -> None:
        for _, scheduled in self._timers.values():
            scheduled.cancel()
        self._timers.clear()

    def __repr__(self) -> str:
        return f"Process({self.name!r})"


class Emulation:
    """
    A set of processes and the network connecting them.

    Time is measured in virtual units; ``time_scale`` units elapse per real
    second (1000 makes one unit a millisecond).
    """

    def __init__(self, time_scale: float = 1000.0, seed: Optional[int] = None):
        if time_scale <= 0:
            raise ValueError(f"time_scale must be positive, got {time_scale}")
        self.time_scale = time_scale
        self.rng = random.Random(seed)

        self.processes: Dict[str, Process] = {}
        self.fuzzers: List[Fuzzer] = []
        self.unfuzzable: Set[str] = set()
        self.timer_ids = itertools.count(1)
        self._epoch = time.monotonic()

        self.logger = logging.getLogger("ClockMeshEmulation")

    def raw_time(self) -> float:
        """Emulation time elapsed since construction, before any per-process offset."""
        return (time.monotonic() - self._epoch) * self.time_scale

    def to_real(self, duration: float) -> float:
        return max(0.0, duration) / self.time_scale

    def translate_time(self, name: str) -> float:
        """Read the current virtual time of process ``name``."""
        return self.processes[name].now()

    async def sleep(self, duration: float) -> None:
        await asyncio.sleep(self.to_real(duration))

    # --- Network configuration ---

    def append_fuzzers(self, fuzzers: Iterable[Fuzzer]) -> None:
        self.fuzzers.extend(fuzzers)

    def mark_unfuzzable(self, name: str) -> None:
        """Exempt all traffic to and from ``name`` from fuzzing."""
        self.unfuzzable.add(name)

    # --- Processes ---

    def process(self, name: str) -> Process:
        """Return the process registered as ``name``, creating an endpoint if needed."""
        if name not in self.processes:
            self.processes[name] = Process(self, name)
        return self.processes[name]

    def spawn(self, name: str, fn: Callable[..., Awaitable[Any]], *args: Any) -> Process:
        """Run ``fn(process, *args)`` as the body of a new process called ``name``."""
        proc = self.process(name)
        if proc.task is not None and not proc.task.done():
            raise ValueError(f"Process {name} is already running")
        proc.task = asyncio.get_running_loop().create_task(self._run(proc, fn, args), name=name)
        return proc

    async def _run(self, proc: Process, fn: Callable[..., Awaitable[Any]], args: Tuple[Any, ...]) -> Any:
        self.logger.info(f"Spawned process {proc.name}")
        try:
            return await fn(proc, *args)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            proc.logger.error(f"Process {proc.name} terminated: {e!r}")
            raise

    async def join(self, name: str, timeout: Optional[float] = None) -> Any:
        """
        Wait for process ``name`` to finish and return its result.

        Re-raises the exception the process died with. ``timeout`` is in
        virtual units; on expiry asyncio.TimeoutError is raised and the
        process keeps running.
        """
        task = self.processes[name].task
        if task is None:
            raise ValueError(f"Process {name} was never spawned")
        if timeout is None:
            return await task
        return await asyncio.wait_for(asyncio.shield(task), self.to_real(timeout))

    def deliver(self, sender: str, destination: str, message: Any) -> None:
        """Route one message through the fuzzers to the destination mailbox."""
        target = self.processes.get(destination)
        if target is None:
            self.logger.warning(f"Dropping message from {sender} to unknown process {destination}")
            return

        delay = 0.0
        if sender not in self.unfuzzable and destination not in self.unfuzzable:
            for fuzzer in self.fuzzers:
                extra = fuzzer.apply(self.rng)
                if extra is None:
                    self.logger.debug(f"Network dropped {message!r} from {sender} to {destination}")
                    return
                delay += extra

        envelope = Envelope(sender, copy.deepcopy(message))
        loop = asyncio.get_running_loop()
        if delay > 0:
            loop.call_later(self.to_real(delay), target._enqueue, envelope)
        else:
            loop.call_soon(target._enqueue, envelope)

    async def terminate(self) -> None:
        """Cancel every running process and pending timer."""
        tasks = [p.task for p in self.processes.values() if p.task is not None and not p.task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for proc in self.processes.values():
            proc._cancel_all_timers()
        self.logger.info(f"Emulation terminated ({len(tasks)} running processes cancelled)")

    async def __aenter__(self) -> 'Emulation':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.terminate()
