"""
Tests for the asyncio process emulation.

Time is in emulation units of one millisecond each.
"""

import asyncio

import pytest

from clockmesh.emulation import Delay, Drop, Emulation, TimerFired
from clockmesh.errors import ProtocolViolation


def run(coro):
    return asyncio.run(coro)


class TestMessaging:
    """Send and selective receive."""

    def test_send_and_receive(self):
        async def scenario():
            async with Emulation() as emu:
                a, b = emu.process("a"), emu.process("b")
                a.send("b", {"x": 1})
                return await b.receive(timeout=500)

        envelope = run(scenario())
        assert envelope.sender == "a"
        assert envelope.message == {"x": 1}

    def test_messages_are_copied(self):
        """The receiver never shares state with the sender."""
        async def scenario():
            async with Emulation() as emu:
                a, b = emu.process("a"), emu.process("b")
                clock = {"a": 1}
                a.send("b", clock)
                clock["a"] = 99
                envelope = await b.receive(timeout=500)
                return envelope.message

        assert run(scenario()) == {"a": 1}

    def test_unmatched_messages_stay_queued(self):
        async def scenario():
            async with Emulation() as emu:
                a, b = emu.process("a"), emu.process("b")
                a.send("b", "first")
                a.send("b", "second")
                await emu.sleep(10)
                picked = await b.receive(lambda env: env.message == "second", timeout=500)
                left = b.pending()
                rest = await b.receive(timeout=500)
                return picked.message, left, rest.message

        assert run(scenario()) == ("second", 1, "first")

    def test_receive_timeout_returns_none(self):
        async def scenario():
            async with Emulation() as emu:
                return await emu.process("a").receive(timeout=5)

        assert run(scenario()) is None

    def test_send_to_unknown_process_is_dropped(self):
        async def scenario():
            async with Emulation() as emu:
                emu.process("a").send("nobody", "hello")
                await emu.sleep(5)
                return "nobody" in emu.processes

        assert run(scenario()) is False


class TestTimers:
    """Timer arming, firing and cancellation."""

    def test_timer_delivers_message(self):
        async def scenario():
            async with Emulation() as emu:
                a = emu.process("a")
                handle = a.timer(5)
                envelope = await a.receive(timeout=1000)
                return handle, envelope

        handle, envelope = run(scenario())
        assert envelope.message == TimerFired(handle.timer_id)

    def test_cancel_reports_remaining_time(self):
        async def scenario():
            async with Emulation() as emu:
                a = emu.process("a")
                handle = a.timer(1000)
                remaining = a.cancel_timer(handle)
                late = await a.receive(timeout=20)
                return remaining, late

        remaining, late = run(scenario())
        assert 0 < remaining <= 1000
        assert late is None

    def test_cancel_after_fire_purges_mailbox(self):
        async def scenario():
            async with Emulation() as emu:
                a = emu.process("a")
                handle = a.timer(1)
                await emu.sleep(30)
                before = a.pending()
                result = a.cancel_timer(handle)
                return before, result, a.pending()

        assert run(scenario()) == (1, None, 0)


class TestVirtualTime:
    """Per-process adjustable clocks."""

    def test_set_time_is_per_process(self):
        async def scenario():
            async with Emulation() as emu:
                a, b = emu.process("a"), emu.process("b")
                a.set_time(500_000)
                return a.now(), b.now(), emu.translate_time("a")

        a_now, b_now, translated = run(scenario())
        assert 500_000 <= a_now < 500_100
        assert b_now < 100
        assert translated >= a_now


class TestFuzzers:
    """Network delay and loss."""

    def test_drop_everything(self):
        async def scenario():
            async with Emulation(seed=1) as emu:
                emu.append_fuzzers([Drop(1.0)])
                a, b = emu.process("a"), emu.process("b")
                a.send("b", "lost")
                return await b.receive(timeout=20)

        assert run(scenario()) is None

    def test_unfuzzable_process_is_exempt(self):
        async def scenario():
            async with Emulation(seed=1) as emu:
                emu.append_fuzzers([Drop(1.0)])
                emu.mark_unfuzzable("a")
                a, b = emu.process("a"), emu.process("b")
                a.send("b", "kept")
                return await b.receive(timeout=500)

        assert run(scenario()).message == "kept"

    def test_delay_holds_message_back(self):
        async def scenario():
            async with Emulation() as emu:
                emu.append_fuzzers([Delay(50)])
                a, b = emu.process("a"), emu.process("b")
                a.send("b", "slow")
                early = await b.receive(timeout=5)
                late = await b.receive(timeout=1000)
                return early, late

        early, late = run(scenario())
        assert early is None
        assert late.message == "slow"

    def test_invalid_fuzzer_parameters(self):
        with pytest.raises(ValueError):
            Drop(1.5)
        with pytest.raises(ValueError):
            Delay(-1)


class TestProcesses:
    """Spawning, joining and terminating processes."""

    def test_join_returns_result(self):
        async def body(process, value):
            return value * 2

        async def scenario():
            async with Emulation() as emu:
                emu.spawn("worker", body, 21)
                return await emu.join("worker")

        assert run(scenario()) == 42

    def test_join_reraises_failure(self):
        async def body(process):
            raise ProtocolViolation("bad reply")

        async def scenario():
            async with Emulation() as emu:
                emu.spawn("worker", body)
                await emu.join("worker")

        with pytest.raises(ProtocolViolation):
            run(scenario())

    def test_terminate_cancels_running_processes(self):
        async def body(process):
            await process.receive()

        async def scenario():
            emu = Emulation()
            proc = emu.spawn("idle", body)
            await emu.sleep(5)
            await emu.terminate()
            return proc.task.cancelled()

        assert run(scenario()) is True

    def test_cannot_spawn_twice(self):
        async def body(process):
            await process.receive()

        async def scenario():
            async with Emulation() as emu:
                emu.spawn("idle", body)
                emu.spawn("idle", body)

        with pytest.raises(ValueError):
            run(scenario())
