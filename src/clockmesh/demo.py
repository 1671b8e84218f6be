"""
Walk through the Lamport, vector clock and time synchronization scenarios.

Run with ``python -m clockmesh.demo``.
"""
import asyncio
import logging
from typing import Any, Dict

from .causal_clock import compare
from .emulation import Delay, Emulation
from .ping import lamport_ping_client, lamport_ping_server, time_server, vector_ping_client, vector_ping_server
from .time_sync import SyncConfig, pause_and_wait, time_sync


async def lamport_scenario(pings: int = 2) -> int:
    async with Emulation() as emu:
        emu.spawn("server", lamport_ping_server)
        client = emu.process("client")
        clock = 0
        for _ in range(pings):
            clock = await lamport_ping_client(client, "server", clock)
        return clock


async def vector_scenario() -> Dict[str, Any]:
    start = {"ping_server": 0, "ping_client": 0}
    async with Emulation() as emu:
        emu.spawn("ping_server", vector_ping_server, start)
        client = emu.process("ping_client")
        clock = await vector_ping_client(client, "ping_server", start)
        return {"clock": clock, "order": compare(clock, start).value}


async def sync_scenario(intervals: int = 10, server_start: float = 1_000_000_000) -> Dict[str, Any]:
    config = SyncConfig(sync_interval=20)

    async def reference(process):
        process.set_time(server_start)
        await time_server(process)

    async with Emulation() as emu:
        emu.append_fuzzers([Delay(1)])
        emu.mark_unfuzzable("harness")
        harness = emu.process("harness")
        emu.spawn("time_server", reference)
        emu.spawn("time_client", time_sync, "time_server", config)

        await emu.sleep(config.sync_interval * intervals)
        await pause_and_wait(harness, "time_client")
        status = await emu.join("time_client")

        server_now = emu.translate_time("time_server")
        gap = abs(server_now - emu.translate_time("time_client"))
        return {"status": status, "gap": gap, "relative_error": gap / server_now}


def run_demo() -> None:
    print("Clock Synchronization Demo")
    print("=" * 50)

    print("\n1. Lamport ping (two round trips from 0)")
    print(f"   Client clock: {asyncio.run(lamport_scenario())}")

    print("\n2. Vector ping")
    result = asyncio.run(vector_scenario())
    print(f"   Client clock: {result['clock']} ({result['order']} the starting clock)")

    print("\n3. Time synchronization (1 unit delay each way)")
    result = asyncio.run(sync_scenario())
    status = result["status"]
    print(f"   Rounds: {status.rounds_completed} completed, {status.rounds_skipped} skipped")
    print(f"   Estimated RTT: {status.estimated_rtt:.3f} (mean sample {status.rtt_stats.mean:.3f})")
    print(f"   Gap to server: {result['gap']:.3f} units, relative error {result['relative_error']:.2e}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_demo()
