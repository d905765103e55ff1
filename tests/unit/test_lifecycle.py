from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from printcraft.lifecycle import run_periodic_reconciliation
from printcraft.workers.reconciliation import SweepReport
from tests.helpers.clock import START


class CountingSweep:
    def __init__(self) -> None:
        self.calls: list[datetime] = []

    def run_once(self, *, now: datetime) -> SweepReport:
        self.calls.append(now)
        return SweepReport()


class FailingSweep(CountingSweep):
    def run_once(self, *, now: datetime) -> SweepReport:
        super().run_once(now=now)
        raise RuntimeError("database unreachable")


@pytest.mark.asyncio
async def test_periodic_reconciliation_stops_on_shutdown() -> None:
    sweep = CountingSweep()
    shutdown = asyncio.Event()

    task = asyncio.create_task(
        run_periodic_reconciliation(sweep=sweep, shutdown_event=shutdown, interval_seconds=1, clock=lambda: START)
    )
    for _ in range(100):
        if sweep.calls:
            break
        await asyncio.sleep(0.01)
    shutdown.set()
    await asyncio.wait_for(task, timeout=1)

    assert sweep.calls == [START]


@pytest.mark.asyncio
async def test_failed_iteration_does_not_stop_the_loop() -> None:
    sweep = FailingSweep()
    shutdown = asyncio.Event()

    task = asyncio.create_task(
        run_periodic_reconciliation(sweep=sweep, shutdown_event=shutdown, interval_seconds=1, clock=lambda: START)
    )
    for _ in range(100):
        if sweep.calls:
            break
        await asyncio.sleep(0.01)
    shutdown.set()
    await asyncio.wait_for(task, timeout=1)

    assert not task.cancelled()
    assert len(sweep.calls) == 1
