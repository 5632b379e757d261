"""
Unit tests for the expiration scheduler.

Acceptance criteria covered:
1) Default tick interval is 30s
2) A single sweep can be triggered deterministically
3) Sweeps never overlap: ticks skip, forced sweeps queue
4) A failing sweep is logged and the loop keeps ticking
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest

from machinealert.calls.lifecycle import SweepResult
from machinealert.calls.models import CallStatus
from machinealert.calls.scheduler import ExpirationScheduler, ExpirationSchedulerConfig


class FakeEngine:
    def __init__(self, fail_first: bool = False) -> None:
        self.calls: list[datetime | None] = []
        self.fail_first = fail_first
        self.gate: asyncio.Event | None = None

    async def sweep_expired(self, now: datetime | None = None) -> SweepResult:
        self.calls.append(now)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_first and len(self.calls) == 1:
            raise RuntimeError("store offline")
        return SweepResult(updated_count=len(self.calls))


def test_config_default_interval_is_30_seconds() -> None:
    cfg = ExpirationSchedulerConfig()
    assert cfg.interval_seconds == 30


@pytest.mark.asyncio
async def test_run_once_records_last_result() -> None:
    engine = FakeEngine()
    scheduler = ExpirationScheduler(engine)

    result = await scheduler.run_once()

    assert result is not None
    assert result.updated_count == 1
    assert scheduler.last_result is result


@pytest.mark.asyncio
async def test_tick_is_skipped_while_sweep_runs() -> None:
    engine = FakeEngine()
    engine.gate = asyncio.Event()
    scheduler = ExpirationScheduler(engine)

    first = asyncio.create_task(scheduler.run_once())
    await asyncio.sleep(0)

    skipped = await scheduler.run_once()
    forced = asyncio.create_task(scheduler.run_once(wait=True))
    await asyncio.sleep(0)
    assert len(engine.calls) == 1

    engine.gate.set()
    first_result = await first
    forced_result = await forced

    assert skipped is None
    assert first_result.updated_count == 1
    assert forced_result.updated_count == 2
    assert len(engine.calls) == 2


@pytest.mark.asyncio
async def test_start_and_stop_loop() -> None:
    engine = FakeEngine()
    scheduler = ExpirationScheduler(engine, ExpirationSchedulerConfig(interval_seconds=0.01))

    await scheduler.start()
    assert scheduler.is_running is True
    await asyncio.sleep(0.05)
    await scheduler.stop()

    assert scheduler.is_running is False
    assert len(engine.calls) >= 1
    ticks = len(engine.calls)
    await asyncio.sleep(0.03)
    assert len(engine.calls) == ticks


@pytest.mark.asyncio
async def test_start_twice_keeps_one_loop() -> None:
    scheduler = ExpirationScheduler(FakeEngine(), ExpirationSchedulerConfig(interval_seconds=10))

    await scheduler.start()
    task = scheduler._task
    await scheduler.start()

    assert scheduler._task is task
    await scheduler.stop()


@pytest.mark.asyncio
async def test_loop_survives_failed_sweep() -> None:
    engine = FakeEngine(fail_first=True)
    scheduler = ExpirationScheduler(engine, ExpirationSchedulerConfig(interval_seconds=0.01))

    await scheduler.start()
    await asyncio.sleep(0.05)
    await scheduler.stop()

    assert len(engine.calls) >= 2
    assert scheduler.last_result is not None


@pytest.mark.asyncio
async def test_run_once_expires_overdue_calls(lifecycle_engine, plant, insert_call, fetch_call, clock) -> None:
    scheduler = ExpirationScheduler(lifecycle_engine)
    seeded = await insert_call(plant["press"].id, clock.now - timedelta(minutes=91))

    result = await scheduler.run_once(clock.now)

    assert result.updated_count == 1
    assert (await fetch_call(seeded.id)).status is CallStatus.EXPIRADA
