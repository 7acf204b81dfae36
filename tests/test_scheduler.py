"""Tests for the request/ready calibration scheduler."""

from __future__ import annotations

import asyncio

import pytest

from airsync.calibration.errors import NoPendingPlaybackError
from airsync.calibration.models import DEFAULT_DELAY_MS, ChirpConfig
from airsync.calibration.scheduler import CalibrationScheduler
from tests.conftest import RecordingSink


class FakeClock:
    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.mark.asyncio
async def test_request_then_ready_plays_once():
    sink = RecordingSink()
    scheduler = CalibrationScheduler(sink)
    chirp = ChirpConfig(start_freq=1000, end_freq=9000, repetitions=2)

    await scheduler.request(chirp, delay_ms=1)
    assert sink.played == []

    task = await scheduler.ready()
    await asyncio.wait_for(task, timeout=2)

    assert sink.played == [chirp]
    assert scheduler.pending is None


@pytest.mark.asyncio
async def test_ready_without_request_is_rejected():
    sink = RecordingSink()
    scheduler = CalibrationScheduler(sink)

    with pytest.raises(NoPendingPlaybackError):
        await scheduler.ready()

    await asyncio.sleep(0)
    assert sink.played == []


@pytest.mark.asyncio
async def test_latest_request_wins():
    sink = RecordingSink()
    scheduler = CalibrationScheduler(sink)
    first = ChirpConfig(start_freq=500)
    second = ChirpConfig(start_freq=3000)

    await scheduler.request(first, delay_ms=1)
    await scheduler.request(second, delay_ms=1)
    await asyncio.wait_for(await scheduler.ready(), timeout=2)

    assert sink.played == [second]


@pytest.mark.asyncio
async def test_ready_consumes_the_request():
    scheduler = CalibrationScheduler(RecordingSink())

    await scheduler.request(ChirpConfig(), delay_ms=1)
    await asyncio.wait_for(await scheduler.ready(), timeout=2)

    with pytest.raises(NoPendingPlaybackError):
        await scheduler.ready()


@pytest.mark.asyncio
async def test_request_defaults():
    clock = FakeClock()
    scheduler = CalibrationScheduler(RecordingSink(), clock=clock)

    pending = await scheduler.request(ChirpConfig())

    assert pending.delay_ms == DEFAULT_DELAY_MS
    assert pending.requested_at == clock.now
    assert scheduler.pending == pending
    assert scheduler.now_ms() == clock.now


@pytest.mark.asyncio
async def test_past_target_plays_immediately():
    clock = FakeClock()
    sink = RecordingSink()
    scheduler = CalibrationScheduler(sink, clock=clock)

    await scheduler.request(ChirpConfig(), delay_ms=60_000)
    task = await scheduler.ready(target_start_ms=clock.now - 500, remote_timestamp_ms=clock.now)
    await asyncio.wait_for(task, timeout=1)

    assert len(sink.played) == 1


@pytest.mark.asyncio
async def test_target_start_waits_until_due():
    clock = FakeClock()
    sink = RecordingSink()
    scheduler = CalibrationScheduler(sink, clock=clock)

    await scheduler.request(ChirpConfig(), delay_ms=1)
    task = await scheduler.ready(target_start_ms=clock.now + 10_000)
    await asyncio.sleep(0.05)

    assert sink.played == []
    assert not task.done()
    await scheduler.aclose()
    assert task.cancelled()


@pytest.mark.asyncio
async def test_playback_failure_is_contained():
    sink = RecordingSink(fail=True)
    scheduler = CalibrationScheduler(sink)

    await scheduler.request(ChirpConfig(), delay_ms=1)
    task = await scheduler.ready()
    await asyncio.wait_for(task, timeout=2)

    assert task.exception() is None
    assert len(sink.played) == 1

    # Scheduler is idle again and accepts a fresh cycle
    await scheduler.request(ChirpConfig(), delay_ms=1)
    await asyncio.wait_for(await scheduler.ready(), timeout=2)
    assert len(sink.played) == 2


@pytest.mark.asyncio
async def test_request_during_playback_does_not_affect_it():
    clock = FakeClock()
    sink = RecordingSink()
    scheduler = CalibrationScheduler(sink, clock=clock)
    first = ChirpConfig(start_freq=1111)
    second = ChirpConfig(start_freq=2222)

    await scheduler.request(first, delay_ms=1)
    task = await scheduler.ready(target_start_ms=clock.now + 20)
    await scheduler.request(second, delay_ms=1)
    await asyncio.wait_for(task, timeout=2)

    assert sink.played == [first]
    assert scheduler.pending is not None
    assert scheduler.pending.chirp == second
