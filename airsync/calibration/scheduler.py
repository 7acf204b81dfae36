"""Coordinates when a calibration burst is played.

The measuring device drives a two step rendezvous:

1. ``request`` arms a playback with the chirp it wants to hear. A later
   request simply replaces an earlier one that was never triggered.
2. ``ready`` is sent once the device is recording. It carries the wall-clock
   time (on the receiver's clock, see ``now_ms``) at which playback should
   start. The playback is started in a background task so the HTTP call
   returns immediately.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from airsync.calibration.errors import NoPendingPlaybackError
from airsync.calibration.models import DEFAULT_DELAY_MS, ChirpConfig, PendingPlayback
from airsync.utils import create_task, now_ms

logger = logging.getLogger(__name__)


class PlaybackSink(Protocol):
    """Physically emits a chirp burst through the receiver's speaker."""

    async def play(self, chirp: ChirpConfig) -> None: ...


class CalibrationScheduler:
    """Single-slot request/ready state machine for calibration playback."""

    def __init__(self, sink: PlaybackSink, clock: Callable[[], int] = now_ms) -> None:
        """Initialize the scheduler.

        Args:
            sink: Where armed playbacks are sent.
            clock: Wall-clock source in milliseconds since the epoch.
        """
        self._sink = sink
        self._clock = clock
        self._pending: PendingPlayback | None = None
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()

    def now_ms(self) -> int:
        """Current scheduler time, used by the device to estimate clock offset."""
        return self._clock()

    @property
    def pending(self) -> PendingPlayback | None:
        """The armed playback, if any."""
        return self._pending

    async def request(self, chirp: ChirpConfig, delay_ms: int | None = None) -> PendingPlayback:
        """Arm a playback, discarding any earlier one that was never triggered."""
        pending = PendingPlayback(
            chirp=chirp,
            delay_ms=DEFAULT_DELAY_MS if delay_ms is None else delay_ms,
            requested_at=self._clock(),
        )
        async with self._lock:
            if self._pending is not None:
                logger.info("Replacing calibration request from %d", self._pending.requested_at)
            self._pending = pending
        logger.info(
            "Calibration armed: %.0f-%.0fHz x%d, delay %dms",
            chirp.start_freq,
            chirp.end_freq,
            chirp.repetitions,
            pending.delay_ms,
        )
        return pending

    async def ready(
        self,
        target_start_ms: int | None = None,
        remote_timestamp_ms: int | None = None,
    ) -> asyncio.Task[None]:
        """Trigger the armed playback.

        Args:
            target_start_ms: When to start, on the scheduler clock. Defaults
                to now plus the request's delay. Times in the past start
                immediately.
            remote_timestamp_ms: The device's own clock when it sent the
                signal; only logged.

        Returns:
            The background task performing the wait and playback.

        Raises:
            NoPendingPlaybackError: Nothing was armed.
        """
        async with self._lock:
            pending = self._pending
            self._pending = None

        if pending is None:
            raise NoPendingPlaybackError("no calibration request is pending")

        now = self._clock()
        if target_start_ms is None:
            target_start_ms = now + pending.delay_ms
        wait_ms = target_start_ms - now

        if remote_timestamp_ms is not None:
            logger.debug("Ready received; remote clock is %+dms from ours", remote_timestamp_ms - now)
        logger.info("Calibration playback scheduled in %dms", max(wait_ms, 0))

        task = create_task(self._play_after(pending, wait_ms), name="calibration-playback")
        if not task.done():
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return task

    async def _play_after(self, pending: PendingPlayback, wait_ms: int) -> None:
        if wait_ms > 0:
            await asyncio.sleep(wait_ms / 1000)
        try:
            await self._sink.play(pending.chirp)
        except Exception:
            logger.exception("Calibration playback failed")
        else:
            logger.info("Calibration playback finished")

    async def aclose(self) -> None:
        """Cancel playbacks that are still waiting or running."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
