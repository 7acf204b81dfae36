"""Turns a measured latency into a persisted shairport-sync offset."""

from __future__ import annotations

import logging
import os
from typing import Final

from airsync.calibration.models import CalibrationOutcome, CalibrationSubmission
from airsync.shairport import (
    AudioConfigStore,
    ConfigWriter,
    ReceiverAudioConfig,
    ServiceController,
    format_latency_offset,
    persist_config,
    restart_best_effort,
)

logger = logging.getLogger(__name__)

MAX_LATENCY_MS: Final[float] = 250.0
"""Largest correction (either direction) the receiver will apply."""
FORCE_LATENCY_ENV: Final[str] = "AIRSYNC_FORCE_LATENCY_MS"


def override_latency_from_env() -> float | None:
    """Read the operator's forced latency from the environment, if set."""
    raw = os.environ.get(FORCE_LATENCY_ENV)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", FORCE_LATENCY_ENV, raw)
        return None


class CalibrationApplier:
    """Clamps a latency measurement and writes the compensating offset.

    A positive latency means audio reaches the listener late, so the offset
    is negative and shairport-sync plays earlier. A negative latency delays
    playback instead.
    """

    def __init__(
        self,
        writer: ConfigWriter,
        controller: ServiceController,
        override_latency_ms: float | None = None,
    ) -> None:
        """Initialize the applier.

        Args:
            writer: Persists the rendered configuration.
            controller: Restarts the audio daemon after a write.
            override_latency_ms: Diagnostic value used instead of every
                measurement when set.
        """
        self._writer = writer
        self._controller = controller
        self._override_latency_ms = override_latency_ms

    async def apply(
        self, config: ReceiverAudioConfig, measured_latency_ms: float
    ) -> CalibrationOutcome:
        """Apply a latency to ``config`` in place, persist it and restart.

        Raises:
            ConfigWriteError: The configuration could not be written.
        """
        effective_ms = measured_latency_ms
        if self._override_latency_ms is not None:
            effective_ms = self._override_latency_ms
            logger.info(
                "Applying forced latency %sms instead of measured %sms",
                effective_ms,
                measured_latency_ms,
            )

        clamped_ms = max(-MAX_LATENCY_MS, min(MAX_LATENCY_MS, effective_ms))
        was_clamped = clamped_ms != effective_ms
        if was_clamped:
            logger.warning(
                "Latency %.1fms outside supported range, clamped to %.1fms",
                effective_ms,
                clamped_ms,
            )

        offset_seconds = -clamped_ms / 1000.0
        config.latency_offset_seconds = offset_seconds

        await persist_config(self._writer, config)
        await restart_best_effort(self._controller)

        logger.info(
            "Applied latency offset %ss for measured latency %.1fms",
            format_latency_offset(offset_seconds),
            effective_ms,
        )
        return CalibrationOutcome(
            measured_latency_ms=effective_ms,
            applied_offset_ms=offset_seconds * 1000.0,
            was_clamped=was_clamped,
        )

    async def apply_submission(
        self, config: ReceiverAudioConfig, submission: CalibrationSubmission
    ) -> CalibrationOutcome:
        """Apply the latency carried by a measuring device's submission."""
        logger.debug(
            "Calibration submission at %d: %.1fms (confidence %.2f)",
            submission.timestamp,
            submission.latency_ms,
            submission.confidence,
        )
        return await self.apply(config, submission.latency_ms)


class CalibrationSink:
    """Applies submissions to the receiver's shared audio config."""

    def __init__(self, applier: CalibrationApplier, store: AudioConfigStore) -> None:
        self._applier = applier
        self._store = store

    async def apply(self, submission: CalibrationSubmission) -> CalibrationOutcome:
        """Apply a submission; the shared config only changes if the write succeeds.

        Raises:
            ConfigWriteError: The configuration could not be written.
        """
        async with self._store.edit() as draft:
            return await self._applier.apply_submission(draft, submission)
