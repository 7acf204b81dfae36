"""Repeating sweep bursts for on-demand calibration playback."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import soundfile as sf

from airsync.calibration.models import ChirpConfig
from airsync.calibration.signal import FULL_SCALE, SAMPLE_RATE, linear_sweep_phase, ms_to_samples

logger = logging.getLogger(__name__)


def generate_chirp_samples(
    config: ChirpConfig, sample_rate: int = SAMPLE_RATE, gain: float = 1.0
) -> np.ndarray:
    """Render a chirp burst as mono int16 PCM.

    Each repetition is a linear sweep from ``start_freq`` to ``end_freq``
    followed by ``interval_ms`` of silence. No fades are applied; the burst
    is meant to be sharp and easy to locate.

    Args:
        config: Sweep parameters.
        sample_rate: Output sample rate in Hz.
        gain: Linear gain, clamped to [0, 1].

    Returns:
        The concatenated repetitions.
    """
    gain = max(0.0, min(1.0, gain))
    length = ms_to_samples(config.duration_ms, sample_rate)
    phase = linear_sweep_phase(length, config.start_freq, config.end_freq, sample_rate)
    single = np.round(np.sin(phase) * gain * FULL_SCALE).astype(np.int16)
    silence = np.zeros(ms_to_samples(config.interval_ms, sample_rate), dtype=np.int16)

    burst = np.concatenate([single, silence])
    return np.tile(burst, max(config.repetitions, 1))


def write_chirp_wav(
    path: str | Path,
    config: ChirpConfig | None = None,
    sample_rate: int = SAMPLE_RATE,
    gain: float = 1.0,
) -> Path:
    """Write a chirp burst to a mono 16-bit WAV file."""
    path = Path(path)
    samples = generate_chirp_samples(config or ChirpConfig(), sample_rate, gain)
    path.parent.mkdir(parents=True, exist_ok=True)
    sf.write(path, samples, sample_rate, subtype="PCM_16", format="WAV")
    logger.info("Wrote chirp WAV to %s (%d samples)", path, len(samples))
    return path
