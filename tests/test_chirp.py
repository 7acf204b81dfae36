"""Tests for chirp burst generation."""

from __future__ import annotations

import numpy as np
import soundfile as sf

from airsync.calibration.chirp import generate_chirp_samples, write_chirp_wav
from airsync.calibration.models import ChirpConfig


def test_chirp_samples_have_energy_and_length():
    config = ChirpConfig(
        start_freq=1000, end_freq=10000, duration_ms=100, repetitions=2, interval_ms=100
    )
    samples = generate_chirp_samples(config, 48_000, 1.0)

    assert samples.dtype == np.int16
    assert np.any(samples != 0)
    assert len(samples) == 2 * (4800 + 4800)


def test_repetitions_are_identical_and_separated_by_silence():
    config = ChirpConfig(duration_ms=50, repetitions=3, interval_ms=20)
    samples = generate_chirp_samples(config, 48_000, 0.5)
    block = 2400 + 960

    first = samples[:block]
    assert np.array_equal(samples[block : 2 * block], first)
    assert np.all(first[2400:] == 0)


def test_zero_repetitions_still_plays_once():
    config = ChirpConfig(duration_ms=10, repetitions=0, interval_ms=10)

    assert len(generate_chirp_samples(config, 48_000)) == 480 + 480


def test_gain_is_clamped():
    config = ChirpConfig(duration_ms=20, repetitions=1, interval_ms=0)

    loud = generate_chirp_samples(config, 48_000, 4.0)
    full = generate_chirp_samples(config, 48_000, 1.0)
    silent = generate_chirp_samples(config, 48_000, -1.0)

    assert np.array_equal(loud, full)
    assert np.max(np.abs(full)) <= 32767
    assert not np.any(silent)


def test_sweep_starts_at_zero_phase():
    samples = generate_chirp_samples(ChirpConfig(), 48_000)

    # No fade, but sin(0) keeps the first sample silent
    assert samples[0] == 0
    assert np.max(np.abs(samples[:2400])) > 30_000


def test_write_chirp_wav(tmp_path):
    path = write_chirp_wav(tmp_path / "chirp.wav", sample_rate=44_100, gain=0.5)

    data, rate = sf.read(str(path), dtype="int16")
    assert rate == 44_100
    assert len(data) == len(generate_chirp_samples(ChirpConfig(), 44_100, 0.5))
