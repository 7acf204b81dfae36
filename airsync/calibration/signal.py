"""Structured calibration signal with embedded ground-truth markers.

The signal is a fixed sequence of acoustic events (hums, clicks, a sweep
and a run of tone bursts) laid out on a 48 kHz timeline. Every event is
recorded as a MarkerSpec so the measuring device knows exactly where in the
recording to look for it.

All events are shaped with raised-cosine fades so that the output has no
abrupt transients, which would otherwise be picked up as spurious clicks by
the detector.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Final

import numpy as np
import soundfile as sf

from airsync.calibration.models import (
    CalibrationSignalSpec,
    ChirpMarker,
    ClickMarker,
    MarkerKind,
    MarkerSpec,
)

logger = logging.getLogger(__name__)

SAMPLE_RATE: Final[int] = 48_000
TARGET_DURATION_MS: Final[int] = 4_700
HEADROOM: Final[float] = 0.97
"""Samples are clipped to this fraction of full scale before quantization."""
FADE_FRACTION: Final[float] = 0.2
SWEEP_FADE_FRACTION: Final[float] = 0.1
FULL_SCALE: Final[int] = 32767

TONE_FREQUENCIES: Final[tuple[int, ...]] = (800, 1_000, 3_000, 6_000, 8_000, 10_000, 4_000)
TONE_DURATION_MS: Final[int] = 100
TONE_GAP_MS: Final[int] = 280
TONE_AMPLITUDE: Final[float] = 0.9


def ms_to_samples(duration_ms: float, sample_rate: int = SAMPLE_RATE) -> int:
    """Convert a duration in milliseconds to a whole number of samples."""
    return int(round(duration_ms * sample_rate / 1000))


def fade_envelope(length: int, fade_fraction: float = FADE_FRACTION) -> np.ndarray:
    """Unit envelope with raised-cosine ramps at both ends.

    The ramp length is ``min(fade_fraction * length, length / 2)`` so short
    events fade all the way in and straight back out.
    """
    envelope = np.ones(length, dtype=np.float64)
    fade = int(min(length * fade_fraction, length / 2))
    if fade > 0:
        ramp = 0.5 * (1.0 - np.cos(np.pi * np.arange(fade) / fade))
        envelope[:fade] = ramp
        envelope[length - fade :] = ramp[::-1]
    return envelope


def click(length: int, amplitude: float) -> np.ndarray:
    """Constant-amplitude pulse with faded edges."""
    return amplitude * fade_envelope(length)


def tone(length: int, freq_hz: float, amplitude: float, sample_rate: int) -> np.ndarray:
    """Fixed-frequency sine with faded edges."""
    t = np.arange(length) / sample_rate
    return amplitude * np.sin(2 * np.pi * freq_hz * t) * fade_envelope(length)


def linear_sweep_phase(
    length: int, start_freq: float, end_freq: float, sample_rate: int
) -> np.ndarray:
    """Instantaneous phase of a linear sweep.

    The phase is the integral of a frequency that moves linearly from
    ``start_freq`` to ``end_freq`` over ``length`` samples.
    """
    t = np.arange(length) / sample_rate
    duration = length / sample_rate if length else 1.0
    rate = (end_freq - start_freq) / duration
    return 2 * np.pi * (start_freq * t + 0.5 * rate * t * t)


def sweep(
    length: int, start_freq: float, end_freq: float, amplitude: float, sample_rate: int
) -> np.ndarray:
    """Linear chirp with a shorter fade than clicks and tones."""
    phase = linear_sweep_phase(length, start_freq, end_freq, sample_rate)
    return amplitude * np.sin(phase) * fade_envelope(length, SWEEP_FADE_FRACTION)


class _SignalBuilder:
    """Accumulates events on a float timeline and records their markers."""

    def __init__(self, sample_rate: int, target_samples: int) -> None:
        self.sample_rate = sample_rate
        self.cursor = 0
        self.markers: list[MarkerSpec] = []
        self._buffer = np.zeros(target_samples, dtype=np.float64)
        self._target_samples = target_samples

    def silence(self, duration_ms: float) -> None:
        self.cursor += ms_to_samples(duration_ms, self.sample_rate)

    def click(self, event_id: str, duration_ms: float, amplitude: float) -> None:
        length = ms_to_samples(duration_ms, self.sample_rate)
        self._place(event_id, ClickMarker(), click(length, amplitude))

    def tone(self, event_id: str, freq_hz: int, duration_ms: int, amplitude: float) -> None:
        length = ms_to_samples(duration_ms, self.sample_rate)
        self._place(
            event_id,
            ChirpMarker(start_freq=freq_hz, end_freq=freq_hz, duration_ms=duration_ms),
            tone(length, freq_hz, amplitude, self.sample_rate),
        )

    def sweep(
        self, event_id: str, start_freq: int, end_freq: int, duration_ms: int, amplitude: float
    ) -> None:
        length = ms_to_samples(duration_ms, self.sample_rate)
        self._place(
            event_id,
            ChirpMarker(start_freq=start_freq, end_freq=end_freq, duration_ms=duration_ms),
            sweep(length, start_freq, end_freq, amplitude, self.sample_rate),
        )

    def _place(self, event_id: str, kind: MarkerKind, samples: np.ndarray) -> None:
        start = self.cursor
        end = start + len(samples)
        if end > len(self._buffer):
            self._buffer = np.pad(self._buffer, (0, end - len(self._buffer)))
        self._buffer[start:end] += samples
        self.markers.append(
            MarkerSpec(id=event_id, kind=kind, start_sample=start, duration_samples=len(samples))
        )
        self.cursor = end

    def render(self) -> tuple[np.ndarray, CalibrationSignalSpec]:
        length = max(self.cursor, self._target_samples)
        if length > len(self._buffer):
            self._buffer = np.pad(self._buffer, (0, length - len(self._buffer)))
        clipped = np.clip(self._buffer[:length], -HEADROOM, HEADROOM)
        pcm = np.round(clipped * FULL_SCALE).astype(np.int16)
        spec = CalibrationSignalSpec(
            sample_rate=self.sample_rate,
            length_samples=length,
            markers=tuple(self.markers),
        )
        return pcm, spec


def generate_structured_signal() -> tuple[np.ndarray, CalibrationSignalSpec]:
    """Build the structured calibration signal.

    Returns:
        Mono int16 PCM samples at SAMPLE_RATE and the matching spec. The
        result is fully deterministic.
    """
    builder = _SignalBuilder(SAMPLE_RATE, ms_to_samples(TARGET_DURATION_MS))

    # Low hum wakes up amplifiers that gate on silence
    builder.tone("warmup", 120, 400, 0.12)
    builder.silence(80)
    builder.click("click_a", 10, 0.9)
    builder.silence(200)

    builder.sweep("sweep_anchor", 1_000, 8_000, 150, 0.8)
    builder.silence(200)

    for idx, freq in enumerate(TONE_FREQUENCIES, start=1):
        builder.tone(f"chirp_{idx}", freq, TONE_DURATION_MS, TONE_AMPLITUDE)
        builder.silence(TONE_GAP_MS)

    builder.silence(200)
    builder.click("click_b", 10, 0.4)
    builder.silence(60)
    builder.tone("warmdown", 200, 200, 0.05)

    return builder.render()


@dataclass(frozen=True)
class StructuredSignal:
    """A generated signal written to disk."""

    spec: CalibrationSignalSpec
    path: Path
    spec_path: Path


def spec_path_for(path: Path) -> Path:
    """Location of the JSON spec that accompanies a signal WAV file."""
    return path.with_suffix(".json")


def write_structured_signal(path: str | Path) -> StructuredSignal:
    """Generate the structured signal and write it as WAV plus JSON spec.

    Args:
        path: Destination of the mono 16-bit PCM WAV file. The spec is
            written next to it with a ``.json`` suffix.

    Returns:
        The spec and the paths of both files.
    """
    path = Path(path)
    pcm, spec = generate_structured_signal()

    path.parent.mkdir(parents=True, exist_ok=True)
    sf.write(path, pcm, spec.sample_rate, subtype="PCM_16", format="WAV")
    spec_path = spec_path_for(path)
    spec_path.write_text(json.dumps(spec.to_dict(), indent=2) + "\n")

    logger.info(
        "Wrote calibration signal to %s (%.2fs, %d markers)",
        path,
        spec.duration_seconds,
        len(spec.markers),
    )
    return StructuredSignal(spec=spec, path=path, spec_path=spec_path)


def load_signal_spec(path: str | Path) -> CalibrationSignalSpec:
    """Read the spec written alongside a signal WAV file."""
    return CalibrationSignalSpec.from_dict(json.loads(spec_path_for(Path(path)).read_text()))
