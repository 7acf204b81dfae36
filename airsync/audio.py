"""Calibration playback through the receiver's audio output.

Two sinks are provided. ``AplayPlaybackSink`` hands a WAV file to ALSA's
``aplay`` using the same ``hw:X,Y`` device name shairport-sync is configured
with, which is what runs on receiver boards. ``SoundDevicePlaybackSink``
plays through PortAudio and is handy on development machines.

Both read the output device from the shared audio config at play time, so a
settings change takes effect on the next calibration burst.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Final

import numpy as np
import sounddevice
import soundfile as sf

from airsync.calibration.chirp import generate_chirp_samples
from airsync.calibration.errors import PlaybackError
from airsync.calibration.models import ChirpConfig
from airsync.calibration.signal import SAMPLE_RATE
from airsync.shairport import AudioConfigStore

logger = logging.getLogger(__name__)

PLAYBACK_BACKENDS: Final[tuple[str, ...]] = ("aplay", "sounddevice")


@dataclass(slots=True)
class AudioDevice:
    """Represents an audio output device.

    Attributes:
        index: Device index used for selection.
        name: Human-readable device name.
        output_channels: Number of output channels supported.
        sample_rate: Default sample rate in Hz.
        is_default: Whether this is the system default output device.
    """

    index: int
    name: str
    output_channels: int
    sample_rate: float
    is_default: bool


def query_devices() -> list[AudioDevice]:
    """Query all available audio output devices.

    Returns:
        List of AudioDevice objects for devices with output channels.
    """
    devices = sounddevice.query_devices()
    default_output = int(sounddevice.default.device[1])

    result: list[AudioDevice] = []
    for i in range(len(devices)):
        dev = devices[i]
        if dev["max_output_channels"] > 0:
            result.append(
                AudioDevice(
                    index=i,
                    name=str(dev["name"]),
                    output_channels=int(dev["max_output_channels"]),
                    sample_rate=float(dev["default_samplerate"]),
                    is_default=(i == default_output),
                )
            )
    return result


def resolve_device(output_device: str, devices: list[AudioDevice]) -> AudioDevice | None:
    """Find the PortAudio device matching a configured output device.

    ``output_device`` may be a device index or (part of) a device name;
    ALSA names such as ``hw:1,0`` appear inside PortAudio's device names.
    """
    if output_device.isdigit():
        index = int(output_device)
        return next((dev for dev in devices if dev.index == index), None)
    needle = output_device.lower()
    return next((dev for dev in devices if needle in dev.name.lower()), None)


def _burst_samples(chirp: ChirpConfig, sample_rate: int, gain: float) -> np.ndarray:
    if chirp.amplitude is not None:
        gain = chirp.amplitude
    return generate_chirp_samples(chirp, sample_rate, gain)


class SoundDevicePlaybackSink:
    """Plays calibration bursts through PortAudio."""

    def __init__(
        self, store: AudioConfigStore, sample_rate: int = SAMPLE_RATE, gain: float = 1.0
    ) -> None:
        self._store = store
        self._sample_rate = sample_rate
        self._gain = gain

    async def play(self, chirp: ChirpConfig) -> None:
        samples = _burst_samples(chirp, self._sample_rate, self._gain)
        output_device = self._store.current().output_device
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._play_blocking, samples, output_device)

    def _play_blocking(self, samples: np.ndarray, output_device: str) -> None:
        try:
            device = resolve_device(output_device, query_devices())
            if device is None:
                logger.warning("Output device %s not found, using default", output_device)
            sounddevice.play(
                samples,
                samplerate=self._sample_rate,
                device=None if device is None else device.index,
                blocking=True,
            )
        except sounddevice.PortAudioError as err:
            raise PlaybackError(f"playback on {output_device} failed: {err}") from err
        logger.debug("Played %d samples via PortAudio", len(samples))


class AplayPlaybackSink:
    """Plays calibration bursts by running ``aplay`` on a temporary WAV file."""

    _APLAY: Final[str] = "aplay"

    def __init__(
        self, store: AudioConfigStore, sample_rate: int = SAMPLE_RATE, gain: float = 1.0
    ) -> None:
        self._store = store
        self._sample_rate = sample_rate
        self._gain = gain

    async def play(self, chirp: ChirpConfig) -> None:
        samples = _burst_samples(chirp, self._sample_rate, self._gain)
        output_device = self._store.current().output_device
        loop = asyncio.get_running_loop()
        path = await loop.run_in_executor(None, self._write_temp_wav, samples)
        try:
            await self._run_aplay(path, output_device)
        finally:
            path.unlink(missing_ok=True)

    def _write_temp_wav(self, samples: np.ndarray) -> Path:
        fd, name = tempfile.mkstemp(prefix="airsync-chirp-", suffix=".wav")
        os.close(fd)
        sf.write(name, samples, self._sample_rate, subtype="PCM_16", format="WAV")
        return Path(name)

    async def _run_aplay(self, path: Path, output_device: str) -> None:
        argv = [self._APLAY, "-q", "-D", output_device, str(path)]
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await proc.communicate()
        except OSError as err:
            raise PlaybackError(f"could not run {self._APLAY}: {err}") from err

        if proc.returncode != 0:
            raise PlaybackError(
                f"{self._APLAY} exited {proc.returncode} on {output_device}: "
                f"{stderr.decode(errors='replace').strip() if stderr else '(empty)'}"
            )
        logger.debug("aplay finished on %s", output_device)


def create_playback_sink(
    backend: str,
    store: AudioConfigStore,
    sample_rate: int = SAMPLE_RATE,
    gain: float = 1.0,
) -> AplayPlaybackSink | SoundDevicePlaybackSink:
    """Instantiate the sink for a configured backend name."""
    if backend == "aplay":
        return AplayPlaybackSink(store, sample_rate, gain)
    if backend == "sounddevice":
        return SoundDevicePlaybackSink(store, sample_rate, gain)
    raise ValueError(f"unknown playback backend {backend!r}, expected one of {PLAYBACK_BACKENDS}")
