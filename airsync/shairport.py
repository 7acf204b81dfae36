"""shairport-sync configuration: rendering, persistence and restarts.

The receiver owns a single ReceiverAudioConfig that is shared between the
latency applier, the playback sinks (which read the output device) and the
settings API. It is kept in an AudioConfigStore so that every update is
made on a private draft and committed only once it has been written out.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Final, Protocol

from airsync.calibration.errors import ConfigWriteError, RestartError
from airsync.utils import DEFAULT_RECEIVER_NAME

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH: Final[str] = "/etc/shairport-sync.conf"
SKIP_RESTART_ENV: Final[str] = "AIRSYNC_SKIP_SHAIRPORT_RESTART"

_LATENCY_OFFSET_RE = re.compile(
    r"^\s*audio_backend_latency_offset_in_seconds\s*=\s*(-?\d+(?:\.\d+)?)\s*;", re.MULTILINE
)


class AudioOutput(Enum):
    """Physical audio outputs found on receiver boards."""

    I2S = "i2s"
    USB = "usb"
    HDMI = "hdmi"
    HEADPHONE = "headphone"

    @property
    def alsa_device(self) -> str:
        return _ALSA_DEVICES[self]


_ALSA_DEVICES = {
    AudioOutput.I2S: "hw:0,0",
    AudioOutput.USB: "hw:1,0",
    AudioOutput.HDMI: "hdmi",
    AudioOutput.HEADPHONE: "hw:0,0",
}


@dataclass(slots=True)
class ReceiverAudioConfig:
    """The subset of shairport-sync settings managed by the receiver."""

    device_name: str = DEFAULT_RECEIVER_NAME
    output_device: str = AudioOutput.HEADPHONE.alsa_device
    latency_offset_seconds: float = 0.0

    def to_dict(self) -> dict[str, str | float]:
        return {
            "device_name": self.device_name,
            "output_device": self.output_device,
            "latency_offset_seconds": self.latency_offset_seconds,
        }


def generate_config(
    device_name: str | None = None,
    preferred_output: AudioOutput = AudioOutput.HEADPHONE,
    latency_offset_seconds: float = 0.0,
) -> ReceiverAudioConfig:
    """Build the receiver's default audio configuration."""
    return ReceiverAudioConfig(
        device_name=device_name or DEFAULT_RECEIVER_NAME,
        output_device=preferred_output.alsa_device,
        latency_offset_seconds=latency_offset_seconds,
    )


def format_latency_offset(offset_seconds: float) -> str:
    """Format an offset with three decimals, never rendering ``-0.000``."""
    return f"{round(offset_seconds, 3) + 0.0:.3f}"


def render_config_file(config: ReceiverAudioConfig) -> str:
    """Render the shairport-sync configuration file.

    All receivers share the same high quality setup: soxr interpolation,
    cover art metadata and a 0.1s ALSA buffer.
    """
    return f"""general = {{
    name = "{config.device_name}";
    interpolation = "soxr";
    output_backend = "alsa";
    audio_backend_latency_offset_in_seconds = {format_latency_offset(config.latency_offset_seconds)};
}};

alsa = {{
    output_device = "{config.output_device}";
    audio_backend_buffer_desired_length_in_seconds = 0.1;
}};

metadata = {{
    enabled = "yes";
    include_cover_art = "yes";
    pipe_name = "/tmp/shairport-sync-metadata";
}};

sessioncontrol = {{
    session_timeout = 20;
}};
"""


def parse_latency_offset(contents: str) -> float | None:
    """Read ``audio_backend_latency_offset_in_seconds`` back from a config file."""
    match = _LATENCY_OFFSET_RE.search(contents)
    if match is None:
        return None
    return float(match.group(1))


def read_latency_offset(path: str | Path) -> float | None:
    """Offset currently persisted at ``path``, or None if unavailable."""
    path = Path(path)
    try:
        contents = path.read_text()
    except FileNotFoundError:
        return None
    except OSError as err:
        logger.warning("Failed to read %s: %s", path, err)
        return None
    return parse_latency_offset(contents)


class ConfigWriter(Protocol):
    """Persists a rendered configuration (blocking I/O)."""

    def write(self, contents: str) -> None: ...


class ServiceController(Protocol):
    """Restarts the audio daemon consuming the configuration."""

    async def restart(self) -> None: ...


class FileConfigWriter:
    """Writes the configuration to a file."""

    def __init__(self, path: str | Path = DEFAULT_CONFIG_PATH) -> None:
        self.path = Path(path)

    def write(self, contents: str) -> None:
        self.path.write_text(contents)
        logger.debug("Wrote shairport-sync config to %s", self.path)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true")


class SystemdShairportController:
    """Restarts shairport-sync through systemd.

    ``sudo -n`` is tried first so the service can run unprivileged with a
    narrow sudoers rule; a direct ``systemctl`` call is the fallback.
    Setting AIRSYNC_SKIP_SHAIRPORT_RESTART=1 disables restarts entirely,
    which is useful on development machines.
    """

    def __init__(
        self, unit: str = "shairport-sync", systemctl: str = "/usr/bin/systemctl"
    ) -> None:
        self._unit = unit
        self._systemctl = systemctl

    async def restart(self) -> None:
        if _env_flag(SKIP_RESTART_ENV):
            logger.info("%s restart skipped (%s set)", self._unit, SKIP_RESTART_ENV)
            return

        attempts = (
            ["sudo", "-n", self._systemctl, "restart", self._unit],
            [self._systemctl, "restart", self._unit],
        )
        failures: list[str] = []
        for argv in attempts:
            error = await _run_command(argv)
            if error is None:
                logger.info("Restarted %s", self._unit)
                return
            logger.debug("Restart attempt failed: %s", error)
            failures.append(error)

        raise RestartError(f"could not restart {self._unit}: {'; '.join(failures)}")


async def _run_command(argv: list[str]) -> str | None:
    """Run a command and return a description of the failure, if any."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await proc.communicate()
    except OSError as err:
        return f"{argv[0]}: {err}"

    if proc.returncode != 0:
        detail = stderr.decode(errors="replace").strip() if stderr else "(empty)"
        return f"{' '.join(argv)} exited {proc.returncode}: {detail}"
    return None


async def persist_config(writer: ConfigWriter, config: ReceiverAudioConfig) -> None:
    """Render ``config`` and hand it to ``writer`` in the default executor.

    Raises:
        ConfigWriteError: The writer failed.
    """
    rendered = render_config_file(config)
    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(None, writer.write, rendered)
    except OSError as err:
        raise ConfigWriteError(f"failed to write audio config: {err}") from err


async def restart_best_effort(controller: ServiceController) -> bool:
    """Restart the audio daemon, logging and discarding any failure.

    Returns:
        Whether the restart succeeded.
    """
    try:
        await controller.restart()
    except Exception as err:
        logger.warning("Audio service restart failed (ignored): %s", err)
        return False
    return True


class AudioConfigStore:
    """Lock-protected holder of the shared ReceiverAudioConfig.

    Readers get copies. Writers use :meth:`edit`, which yields a draft and
    commits it only if the body completes without raising.
    """

    def __init__(self, config: ReceiverAudioConfig) -> None:
        self._config = config
        self._lock = asyncio.Lock()

    def current(self) -> ReceiverAudioConfig:
        return replace(self._config)

    @contextlib.asynccontextmanager
    async def edit(self) -> AsyncIterator[ReceiverAudioConfig]:
        async with self._lock:
            draft = replace(self._config)
            yield draft
            self._config = draft


class ShairportSettingsManager:
    """Applies operator settings changes to the shared audio config."""

    def __init__(
        self,
        store: AudioConfigStore,
        writer: ConfigWriter,
        controller: ServiceController,
    ) -> None:
        self._store = store
        self._writer = writer
        self._controller = controller

    def current(self) -> ReceiverAudioConfig:
        return self._store.current()

    async def update(
        self,
        *,
        device_name: str | None = None,
        output_device: str | None = None,
        latency_offset_seconds: float | None = None,
    ) -> ReceiverAudioConfig:
        """Update the given fields, persist them and restart the audio daemon.

        Raises:
            ConfigWriteError: The configuration could not be written; the
                shared config is left unchanged.
        """
        async with self._store.edit() as draft:
            if device_name is not None:
                draft.device_name = device_name
            if output_device is not None:
                draft.output_device = output_device
            if latency_offset_seconds is not None:
                draft.latency_offset_seconds = latency_offset_seconds
            await persist_config(self._writer, draft)
            await restart_best_effort(self._controller)
            updated = replace(draft)
        logger.info(
            "Updated audio settings: name=%s, device=%s, offset=%ss",
            updated.device_name,
            updated.output_device,
            format_latency_offset(updated.latency_offset_seconds),
        )
        return updated
