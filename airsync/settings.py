"""Persistent receiver settings.

``settings.json`` holds what the operator configured for this receiver:
its advertised name, the HTTP port, the ALSA output device, where the
shairport-sync config lives and how calibration bursts are played. Values
changed at runtime (through the settings API) are written back after a
quiet period so a burst of edits costs a single disk write.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import MISSING, dataclass, field, fields
from pathlib import Path
from typing import Any

from airsync.shairport import DEFAULT_CONFIG_PATH
from airsync.utils import create_task

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "settings.json"
SAVE_DELAY_SECONDS = 60.0
DEFAULT_LISTEN_PORT = 5000


def default_config_dir() -> Path:
    return Path.home() / ".config" / "airsync"


def _clamp_gain(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


@dataclass
class ReceiverSettings:
    """Operator settings for the receiver daemon.

    Only the public fields are persisted. ``update`` marks the file dirty and
    arms a delayed save; ``flush`` writes immediately if anything is pending.
    """

    name: str | None = None
    log_level: str | None = None
    listen_port: int = DEFAULT_LISTEN_PORT
    output_device: str | None = None
    config_path: str = DEFAULT_CONFIG_PATH
    playback_backend: str = "aplay"
    playback_gain: float = 1.0
    signal_path: str | None = None

    path: Path | None = field(default=None, repr=False, compare=False, metadata={"persist": False})
    _pending_save: asyncio.Task[None] | None = field(
        default=None, init=False, repr=False, compare=False, metadata={"persist": False}
    )

    @classmethod
    def _persisted(cls) -> list[Any]:
        return [f for f in fields(cls) if f.metadata.get("persist", True)]

    def to_dict(self) -> dict[str, Any]:
        """Persisted fields as a JSON-ready dict."""
        return {f.name: getattr(self, f.name) for f in self._persisted()}

    def update(self, **changes: Any) -> bool:
        """Apply non-``None`` changes and arm a delayed save if any differ.

        Returns:
            Whether any field changed.
        """
        known = {f.name for f in self._persisted()}
        unknown = set(changes) - known
        if unknown:
            raise TypeError(f"unknown settings: {', '.join(sorted(unknown))}")

        if changes.get("playback_gain") is not None:
            changes["playback_gain"] = _clamp_gain(changes["playback_gain"])

        dirty = [
            name
            for name, value in changes.items()
            if value is not None and getattr(self, name) != value
        ]
        for name in dirty:
            setattr(self, name, changes[name])
        if dirty:
            logger.debug("Settings changed: %s", ", ".join(dirty))
            self._arm_save()
        return bool(dirty)

    async def load(self) -> None:
        """Read the settings file, keeping defaults for anything missing."""
        await asyncio.get_running_loop().run_in_executor(None, self._read)

    async def flush(self) -> None:
        """Write pending changes now instead of waiting for the delay."""
        task, self._pending_save = self._pending_save, None
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.get_running_loop().run_in_executor(None, self._write)

    def _arm_save(self) -> None:
        if self._pending_save is not None and not self._pending_save.done():
            self._pending_save.cancel()
        self._pending_save = create_task(self._save_later())

    async def _save_later(self) -> None:
        await asyncio.sleep(SAVE_DELAY_SECONDS)
        self._pending_save = None
        await asyncio.get_running_loop().run_in_executor(None, self._write)

    def _read(self) -> None:
        if self.path is None or not self.path.exists():
            logger.debug("No settings file at %s, using defaults", self.path)
            return
        try:
            data = json.loads(self.path.read_text())
        except (json.JSONDecodeError, OSError) as err:
            logger.warning("Ignoring unreadable settings file %s: %s", self.path, err)
            return
        if not isinstance(data, dict):
            logger.warning("Ignoring settings file %s: not a JSON object", self.path)
            return

        for f in self._persisted():
            if f.name in data:
                setattr(self, f.name, data[f.name])
            elif f.default is not MISSING:
                setattr(self, f.name, f.default)
        self.playback_gain = _clamp_gain(self.playback_gain)
        logger.info(
            "Loaded settings from %s (port %d, %s playback)",
            self.path,
            self.listen_port,
            self.playback_backend,
        )

    def _write(self) -> None:
        if self.path is None:
            return
        tmp = self.path.with_suffix(".json.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(self.to_dict(), indent=2) + "\n")
            os.replace(tmp, self.path)
        except OSError as err:
            logger.warning("Could not save settings to %s: %s", self.path, err)
            return
        logger.debug("Saved settings to %s", self.path)


async def get_receiver_settings(config_dir: str | Path | None = None) -> ReceiverSettings:
    """Load settings from ``config_dir`` (default ``~/.config/airsync``)."""
    directory = Path(config_dir) if config_dir else default_config_dir()
    settings = ReceiverSettings(path=directory / SETTINGS_FILENAME)
    await settings.load()
    return settings
