"""Receiver daemon wiring calibration to HTTP, mDNS and shairport-sync."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Coroutine
from dataclasses import dataclass
from pathlib import Path

from airsync.audio import create_playback_sink
from airsync.calibration.applier import CalibrationApplier, CalibrationSink
from airsync.calibration.scheduler import CalibrationScheduler
from airsync.calibration.signal import StructuredSignal, write_structured_signal
from airsync.daemon.advertisement import AdvertisementConfig, ReceiverAdvertisement
from airsync.daemon.server import ReceiverHttpServer, ReceiverInfo, ReceiverState
from airsync.settings import ReceiverSettings, default_config_dir
from airsync.shairport import (
    AudioConfigStore,
    FileConfigWriter,
    ReceiverAudioConfig,
    ShairportSettingsManager,
    SystemdShairportController,
    generate_config,
    read_latency_offset,
)
from airsync.utils import create_task, default_receiver_id, get_hostname

logger = logging.getLogger(__name__)


@dataclass
class DaemonConfig:
    """Configuration for the receiver daemon."""

    settings: ReceiverSettings
    receiver_id: str | None = None
    override_latency_ms: float | None = None
    advertise: bool = True


class ReceiverDaemon:
    """AirSync receiver daemon - serves the calibration API until interrupted."""

    def __init__(self, config: DaemonConfig) -> None:
        """Initialize the daemon."""
        self._config = config
        self._shutdown_event: asyncio.Event | None = None
        self._background_tasks: set[asyncio.Task[None]] = set()

    async def run(self) -> int:
        """Run the daemon."""
        settings = self._config.settings
        hostname = get_hostname()
        name = settings.name or hostname
        receiver_id = self._config.receiver_id or default_receiver_id(hostname)

        logger.info("Starting AirSync receiver: %s (%s)", name, receiver_id)

        loop = asyncio.get_running_loop()
        audio_config = await loop.run_in_executor(None, self._initial_audio_config, name)
        store = AudioConfigStore(audio_config)

        writer = FileConfigWriter(settings.config_path)
        controller = SystemdShairportController()
        applier = CalibrationApplier(
            writer, controller, override_latency_ms=self._config.override_latency_ms
        )
        try:
            sink = create_playback_sink(
                settings.playback_backend, store, gain=settings.playback_gain
            )
        except ValueError:
            logger.exception("Invalid playback configuration")
            return 1
        scheduler = CalibrationScheduler(sink)

        advertisement: ReceiverAdvertisement | None = None

        def on_settings_changed(config: ReceiverAudioConfig) -> None:
            settings.update(name=config.device_name, output_device=config.output_device)
            if advertisement is not None and advertisement.config.name != config.device_name:
                self._spawn(self._rename(advertisement, config.device_name))

        state = ReceiverState(
            info=ReceiverInfo(receiver_id=receiver_id, name=name),
            scheduler=scheduler,
            calibration=CalibrationSink(applier, store),
            settings=ShairportSettingsManager(store, writer, controller),
            signal=await loop.run_in_executor(None, self._prepare_signal),
            on_settings_changed=on_settings_changed,
        )

        server = ReceiverHttpServer(state, settings.listen_port)
        try:
            await server.start()
        except OSError:
            logger.exception("Failed to start receiver API on port %d", settings.listen_port)
            return 1

        if self._config.advertise:
            advertisement = ReceiverAdvertisement(
                AdvertisementConfig(
                    receiver_id=receiver_id, name=name, port=settings.listen_port
                )
            )
            try:
                await advertisement.start()
            except Exception:
                logger.exception("mDNS advertisement failed, continuing without it")
                advertisement = None

        self._shutdown_event = asyncio.Event()

        def signal_handler() -> None:
            logger.debug("Received interrupt signal, shutting down...")
            if self._shutdown_event is not None:
                self._shutdown_event.set()

        # Signal handlers aren't supported on this platform (e.g., Windows)
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGINT, signal_handler)
            loop.add_signal_handler(signal.SIGTERM, signal_handler)

        try:
            await self._shutdown_event.wait()
        finally:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGINT)
                loop.remove_signal_handler(signal.SIGTERM)
            await self._cancel_background()
            if advertisement is not None:
                await advertisement.stop()
            await server.stop()
            await scheduler.aclose()
            await settings.flush()
            logger.info("Receiver stopped")

        return 0

    def request_shutdown(self) -> None:
        """Ask a running daemon to stop."""
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    def _spawn(self, coro: Coroutine[None, None, None]) -> asyncio.Task[None]:
        """Run a background coroutine, holding a reference until it finishes."""
        task = create_task(coro)
        if not task.done():
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)
        return task

    async def _cancel_background(self) -> None:
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background_tasks.clear()

    @staticmethod
    async def _rename(advertisement: ReceiverAdvertisement, name: str) -> None:
        try:
            await advertisement.rename(name)
        except Exception:
            logger.exception("Could not re-advertise receiver as %s", name)

    def _initial_audio_config(self, name: str) -> ReceiverAudioConfig:
        """Start from defaults, keeping the offset already on disk (blocking I/O)."""
        settings = self._config.settings
        config = generate_config(name)
        if settings.output_device:
            config.output_device = settings.output_device
        offset = read_latency_offset(settings.config_path)
        if offset is not None:
            config.latency_offset_seconds = offset
            logger.info("Keeping existing latency offset %.3fs", offset)
        return config

    def _prepare_signal(self) -> StructuredSignal | None:
        """Write the structured signal served to measuring devices (blocking I/O)."""
        settings = self._config.settings
        path = (
            Path(settings.signal_path)
            if settings.signal_path
            else default_config_dir() / "calibration-signal.wav"
        )
        try:
            return write_structured_signal(path)
        except OSError as err:
            logger.warning("Could not write calibration signal to %s: %s", path, err)
            return None
