"""HTTP API used by the measuring app to drive calibration."""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from aiohttp import web

from airsync.calibration.applier import CalibrationSink
from airsync.calibration.errors import ConfigWriteError, NoPendingPlaybackError
from airsync.calibration.models import (
    CalibrationReady,
    CalibrationRequest,
    CalibrationSubmission,
    PayloadError,
)
from airsync.calibration.scheduler import CalibrationScheduler
from airsync.calibration.signal import StructuredSignal
from airsync.shairport import ReceiverAudioConfig, ShairportSettingsManager

logger = logging.getLogger(__name__)


@dataclass
class ReceiverInfo:
    """Identity reported to the measuring app."""

    receiver_id: str
    name: str
    capabilities: list[str] = field(default_factory=lambda: ["calibration"])

    def to_dict(self) -> dict[str, Any]:
        return {
            "receiver_id": self.receiver_id,
            "name": self.name,
            "capabilities": list(self.capabilities),
        }


@dataclass
class ReceiverState:
    """Everything the request handlers need."""

    info: ReceiverInfo
    scheduler: CalibrationScheduler
    calibration: CalibrationSink
    settings: ShairportSettingsManager
    signal: StructuredSignal | None = None
    on_settings_changed: Callable[[ReceiverAudioConfig], None] | None = None


STATE_KEY = web.AppKey("receiver_state", ReceiverState)


async def _read_json(request: web.Request) -> dict[str, Any]:
    """Decode a JSON object body; an empty body reads as ``{}``."""
    if not request.can_read_body:
        return {}
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as err:
        raise web.HTTPBadRequest(text=f"invalid JSON body: {err}") from err
    if not isinstance(data, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return data


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise web.HTTPBadRequest(text=f"field {key} must be a string")
    return value


def _optional_float(data: dict[str, Any], key: str) -> float | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise web.HTTPBadRequest(text=f"field {key} must be a number")
    try:
        number = float(value)
    except OverflowError as err:
        raise web.HTTPBadRequest(text=f"field {key} is out of range") from err
    if not math.isfinite(number):
        raise web.HTTPBadRequest(text=f"field {key} must be finite")
    return number


async def handle_time(request: web.Request) -> web.Response:
    state = request.app[STATE_KEY]
    return web.json_response({"server_time_ms": state.scheduler.now_ms()})


async def handle_calibration_request(request: web.Request) -> web.Response:
    state = request.app[STATE_KEY]
    try:
        payload = CalibrationRequest.from_dict(await _read_json(request))
    except PayloadError as err:
        raise web.HTTPBadRequest(text=str(err)) from err

    pending = await state.scheduler.request(payload.chirp, payload.delay_ms)
    return web.json_response({"status": "armed", "delay_ms": pending.delay_ms})


async def handle_calibration_ready(request: web.Request) -> web.Response:
    state = request.app[STATE_KEY]
    try:
        payload = CalibrationReady.from_dict(await _read_json(request))
    except PayloadError as err:
        raise web.HTTPBadRequest(text=str(err)) from err

    try:
        await state.scheduler.ready(
            target_start_ms=payload.target_start_ms,
            remote_timestamp_ms=payload.timestamp,
        )
    except NoPendingPlaybackError as err:
        logger.warning("Calibration ready without a pending request")
        raise web.HTTPConflict(text=str(err)) from err
    return web.json_response({"status": "scheduled"})


async def handle_calibration_result(request: web.Request) -> web.Response:
    state = request.app[STATE_KEY]
    try:
        submission = CalibrationSubmission.from_dict(await _read_json(request))
    except PayloadError as err:
        raise web.HTTPBadRequest(text=str(err)) from err

    try:
        outcome = await state.calibration.apply(submission)
    except ConfigWriteError as err:
        logger.error("Failed to apply calibration: %s", err)
        raise web.HTTPInternalServerError(text=str(err)) from err
    if state.on_settings_changed is not None:
        state.on_settings_changed(state.settings.current())
    return web.json_response(outcome.to_dict())


async def handle_signal_spec(request: web.Request) -> web.Response:
    state = request.app[STATE_KEY]
    if state.signal is None:
        raise web.HTTPNotFound(text="no calibration signal available")
    return web.json_response(state.signal.spec.to_dict())


async def handle_signal_wav(request: web.Request) -> web.FileResponse:
    state = request.app[STATE_KEY]
    if state.signal is None:
        raise web.HTTPNotFound(text="no calibration signal available")
    return web.FileResponse(state.signal.path, headers={"Content-Type": "audio/wav"})


async def handle_get_settings(request: web.Request) -> web.Response:
    state = request.app[STATE_KEY]
    return web.json_response(state.settings.current().to_dict())


async def handle_update_settings(request: web.Request) -> web.Response:
    state = request.app[STATE_KEY]
    data = await _read_json(request)
    try:
        config = await state.settings.update(
            device_name=_optional_str(data, "device_name"),
            output_device=_optional_str(data, "output_device"),
            latency_offset_seconds=_optional_float(data, "latency_offset_seconds"),
        )
    except ConfigWriteError as err:
        logger.error("Failed to update settings: %s", err)
        raise web.HTTPInternalServerError(text=str(err)) from err
    if state.on_settings_changed is not None:
        state.on_settings_changed(config)
    return web.json_response(config.to_dict())


async def handle_receiver_info(request: web.Request) -> web.Response:
    state = request.app[STATE_KEY]
    return web.json_response(state.info.to_dict())


def create_app(state: ReceiverState) -> web.Application:
    """Build the aiohttp application serving the receiver API."""
    app = web.Application()
    app[STATE_KEY] = state
    app.router.add_get("/api/time", handle_time)
    app.router.add_post("/api/calibration/request", handle_calibration_request)
    app.router.add_post("/api/calibration/ready", handle_calibration_ready)
    app.router.add_post("/api/calibration/result", handle_calibration_result)
    app.router.add_get("/api/calibration/signal", handle_signal_spec)
    app.router.add_get("/api/calibration/signal.wav", handle_signal_wav)
    app.router.add_get("/api/settings", handle_get_settings)
    app.router.add_post("/api/settings", handle_update_settings)
    app.router.add_get("/api/receiver/info", handle_receiver_info)
    return app


class ReceiverHttpServer:
    """Runs the receiver API on a TCP port."""

    def __init__(self, state: ReceiverState, port: int, host: str = "0.0.0.0") -> None:
        """Initialize the server.

        Args:
            state: Shared handler state.
            port: Port to listen on.
            host: Interface to bind.
        """
        self._state = state
        self._port = port
        self._host = host
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    async def start(self) -> None:
        """Start serving."""
        self._runner = web.AppRunner(create_app(self._state))
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()

        logger.info("Receiver API listening on %s:%d", self._host, self._port)

    async def stop(self) -> None:
        """Stop serving."""
        if self._site is not None:
            await self._site.stop()
            self._site = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        logger.debug("Receiver API stopped")

    async def __aenter__(self) -> ReceiverHttpServer:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit."""
        await self.stop()
