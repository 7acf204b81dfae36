"""Tests for shairport-sync config rendering and the shared config store."""

from __future__ import annotations

import asyncio

import pytest

from airsync.calibration.errors import ConfigWriteError, RestartError
from airsync.shairport import (
    SKIP_RESTART_ENV,
    AudioConfigStore,
    AudioOutput,
    FileConfigWriter,
    ReceiverAudioConfig,
    ShairportSettingsManager,
    SystemdShairportController,
    generate_config,
    parse_latency_offset,
    read_latency_offset,
    render_config_file,
    restart_best_effort,
)
from tests.conftest import MockController, MockWriter


def test_generate_config_defaults():
    config = generate_config()

    assert config.device_name == "AirSync"
    assert config.output_device == "hw:0,0"
    assert config.latency_offset_seconds == 0.0


@pytest.mark.parametrize(
    ("output", "device"),
    [
        (AudioOutput.I2S, "hw:0,0"),
        (AudioOutput.USB, "hw:1,0"),
        (AudioOutput.HDMI, "hdmi"),
        (AudioOutput.HEADPHONE, "hw:0,0"),
    ],
)
def test_output_device_selection(output, device):
    assert generate_config(None, output).output_device == device


def test_renders_config_file():
    config = generate_config("Test Device", latency_offset_seconds=-0.055)
    rendered = render_config_file(config)

    assert 'name = "Test Device";' in rendered
    assert 'interpolation = "soxr";' in rendered
    assert 'output_device = "hw:0,0";' in rendered
    assert "audio_backend_buffer_desired_length_in_seconds = 0.1;" in rendered
    assert 'include_cover_art = "yes";' in rendered
    assert "audio_backend_latency_offset_in_seconds = -0.055;" in rendered


@pytest.mark.parametrize("offset", [-0.055, 0.02, -0.25, 0.25, 0.0, 0.1234])
def test_latency_offset_round_trip(offset):
    rendered = render_config_file(ReceiverAudioConfig(latency_offset_seconds=offset))

    assert parse_latency_offset(rendered) == pytest.approx(round(offset, 3))


def test_negative_zero_renders_as_zero():
    rendered = render_config_file(ReceiverAudioConfig(latency_offset_seconds=-0.0))

    assert "audio_backend_latency_offset_in_seconds = 0.000;" in rendered


def test_parse_missing_offset():
    assert parse_latency_offset("general = {};") is None


def test_file_writer_and_reader(tmp_path):
    path = tmp_path / "shairport-sync.conf"
    FileConfigWriter(path).write(render_config_file(ReceiverAudioConfig(latency_offset_seconds=-0.03)))

    assert read_latency_offset(path) == pytest.approx(-0.03)
    assert read_latency_offset(tmp_path / "missing.conf") is None


@pytest.mark.asyncio
async def test_store_commits_only_successful_edits():
    store = AudioConfigStore(generate_config("Kitchen"))

    async with store.edit() as draft:
        draft.latency_offset_seconds = -0.04
    assert store.current().latency_offset_seconds == -0.04

    with pytest.raises(RuntimeError):
        async with store.edit() as draft:
            draft.latency_offset_seconds = 0.2
            raise RuntimeError("boom")
    assert store.current().latency_offset_seconds == -0.04


@pytest.mark.asyncio
async def test_store_returns_copies():
    store = AudioConfigStore(generate_config("Kitchen"))

    snapshot = store.current()
    snapshot.output_device = "hdmi"

    assert store.current().output_device == "hw:0,0"


@pytest.mark.asyncio
async def test_settings_manager_updates_and_restarts(store):
    writer = MockWriter()
    controller = MockController()
    manager = ShairportSettingsManager(store, writer, controller)

    config = await manager.update(device_name="Den", output_device="hw:1,0", latency_offset_seconds=0.05)

    assert config.device_name == "Den"
    assert manager.current().output_device == "hw:1,0"
    assert "audio_backend_latency_offset_in_seconds = 0.050;" in writer.last_contents
    assert controller.calls == 1


@pytest.mark.asyncio
async def test_settings_manager_write_failure_leaves_config(store):
    manager = ShairportSettingsManager(store, MockWriter(fail=True), MockController())

    with pytest.raises(ConfigWriteError):
        await manager.update(device_name="Den")
    assert manager.current().device_name == "Living Room"


@pytest.mark.asyncio
async def test_restart_best_effort_swallows_failures():
    assert await restart_best_effort(MockController()) is True
    assert await restart_best_effort(MockController(fail=True)) is False


@pytest.mark.asyncio
async def test_systemd_restart_can_be_skipped(monkeypatch):
    monkeypatch.setenv(SKIP_RESTART_ENV, "1")

    await SystemdShairportController(systemctl="/nonexistent/systemctl").restart()


@pytest.mark.asyncio
async def test_systemd_restart_reports_failure(monkeypatch):
    monkeypatch.delenv(SKIP_RESTART_ENV, raising=False)
    monkeypatch.setenv("PATH", "")

    with pytest.raises(RestartError):
        await SystemdShairportController(systemctl="/nonexistent/systemctl").restart()


class BrokenController:
    """Controller failing with something other than a RestartError."""

    async def restart(self) -> None:
        raise RuntimeError("dbus went away")


@pytest.mark.asyncio
async def test_restart_best_effort_swallows_unexpected_errors():
    assert await restart_best_effort(BrokenController()) is False


class GarbledProcess:
    returncode = 1

    async def communicate(self):
        return b"", b"\xff\xfe"


@pytest.mark.asyncio
async def test_systemd_restart_tolerates_undecodable_stderr(monkeypatch):
    monkeypatch.delenv(SKIP_RESTART_ENV, raising=False)

    async def fake_exec(*argv, **kwargs):
        return GarbledProcess()

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)

    with pytest.raises(RestartError, match="exited 1"):
        await SystemdShairportController().restart()
