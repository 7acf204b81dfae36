"""Shared pytest fixtures and fake collaborators for the receiver tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from airsync.calibration.errors import PlaybackError, RestartError  # noqa: E402
from airsync.calibration.models import ChirpConfig  # noqa: E402
from airsync.shairport import AudioConfigStore, generate_config  # noqa: E402


class MockWriter:
    """Records every rendered config; optionally fails like a read-only disk."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.writes: list[str] = []

    def write(self, contents: str) -> None:
        if self.fail:
            raise PermissionError("read-only file system")
        self.writes.append(contents)

    @property
    def last_contents(self) -> str | None:
        return self.writes[-1] if self.writes else None


class MockController:
    """Counts restart requests."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0

    async def restart(self) -> None:
        self.calls += 1
        if self.fail:
            raise RestartError("systemctl exited 1")


class RecordingSink:
    """Playback sink that remembers what it was asked to play."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.played: list[ChirpConfig] = []

    async def play(self, chirp: ChirpConfig) -> None:
        self.played.append(chirp)
        if self.fail:
            raise PlaybackError("aplay exited 1")


@pytest.fixture
def writer() -> MockWriter:
    return MockWriter()


@pytest.fixture
def controller() -> MockController:
    return MockController()


@pytest.fixture
def store() -> AudioConfigStore:
    return AudioConfigStore(generate_config("Living Room"))
