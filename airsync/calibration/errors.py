"""Exceptions raised by the calibration subsystem."""

from __future__ import annotations


class CalibrationError(Exception):
    """Base class for calibration failures."""


class ConfigWriteError(CalibrationError):
    """The rendered audio daemon configuration could not be persisted."""


class RestartError(CalibrationError):
    """The audio daemon could not be restarted."""


class NoPendingPlaybackError(CalibrationError):
    """A ready signal arrived without a matching playback request."""


class PlaybackError(CalibrationError):
    """The playback sink failed to emit the calibration audio."""
