"""Data model shared between the receiver and the measuring device.

Every model converts to and from plain JSON-compatible dictionaries with
snake_case keys, matching what the measuring app sends and expects.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Final, Union

DEFAULT_DELAY_MS: Final[int] = 2000


class PayloadError(ValueError):
    """Raised when a wire payload is missing fields or has the wrong types."""


def _require(data: dict[str, Any], key: str) -> Any:
    if not isinstance(data, dict):
        raise PayloadError(f"expected an object, got {type(data).__name__}")
    if key not in data or data[key] is None:
        raise PayloadError(f"missing field: {key}")
    return data[key]


def _as_number(value: Any, key: str) -> float:
    # bool is an int subclass but never a valid measurement
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PayloadError(f"field {key} must be a number")
    try:
        number = float(value)
    except OverflowError as err:
        raise PayloadError(f"field {key} is out of range") from err
    if not math.isfinite(number):
        raise PayloadError(f"field {key} must be finite")
    return number


def _as_non_negative(value: Any, key: str, *, positive: bool = False) -> float:
    number = _as_number(value, key)
    if number < 0 or (positive and number == 0):
        raise PayloadError(f"field {key} must be {'positive' if positive else 'non-negative'}")
    return number


def _as_int(value: Any, key: str) -> int:
    number = _as_number(value, key)
    if number < 0:
        raise PayloadError(f"field {key} must not be negative")
    return int(number)


def _optional_int(data: dict[str, Any], key: str) -> int | None:
    value = data.get(key)
    return None if value is None else _as_int(value, key)


@dataclass(frozen=True, slots=True)
class ClickMarker:
    """A short constant-amplitude pulse."""

    def to_dict(self) -> dict[str, Any]:
        return {"click": {}}


@dataclass(frozen=True, slots=True)
class ChirpMarker:
    """A tone (start_freq == end_freq) or a linear sweep."""

    start_freq: int
    end_freq: int
    duration_ms: int

    @property
    def is_sweep(self) -> bool:
        return self.start_freq != self.end_freq

    def to_dict(self) -> dict[str, Any]:
        return {
            "chirp": {
                "start_freq": self.start_freq,
                "end_freq": self.end_freq,
                "duration_ms": self.duration_ms,
            }
        }


MarkerKind = Union[ClickMarker, ChirpMarker]


def marker_kind_from_dict(data: Any) -> MarkerKind:
    """Decode a marker kind from its externally tagged representation."""
    if data == "click" or (isinstance(data, dict) and "click" in data):
        return ClickMarker()
    if isinstance(data, dict) and "chirp" in data:
        body = data["chirp"]
        return ChirpMarker(
            start_freq=_as_int(_require(body, "start_freq"), "start_freq"),
            end_freq=_as_int(_require(body, "end_freq"), "end_freq"),
            duration_ms=_as_int(_require(body, "duration_ms"), "duration_ms"),
        )
    raise PayloadError(f"unknown marker kind: {data!r}")


@dataclass(frozen=True, slots=True)
class MarkerSpec:
    """A labeled event embedded in the calibration signal.

    Attributes:
        id: Stable identifier used by the detector (e.g. "click_a").
        kind: What was placed at this position.
        start_sample: First sample of the event.
        duration_samples: Number of samples the event occupies.
    """

    id: str
    kind: MarkerKind
    start_sample: int
    duration_samples: int

    @property
    def end_sample(self) -> int:
        return self.start_sample + self.duration_samples

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.to_dict(),
            "start_sample": self.start_sample,
            "duration_samples": self.duration_samples,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MarkerSpec:
        return cls(
            id=str(_require(data, "id")),
            kind=marker_kind_from_dict(_require(data, "kind")),
            start_sample=_as_int(_require(data, "start_sample"), "start_sample"),
            duration_samples=_as_int(_require(data, "duration_samples"), "duration_samples"),
        )


@dataclass(frozen=True, slots=True)
class CalibrationSignalSpec:
    """Description of a generated calibration signal and its markers."""

    sample_rate: int
    length_samples: int
    markers: tuple[MarkerSpec, ...] = ()

    @property
    def duration_seconds(self) -> float:
        return self.length_samples / self.sample_rate

    def to_dict(self) -> dict[str, Any]:
        return {
            "sample_rate": self.sample_rate,
            "length_samples": self.length_samples,
            "markers": [marker.to_dict() for marker in self.markers],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CalibrationSignalSpec:
        markers = _require(data, "markers")
        if not isinstance(markers, list):
            raise PayloadError("field markers must be a list")
        return cls(
            sample_rate=_as_int(_require(data, "sample_rate"), "sample_rate"),
            length_samples=_as_int(_require(data, "length_samples"), "length_samples"),
            markers=tuple(MarkerSpec.from_dict(m) for m in markers),
        )


@dataclass(frozen=True, slots=True)
class ChirpConfig:
    """A repeating linear sweep burst requested by the measuring device.

    The defaults describe a short, distinctive sweep that is easy to pick
    out of room noise.
    """

    start_freq: float = 2000.0
    end_freq: float = 8000.0
    duration_ms: float = 50.0
    repetitions: int = 5
    interval_ms: float = 500.0
    amplitude: float | None = None
    """Optional per-burst gain overriding the playback sink's default."""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "start_freq": self.start_freq,
            "end_freq": self.end_freq,
            "duration": self.duration_ms,
            "repetitions": self.repetitions,
            "interval_ms": self.interval_ms,
        }
        if self.amplitude is not None:
            data["amplitude"] = self.amplitude
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChirpConfig:
        """Decode a chirp config; the app names the duration field ``duration``."""
        if not isinstance(data, dict):
            raise PayloadError("chirp_config must be an object")
        duration = data.get("duration", data.get("duration_ms"))
        if duration is None:
            raise PayloadError("missing field: duration")
        amplitude = data.get("amplitude")
        return cls(
            start_freq=_as_non_negative(_require(data, "start_freq"), "start_freq"),
            end_freq=_as_non_negative(_require(data, "end_freq"), "end_freq"),
            duration_ms=_as_non_negative(duration, "duration", positive=True),
            repetitions=_as_int(_require(data, "repetitions"), "repetitions"),
            interval_ms=_as_non_negative(_require(data, "interval_ms"), "interval_ms"),
            amplitude=None if amplitude is None else _as_non_negative(amplitude, "amplitude"),
        )


@dataclass(frozen=True, slots=True)
class CalibrationSubmission:
    """One latency measurement reported by the measuring device."""

    timestamp: int
    latency_ms: float
    confidence: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CalibrationSubmission:
        return cls(
            timestamp=_as_int(_require(data, "timestamp"), "timestamp"),
            latency_ms=_as_number(_require(data, "latency_ms"), "latency_ms"),
            confidence=_as_number(_require(data, "confidence"), "confidence"),
        )


@dataclass(frozen=True, slots=True)
class CalibrationOutcome:
    """Result of applying one measurement."""

    measured_latency_ms: float
    applied_offset_ms: float
    was_clamped: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "measured_latency_ms": self.measured_latency_ms,
            "applied_offset_ms": self.applied_offset_ms,
            "was_clamped": self.was_clamped,
        }


@dataclass(frozen=True, slots=True)
class CalibrationRequest:
    """Body of ``POST /api/calibration/request``."""

    timestamp: int
    chirp: ChirpConfig
    delay_ms: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CalibrationRequest:
        return cls(
            timestamp=_as_int(_require(data, "timestamp"), "timestamp"),
            chirp=ChirpConfig.from_dict(_require(data, "chirp_config")),
            delay_ms=_optional_int(data, "delay_ms"),
        )


@dataclass(frozen=True, slots=True)
class CalibrationReady:
    """Body of ``POST /api/calibration/ready``; both fields are optional."""

    timestamp: int | None = None
    target_start_ms: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CalibrationReady:
        if not isinstance(data, dict):
            raise PayloadError(f"expected an object, got {type(data).__name__}")
        return cls(
            timestamp=_optional_int(data, "timestamp"),
            target_start_ms=_optional_int(data, "target_start_ms"),
        )


@dataclass(frozen=True, slots=True)
class PendingPlayback:
    """A playback armed by a request and waiting for its ready signal."""

    chirp: ChirpConfig
    delay_ms: int = DEFAULT_DELAY_MS
    requested_at: int = field(default=0)
