"""Tests for the calibration wire format."""

from __future__ import annotations

import json

import pytest

from airsync.calibration.models import (
    CalibrationReady,
    CalibrationRequest,
    CalibrationSignalSpec,
    CalibrationSubmission,
    ChirpConfig,
    ChirpMarker,
    ClickMarker,
    MarkerSpec,
    PayloadError,
    marker_kind_from_dict,
)


def test_signal_spec_serializes():
    spec = CalibrationSignalSpec(
        sample_rate=48_000,
        length_samples=240_000,
        markers=(
            MarkerSpec(id="a", kind=ClickMarker(), start_sample=0, duration_samples=480),
            MarkerSpec(
                id="chirp1",
                kind=ChirpMarker(start_freq=1_000, end_freq=8_000, duration_ms=100),
                start_sample=10_000,
                duration_samples=4_800,
            ),
        ),
    )

    encoded = json.dumps(spec.to_dict())
    assert '"sample_rate": 48000' in encoded
    assert '"kind": {"click": {}}' in encoded

    decoded = CalibrationSignalSpec.from_dict(json.loads(encoded))
    assert decoded == spec
    assert decoded.duration_seconds == pytest.approx(5.0)


def test_marker_kind_accepts_bare_click():
    assert marker_kind_from_dict("click") == ClickMarker()
    with pytest.raises(PayloadError):
        marker_kind_from_dict({"beep": {}})


def test_chirp_config_defaults():
    config = ChirpConfig()

    assert (config.start_freq, config.end_freq) == (2000.0, 8000.0)
    assert config.duration_ms == 50.0
    assert config.repetitions == 5
    assert config.interval_ms == 500.0


def test_chirp_config_uses_app_field_names():
    config = ChirpConfig.from_dict(
        {"start_freq": 1000, "end_freq": 10000, "duration": 100, "repetitions": 6, "interval_ms": 400}
    )

    assert config.duration_ms == 100.0
    assert config.amplitude is None
    assert config.to_dict()["duration"] == 100.0
    assert ChirpConfig.from_dict(config.to_dict()) == config


def test_chirp_config_accepts_duration_ms_and_amplitude():
    config = ChirpConfig.from_dict(
        {
            "start_freq": 500,
            "end_freq": 900,
            "duration_ms": 30,
            "repetitions": 1,
            "interval_ms": 0,
            "amplitude": 0.25,
        }
    )

    assert config.duration_ms == 30.0
    assert config.amplitude == 0.25


@pytest.mark.parametrize(
    "payload",
    [
        {"end_freq": 1, "duration": 1, "repetitions": 1, "interval_ms": 1},
        {"start_freq": "1k", "end_freq": 1, "duration": 1, "repetitions": 1, "interval_ms": 1},
        {"start_freq": 1, "end_freq": 1, "repetitions": 1, "interval_ms": 1},
        {"start_freq": 1, "end_freq": 1, "duration": 1, "repetitions": -1, "interval_ms": 1},
        {"start_freq": 1, "end_freq": 1, "duration": -50, "repetitions": 1, "interval_ms": 1},
        {"start_freq": 1, "end_freq": 1, "duration": 0, "repetitions": 1, "interval_ms": 1},
        {"start_freq": 1, "end_freq": 1, "duration": 1, "repetitions": 1, "interval_ms": -500},
        {"start_freq": -1, "end_freq": 1, "duration": 1, "repetitions": 1, "interval_ms": 1},
        {"start_freq": 1, "end_freq": 1, "duration": 1, "repetitions": 1, "interval_ms": 1, "amplitude": -0.5},
        {"start_freq": 1, "end_freq": float("inf"), "duration": 1, "repetitions": 1, "interval_ms": 1},
        ["not", "an", "object"],
    ],
)
def test_chirp_config_rejects_malformed(payload):
    with pytest.raises(PayloadError):
        ChirpConfig.from_dict(payload)


def test_request_payload_delay_is_optional():
    body = {"timestamp": 1, "chirp_config": ChirpConfig().to_dict()}

    assert CalibrationRequest.from_dict(body).delay_ms is None
    assert CalibrationRequest.from_dict({**body, "delay_ms": 5}).delay_ms == 5


def test_ready_payload_fields_are_optional():
    assert CalibrationReady.from_dict({}) == CalibrationReady()
    ready = CalibrationReady.from_dict({"timestamp": 10, "target_start_ms": 20})
    assert ready.target_start_ms == 20


def test_submission_requires_numbers():
    submission = CalibrationSubmission.from_dict(
        {"timestamp": 1, "latency_ms": 42, "confidence": 0.9}
    )
    assert submission.latency_ms == 42.0

    with pytest.raises(PayloadError):
        CalibrationSubmission.from_dict({"timestamp": 1, "latency_ms": True, "confidence": 0.9})
    with pytest.raises(PayloadError):
        CalibrationSubmission.from_dict({"timestamp": 1, "confidence": 0.9})


@pytest.mark.parametrize("latency", [float("nan"), float("inf"), float("-inf"), 10**400])
def test_submission_rejects_non_finite_latency(latency):
    with pytest.raises(PayloadError):
        CalibrationSubmission.from_dict({"timestamp": 1, "latency_ms": latency, "confidence": 0.9})


def test_submission_rejects_nan_decoded_from_json():
    body = json.loads('{"timestamp": 1, "latency_ms": NaN, "confidence": 0.9}')

    with pytest.raises(PayloadError):
        CalibrationSubmission.from_dict(body)
