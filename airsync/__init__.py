"""AirSync receiver: audio latency calibration for shairport-sync receivers."""

__version__ = "0.1.0"
