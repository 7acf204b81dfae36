"""Calibration signal generation, scheduling and latency application."""
