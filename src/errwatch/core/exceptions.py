"""Base exception for the telemetry engine."""

from __future__ import annotations


class TelemetryError(Exception):
    """Base exception for all errwatch errors."""
