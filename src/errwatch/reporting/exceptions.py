"""Exception hierarchy for root-cause reporters."""

from __future__ import annotations

from errwatch.core.exceptions import TelemetryError


class ReporterError(TelemetryError):
    """Base exception for root-cause reporter failures."""


class ReporterConnectionError(ReporterError):
    """The remote reporter could not be reached or returned an HTTP error."""


class ReporterParseError(ReporterError):
    """The remote reporter returned a payload that could not be parsed."""
