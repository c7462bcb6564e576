"""Error ingestion and per-type metrics."""

from errwatch.telemetry.buffer import CircularEventBuffer
from errwatch.telemetry.metrics import MetricsStore

__all__ = ["CircularEventBuffer", "MetricsStore"]
