"""errwatch — in-process error telemetry, alerting and dashboard analytics."""

from errwatch.factory import TelemetryStack, create_telemetry_stack

__all__ = ["TelemetryStack", "create_telemetry_stack"]
