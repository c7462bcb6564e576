"""Core module — config, types, logging."""

from errwatch.core.config import Settings, get_settings, load_settings, reset_settings
from errwatch.core.logging import setup_logging
from errwatch.core.types import (
    AlertPayload,
    AlertRule,
    Dimension,
    ErrorEvent,
    ErrorMetric,
    NotificationChannel,
    Severity,
    TimeRange,
)

__all__ = [
    "AlertPayload",
    "AlertRule",
    "Dimension",
    "ErrorEvent",
    "ErrorMetric",
    "NotificationChannel",
    "Settings",
    "Severity",
    "TimeRange",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
