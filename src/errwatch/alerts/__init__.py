"""Alert rules, dispatch, and notifier boundary."""

from errwatch.alerts.dispatcher import AlertDispatcher
from errwatch.alerts.engine import AlertEngine
from errwatch.alerts.notifiers import (
    AlertNotifier,
    ChannelRouter,
    LogNotifier,
    WebhookNotifier,
)

__all__ = [
    "AlertDispatcher",
    "AlertEngine",
    "AlertNotifier",
    "ChannelRouter",
    "LogNotifier",
    "WebhookNotifier",
]
