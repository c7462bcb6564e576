"""Convenience factory for wiring an isolated telemetry stack."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from errwatch.alerts.dispatcher import AlertDispatcher
from errwatch.alerts.engine import AlertEngine
from errwatch.alerts.notifiers import (
    AlertNotifier,
    ChannelRouter,
    LogNotifier,
    WebhookNotifier,
)
from errwatch.core.config import AlertsConfig, Settings, get_settings
from errwatch.core.types import AlertRule, NotificationChannel
from errwatch.dashboard.queries import DashboardQueryService
from errwatch.reporting.reporter import (
    ErrorReporter,
    HttpRootCauseReporter,
    RootCauseReporter,
)
from errwatch.telemetry.metrics import MetricsStore


@dataclass
class TelemetryStack:
    """Handles to every component of one engine instance."""

    store: MetricsStore
    engine: AlertEngine
    dispatcher: AlertDispatcher
    dashboard: DashboardQueryService
    reporter: RootCauseReporter

    async def close(self) -> None:
        await self.dispatcher.close()
        await self.reporter.close()


def build_notifier(config: AlertsConfig) -> ChannelRouter:
    """Route each enabled channel to its transport."""
    router = ChannelRouter()
    if config.webhook.enabled:
        router.register(NotificationChannel.WEBHOOK, WebhookNotifier(config.webhook))
    if config.log_in_app:
        router.register(NotificationChannel.IN_APP, LogNotifier())
    return router


def _configured_rules(config: AlertsConfig) -> list[AlertRule]:
    rules: list[AlertRule] = []
    for rule in config.rules:
        copy = rule.model_copy(deep=True)
        if not copy.channels:
            copy.channels = set(config.default_channels)
        rules.append(copy)
    return rules


def create_telemetry_stack(
    settings: Settings | None = None,
    notifier: AlertNotifier | None = None,
    reporter: RootCauseReporter | None = None,
    clock: Callable[[], float] = time.time,
) -> TelemetryStack:
    """Build store + alert engine + dispatcher + dashboard from config.

    Every call returns a fresh, independent stack.
    """
    settings = settings or get_settings()

    dispatcher = AlertDispatcher(notifier or build_notifier(settings.alerts))
    engine = AlertEngine(
        rules=_configured_rules(settings.alerts),
        dispatcher=dispatcher,
        buffer_capacity=settings.telemetry.buffer_capacity,
        clock=clock,
    )
    store = MetricsStore(
        alert_engine=engine,
        occurrence_log_size=settings.telemetry.occurrence_log_size,
        clock=clock,
    )

    if reporter is None:
        if settings.reporter.endpoint:
            reporter = HttpRootCauseReporter(
                settings.reporter,
                timeout_secs=settings.dashboard.cluster_timeout_secs,
            )
        else:
            reporter = ErrorReporter(settings.reporter)

    dashboard = DashboardQueryService(store, reporter=reporter, config=settings.dashboard)

    return TelemetryStack(
        store=store,
        engine=engine,
        dispatcher=dispatcher,
        dashboard=dashboard,
        reporter=reporter,
    )
