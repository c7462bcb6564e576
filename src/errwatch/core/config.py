"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, SecretStr

from errwatch.core.types import AlertRule, NotificationChannel

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class TelemetryConfig(BaseModel):
    """Ingestion and buffering configuration."""

    buffer_capacity: int = 1000
    occurrence_log_size: int = 10_000


class WebhookConfig(BaseModel):
    """Outbound webhook for WEBHOOK-channel alerts."""

    enabled: bool = False
    url: SecretStr = SecretStr("")
    timeout_secs: float = 10.0


class AlertsConfig(BaseModel):
    """Alert rules and notifier wiring."""

    rules: list[AlertRule] = []
    webhook: WebhookConfig = WebhookConfig()
    log_in_app: bool = True
    default_channels: list[NotificationChannel] = [NotificationChannel.IN_APP]


class DashboardConfig(BaseModel):
    """Dashboard query defaults."""

    bucket_secs: float = 1.0
    moving_average_window: int | None = None
    top_errors_limit: int = 10
    cluster_timeout_secs: float = 5.0


class ReporterConfig(BaseModel):
    """Root-cause reporter configuration."""

    environment: str = "development"
    release: str = "0.0.0"
    server_name: str | None = None
    max_breadcrumbs: int = 20
    max_clusters: int = 1000
    endpoint: str = ""
    api_key: SecretStr = SecretStr("")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"


class Settings(BaseModel):
    """Root settings container."""

    telemetry: TelemetryConfig = TelemetryConfig()
    alerts: AlertsConfig = AlertsConfig()
    dashboard: DashboardConfig = DashboardConfig()
    reporter: ReporterConfig = ReporterConfig()
    logging: LoggingConfig = LoggingConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
