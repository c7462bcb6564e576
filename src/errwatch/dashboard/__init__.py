"""Read-only analytical queries for the error dashboard."""

from errwatch.dashboard.queries import DashboardQueryService, moving_average

__all__ = ["DashboardQueryService", "moving_average"]
