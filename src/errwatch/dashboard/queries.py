"""DashboardQueryService — read-only analytical views over the MetricsStore.

Every query takes an optional ``TimeRange``:
- ``None`` reads the cumulative aggregates kept on each ``ErrorMetric``.
- A range is answered exactly from the store's per-type occurrence log,
  which is bounded, so very old occurrences may have aged out.

Unknown error types, unknown dimensions and empty ranges yield empty or
zero results, never exceptions.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Iterable, Sequence
from typing import Any

import structlog

from errwatch.core.config import DashboardConfig
from errwatch.core.types import (
    UNKNOWN_ACTION,
    ClusterQueryResult,
    Dimension,
    ErrorEvent,
    ErrorTrend,
    TimeRange,
    TopError,
    UserImpact,
)
from errwatch.reporting.reporter import RootCauseReporter
from errwatch.telemetry.metrics import MetricsStore

logger = structlog.get_logger(__name__)


def moving_average(values: Sequence[float], window: int | None = None) -> list[float]:
    """Trailing mean aligned one-to-one with *values*.

    With ``window=None`` each point averages the whole series up to itself.
    """
    result: list[float] = []
    running = 0.0
    for i, v in enumerate(values):
        running += v
        if window is not None and window > 0 and i >= window:
            running -= values[i - window]
            result.append(running / window)
        else:
            result.append(running / (i + 1))
    return result


class DashboardQueryService:
    """Top errors, trends, user impact, distributions and clusters.

    Usage::

        dashboard = DashboardQueryService(store, reporter=reporter)
        rng = TimeRange.last(3600, now=time.time())
        dashboard.get_top_errors(rng, limit=5)
        dashboard.get_error_trends("DB_TIMEOUT", rng, bucket_secs=60)
        await dashboard.get_root_cause_clusters(limit=10)
    """

    def __init__(
        self,
        store: MetricsStore,
        reporter: RootCauseReporter | None = None,
        config: DashboardConfig | None = None,
    ) -> None:
        self._store = store
        self._reporter = reporter
        self._config = config or DashboardConfig()

    # ── Rankings ────────────────────────────────────────────────

    def get_top_errors(
        self,
        time_range: TimeRange | None = None,
        limit: int | None = None,
    ) -> list[TopError]:
        """Error types by occurrence count, ties kept in first-seen order."""
        limit = self._config.top_errors_limit if limit is None else limit
        if limit <= 0:
            return []

        if time_range is None:
            counts = [
                (m.error_type, m.count)
                for m in self._store.get_all_metrics()
                if m.count > 0
            ]
        else:
            counts = [
                (t, len(self._store.occurrences(t, time_range)))
                for t in self._store.error_types()
            ]
            counts = [(t, c) for t, c in counts if c > 0]

        counts.sort(key=lambda tc: tc[1], reverse=True)
        return [TopError(error_type=t, count=c) for t, c in counts[:limit]]

    def get_error_trends(
        self,
        error_type: str,
        time_range: TimeRange,
        bucket_secs: float | None = None,
        moving_average_window: int | None = None,
    ) -> ErrorTrend:
        """Fixed-width bucket counts across *time_range* plus a moving average."""
        bucket = bucket_secs if bucket_secs is not None else self._config.bucket_secs
        window = (
            moving_average_window
            if moving_average_window is not None
            else self._config.moving_average_window
        )
        empty = ErrorTrend(bucket_secs=bucket)
        if bucket <= 0 or time_range.duration <= 0:
            return empty
        events = self._store.occurrences(error_type, time_range)
        if not events and self._store.get_error_count(error_type) == 0:
            return empty

        n = math.ceil(time_range.duration / bucket)
        counts = [0] * n
        for event in events:
            idx = int(((event.timestamp or 0.0) - time_range.start) // bucket)
            counts[min(idx, n - 1)] += 1

        return ErrorTrend(
            counts=counts,
            moving_average=moving_average(counts, window),
            bucket_secs=bucket,
        )

    # ── Impact ──────────────────────────────────────────────────

    def get_user_impact(self, time_range: TimeRange | None = None) -> UserImpact:
        """Distinct users affected overall, per error type and per segment."""
        all_users: set[str] = set()
        by_type: dict[str, int] = {}
        segment_users: dict[str, set[str]] = {}

        for error_type in self._store.error_types():
            events = self._store.occurrences(error_type, time_range)
            if time_range is None:
                metric = self._store.get_metrics(error_type)
                type_users = set(metric.affected_users) if metric else set()
            else:
                type_users = {e.user_id for e in events if e.user_id}
            if type_users:
                by_type[error_type] = len(type_users)
                all_users |= type_users
            for e in events:
                if e.user_id and e.user_segment:
                    segment_users.setdefault(e.user_segment, set()).add(e.user_id)

        return UserImpact(
            total_users=len(all_users),
            users_by_error_type=by_type,
            users_by_segment={s: len(u) for s, u in segment_users.items()},
        )

    def get_error_distribution(
        self,
        dimensions: Iterable[Dimension | str],
        time_range: TimeRange | None = None,
        error_types: Iterable[str] | None = None,
    ) -> dict[str, dict[str, int]]:
        """Per-dimension bucket counts merged across the selected types."""
        selected = self._store.error_types()
        if error_types is not None:
            wanted = set(error_types)
            selected = [t for t in selected if t in wanted]

        result: dict[str, dict[str, int]] = {}
        for raw in dimensions:
            key = raw.value if isinstance(raw, Dimension) else str(raw)
            try:
                dim = Dimension(key)
            except ValueError:
                result[key] = {}
                continue
            if time_range is None:
                result[key] = self._cumulative_distribution(dim, selected)
            else:
                result[key] = self._ranged_distribution(dim, selected, time_range)
        return result

    def get_average_resolution_time(self, error_type: str) -> float:
        metric = self._store.get_metrics(error_type)
        return metric.average_resolution_time if metric is not None else 0.0

    # ── Root-cause clusters ─────────────────────────────────────

    async def get_root_cause_clusters(
        self,
        limit: int | None = None,
        offset: int = 0,
        timeout_secs: float | None = None,
    ) -> ClusterQueryResult:
        """Page through the reporter's clusters; failures become results."""
        if self._reporter is None:
            logger.debug("root_cause_reporter_missing")
            return ClusterQueryResult()

        timeout = timeout_secs if timeout_secs is not None else self._config.cluster_timeout_secs
        try:
            clusters = await asyncio.wait_for(self._reporter.get_clusters(), timeout)
        except TimeoutError:
            logger.warning("root_cause_query_timeout", timeout_secs=timeout)
            return ClusterQueryResult(ok=False, error=f"timed out after {timeout}s")
        except Exception as exc:
            logger.warning(
                "root_cause_query_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return ClusterQueryResult(ok=False, error=str(exc) or type(exc).__name__)

        ordered = sorted(clusters, key=lambda c: c.count, reverse=True)
        start = max(offset, 0)
        end = None if limit is None else start + max(limit, 0)
        return ClusterQueryResult(clusters=ordered[start:end], total=len(ordered))

    # ── Combined payload ────────────────────────────────────────

    def summary(self, time_range: TimeRange | None = None) -> dict[str, Any]:
        """Everything the dashboard renders on load, as plain data."""
        return {
            "top_errors": [t.model_dump() for t in self.get_top_errors(time_range)],
            "user_impact": self.get_user_impact(time_range).model_dump(),
            "distribution": self.get_error_distribution(list(Dimension), time_range),
            "highest_impact": self._store.get_highest_impact_errors(),
            "totals": self._store.snapshot(),
        }

    # ── Internal ────────────────────────────────────────────────

    def _cumulative_distribution(self, dim: Dimension, types: list[str]) -> dict[str, int]:
        merged: dict[str, int] = {}
        for error_type in types:
            metric = self._store.get_metrics(error_type)
            if metric is None or metric.count == 0:
                continue
            if dim == Dimension.ERROR_TYPE:
                source = {error_type: metric.count}
            elif dim == Dimension.ACTION:
                source = metric.action_counts
            else:
                source = metric.segment_impact
            for k, v in source.items():
                merged[k] = merged.get(k, 0) + v
        return merged

    def _ranged_distribution(
        self,
        dim: Dimension,
        types: list[str],
        time_range: TimeRange,
    ) -> dict[str, int]:
        merged: dict[str, int] = {}
        for error_type in types:
            for event in self._store.occurrences(error_type, time_range):
                key = _bucket_key(dim, event)
                if key is not None:
                    merged[key] = merged.get(key, 0) + 1
        return merged


def _bucket_key(dim: Dimension, event: ErrorEvent) -> str | None:
    if dim == Dimension.ERROR_TYPE:
        return event.type
    if dim == Dimension.ACTION:
        return event.action or UNKNOWN_ACTION
    return event.user_segment
