"""MetricsStore — per-error-type aggregates and the single ingestion entry point.

Every ``record_error`` call:
- lazily creates the ``ErrorMetric`` for the event's type
- updates counts, the critical partition, users, segments and actions
- appends the event to a bounded per-type occurrence log (exact range queries)
- forwards the event to the attached ``AlertEngine``

Resolution accounting keeps a single outstanding window per type: the
anchor is the most recent occurrence not yet matched by ``resolve_error``.
Overlapping occurrences of the same type are not tracked individually.
"""

from __future__ import annotations

import copy
import math
import threading
import time
from collections import deque
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from errwatch.core.types import UNKNOWN_ACTION, ErrorEvent, ErrorMetric, TimeRange

if TYPE_CHECKING:
    from errwatch.alerts.engine import AlertEngine

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]

DEFAULT_OCCURRENCE_LOG_SIZE = 10_000

# Severity weights for impact scoring, keyed by whether a type has ever
# been reported as critical.
_CRITICAL_WEIGHT = 4.0
_DEFAULT_WEIGHT = 1.0


class MetricsStore:
    """Owns one ``ErrorMetric`` per error type.

    Usage::

        engine = AlertEngine(rules=[...], dispatcher=dispatcher)
        store = MetricsStore(alert_engine=engine)
        store.record_error(ErrorEvent(type="DB_TIMEOUT", message="..."))

        store.get_metrics("DB_TIMEOUT")
        store.get_highest_impact_errors()
    """

    def __init__(
        self,
        alert_engine: AlertEngine | None = None,
        occurrence_log_size: int = DEFAULT_OCCURRENCE_LOG_SIZE,
        clock: Clock = time.time,
    ) -> None:
        self._alert_engine = alert_engine
        self._occurrence_log_size = occurrence_log_size
        self._clock = clock
        self._metrics: dict[str, ErrorMetric] = {}
        self._occurrences: dict[str, deque[ErrorEvent]] = {}
        self._lock = threading.Lock()

    @property
    def alert_engine(self) -> AlertEngine | None:
        return self._alert_engine

    # ── Ingestion ───────────────────────────────────────────────

    def record_error(self, event: ErrorEvent) -> ErrorEvent:
        """Fold *event* into its metric, then hand it to alert evaluation.

        Returns the event as stored (with ``timestamp`` filled in).
        """
        if event.timestamp is None:
            event = event.model_copy(update={"timestamp": self._clock()})
        ts: float = event.timestamp  # type: ignore[assignment]

        with self._lock:
            metric = self._get_or_create(event.type)
            metric.count += 1
            if event.critical:
                metric.critical_count += 1
            else:
                metric.non_critical_count += 1
            if event.user_id:
                metric.affected_users.add(event.user_id)
            if event.user_segment:
                metric.segment_impact[event.user_segment] = (
                    metric.segment_impact.get(event.user_segment, 0) + 1
                )
            action = event.action or UNKNOWN_ACTION
            metric.action_counts[action] = metric.action_counts.get(action, 0) + 1

            if metric.first_seen is None or ts < metric.first_seen:
                metric.first_seen = ts
            if metric.last_seen is None or ts > metric.last_seen:
                metric.last_seen = ts
            metric.unresolved_since = ts

            self._occurrences[event.type].append(event)

        logger.debug(
            "error_recorded",
            error_type=event.type,
            critical=event.critical,
            user_id=event.user_id,
        )

        if self._alert_engine is not None:
            self._alert_engine.register_error(event)
        return event

    def ingest(self, payload: Mapping[str, Any]) -> ErrorEvent | None:
        """Validate a raw mapping and record it; invalid payloads are dropped."""
        try:
            event = ErrorEvent.model_validate(payload)
        except ValidationError as exc:
            logger.warning(
                "error_event_rejected",
                errors=exc.error_count(),
                detail=str(exc.errors()[0]["msg"]) if exc.errors() else "",
            )
            return None
        return self.record_error(event)

    def resolve_error(self, error_type: str) -> float | None:
        """Close the outstanding window for *error_type*.

        Returns the recorded resolution time, or None when nothing was
        outstanding (no-op).
        """
        now = self._clock()
        with self._lock:
            metric = self._metrics.get(error_type)
            if metric is None or metric.unresolved_since is None:
                return None
            elapsed = max(now - metric.unresolved_since, 0.0)
            metric.resolution_times.append(elapsed)
            if metric.first_seen is not None:
                metric.impact_durations.append(max(now - metric.first_seen, 0.0))
            metric.unresolved_since = None

        logger.info("error_resolved", error_type=error_type, resolution_secs=elapsed)
        return elapsed

    def record_feedback(self, error_type: str, helpful: bool) -> None:
        with self._lock:
            metric = self._get_or_create(error_type)
            metric.feedback_total += 1
            if helpful:
                metric.feedback_helpful += 1

    # ── Queries ─────────────────────────────────────────────────

    def get_metrics(self, error_type: str) -> ErrorMetric | None:
        """Return a copy of the metric for *error_type*, or None if unseen."""
        with self._lock:
            metric = self._metrics.get(error_type)
            return copy.deepcopy(metric) if metric is not None else None

    def get_all_metrics(self) -> list[ErrorMetric]:
        """Copies of every metric, in first-seen insertion order."""
        with self._lock:
            return [copy.deepcopy(m) for m in self._metrics.values()]

    def error_types(self) -> list[str]:
        with self._lock:
            return list(self._metrics)

    def occurrences(
        self,
        error_type: str,
        time_range: TimeRange | None = None,
    ) -> list[ErrorEvent]:
        """Retained occurrences of *error_type*, optionally limited to a range."""
        with self._lock:
            log = self._occurrences.get(error_type)
            events = list(log) if log is not None else []
        if time_range is None:
            return events
        return [e for e in events if time_range.contains(e.timestamp or 0.0)]

    def get_error_count(self, error_type: str | None = None) -> int:
        with self._lock:
            if error_type is None:
                return sum(m.count for m in self._metrics.values())
            metric = self._metrics.get(error_type)
            return metric.count if metric is not None else 0

    def get_error_rate(self, error_type: str, window_secs: float) -> float:
        """Occurrences per second over the trailing window ending now."""
        if window_secs <= 0:
            return 0.0
        now = self._clock()
        count = self._count_between(error_type, now - window_secs, now)
        return count / window_secs

    def get_highest_impact_errors(self) -> list[str]:
        """Error types ranked by distinct affected users, then by count."""
        with self._lock:
            # Feedback alone creates a metric; only types that occurred rank.
            metrics = [m for m in self._metrics.values() if m.count > 0]
        # sorted() is stable, so ties keep insertion order.
        ranked = sorted(
            metrics,
            key=lambda m: (len(m.affected_users), m.count),
            reverse=True,
        )
        return [m.error_type for m in ranked]

    def get_frequency(
        self,
        error_type: str,
        bucket_secs: float,
        window_secs: float,
    ) -> list[int]:
        """Per-bucket counts for the trailing window, oldest bucket first."""
        if bucket_secs <= 0 or window_secs <= 0:
            return []
        buckets = math.ceil(window_secs / bucket_secs)
        counts = [0] * buckets
        now = self._clock()
        for event in self.occurrences(error_type):
            diff = now - (event.timestamp or 0.0)
            if diff < 0 or diff >= window_secs:
                continue
            counts[buckets - int(diff // bucket_secs) - 1] += 1
        return counts

    def detect_spike(
        self,
        error_type: str,
        window_secs: float,
        multiplier: float = 2.0,
    ) -> bool:
        """Compare the current window with the one immediately before it."""
        if window_secs <= 0:
            return False
        now = self._clock()
        current = self._count_between(error_type, now - window_secs, now)
        previous = self._count_between(
            error_type, now - 2 * window_secs, now - window_secs, inclusive_end=False,
        )
        if previous == 0:
            return current > 0
        return current > previous * multiplier

    def get_impact_score(
        self,
        error_type: str,
        count_weight: float = 1.0,
        duration_weight: float = 0.001,
    ) -> float:
        with self._lock:
            metric = self._metrics.get(error_type)
            if metric is None:
                return 0.0
            count = metric.count
            duration = metric.average_impact_duration
            weight = _CRITICAL_WEIGHT if metric.critical_count else _DEFAULT_WEIGHT
        return (count * count_weight + duration * duration_weight) * weight

    def snapshot(self) -> dict[str, object]:
        """Plain summary of the store, suitable for logging."""
        with self._lock:
            metrics = list(self._metrics.values())
            users: set[str] = set()
            for m in metrics:
                users |= m.affected_users
            return {
                "error_types": sum(1 for m in metrics if m.count > 0),
                "total_errors": sum(m.count for m in metrics),
                "critical_errors": sum(m.critical_count for m in metrics),
                "affected_users": len(users),
                "outstanding": sum(1 for m in metrics if m.unresolved_since is not None),
            }

    # ── Internal ────────────────────────────────────────────────

    def _get_or_create(self, error_type: str) -> ErrorMetric:
        # Caller holds self._lock.
        metric = self._metrics.get(error_type)
        if metric is None:
            metric = ErrorMetric(error_type=error_type)
            self._metrics[error_type] = metric
            self._occurrences[error_type] = deque(maxlen=self._occurrence_log_size)
        return metric

    def _count_between(
        self,
        error_type: str,
        start: float,
        end: float,
        inclusive_end: bool = True,
    ) -> int:
        total = 0
        for event in self.occurrences(error_type):
            ts = event.timestamp or 0.0
            if ts < start:
                continue
            if ts > end or (not inclusive_end and ts == end):
                continue
            total += 1
        return total
