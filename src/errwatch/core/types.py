"""Domain types for error ingestion, alerting, and dashboard queries."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Severity(IntEnum):
    """Alert severity, ordered low to critical."""

    LOW = 0
    MEDIUM = 1
    HIGH = 2
    CRITICAL = 3


class NotificationChannel(StrEnum):
    """Closed set of channels an alert rule can target."""

    EMAIL = "EMAIL"
    SMS = "SMS"
    IN_APP = "IN_APP"
    WEBHOOK = "WEBHOOK"


class Dimension(StrEnum):
    """Breakdown dimensions for distribution queries."""

    ACTION = "action"
    ERROR_TYPE = "errorType"
    SEGMENT = "segment"


UNKNOWN_ACTION = "unknown"


# ── Ingestion ────────────────────────────────────────────────────


class ErrorEvent(BaseModel):
    """A single application error as reported by a caller."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: str = Field(min_length=1)
    message: str = ""
    timestamp: float | None = None
    user_id: str | None = None
    user_segment: str | None = None
    action: str | None = None
    critical: bool = False
    code: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)


@dataclass
class ErrorMetric:
    """Aggregated statistics for a single error type."""

    error_type: str
    count: int = 0
    critical_count: int = 0
    non_critical_count: int = 0
    affected_users: set[str] = field(default_factory=set)
    segment_impact: dict[str, int] = field(default_factory=dict)
    action_counts: dict[str, int] = field(default_factory=dict)
    first_seen: float | None = None
    last_seen: float | None = None
    resolution_times: list[float] = field(default_factory=list)
    impact_durations: list[float] = field(default_factory=list)
    feedback_total: int = 0
    feedback_helpful: int = 0
    # Timestamp of the latest occurrence not yet matched by a resolve.
    unresolved_since: float | None = None

    @property
    def affected_user_count(self) -> int:
        return len(self.affected_users)

    @property
    def average_resolution_time(self) -> float:
        if not self.resolution_times:
            return 0.0
        return sum(self.resolution_times) / len(self.resolution_times)

    @property
    def average_impact_duration(self) -> float:
        if not self.impact_durations:
            return 0.0
        return sum(self.impact_durations) / len(self.impact_durations)

    @property
    def helpful_ratio(self) -> float:
        if self.feedback_total == 0:
            return 0.0
        return self.feedback_helpful / self.feedback_total


# ── Alerting ─────────────────────────────────────────────────────


def _new_rule_id() -> str:
    return uuid.uuid4().hex


class AlertRule(BaseModel):
    """Threshold rule evaluated against the recent-error buffer."""

    id: str = Field(default_factory=_new_rule_id)
    name: str
    error_patterns: list[str] = Field(default_factory=list)
    threshold: int = Field(default=1, ge=1)
    time_window_secs: float = Field(default=60.0, gt=0)
    cooldown_secs: float = Field(default=300.0, ge=0)
    severity: Severity = Severity.MEDIUM
    channels: set[NotificationChannel] = Field(default_factory=set)
    last_triggered: float | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _fill_blank_id(cls, v: object) -> object:
        if v is None or v == "":
            return _new_rule_id()
        return v

    def matches(self, event: ErrorEvent) -> bool:
        """True if any pattern is a substring of the message, type or code."""
        haystacks = [event.message, event.type]
        if event.code:
            haystacks.append(event.code)
        return any(p in h for p in self.error_patterns for h in haystacks)


class AlertPayload(BaseModel):
    """Dispatch-ready alert for a single notification channel."""

    severity: Severity
    subject: str
    message: str
    channel: NotificationChannel
    rule_id: str = ""
    rule_name: str = ""
    error_count: int = 0
    timestamp: float = 0.0


# ── Dashboard queries ────────────────────────────────────────────


class TimeRange(BaseModel):
    """Closed interval of epoch seconds used by every dashboard query."""

    start: float
    end: float

    @property
    def duration(self) -> float:
        return max(self.end - self.start, 0.0)

    def contains(self, ts: float) -> bool:
        return self.start <= ts <= self.end

    @classmethod
    def last(cls, seconds: float, now: float) -> TimeRange:
        return cls(start=now - seconds, end=now)


class TopError(BaseModel):
    error_type: str
    count: int


class ErrorTrend(BaseModel):
    """Bucketed counts with a trailing moving average of equal length."""

    counts: list[int] = Field(default_factory=list)
    moving_average: list[float] = Field(default_factory=list)
    bucket_secs: float = 1.0


class UserImpact(BaseModel):
    total_users: int = 0
    users_by_error_type: dict[str, int] = Field(default_factory=dict)
    users_by_segment: dict[str, int] = Field(default_factory=dict)


class RootCauseCluster(BaseModel):
    """A group of structurally similar errors reported externally."""

    id: str
    count: int
    sample_message: str = ""
    error_type: str = ""


class ClusterQueryResult(BaseModel):
    """Result-carrying wrapper so reporter failures never raise to callers."""

    ok: bool = True
    clusters: list[RootCauseCluster] = Field(default_factory=list)
    total: int = 0
    error: str | None = None
