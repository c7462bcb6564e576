"""AlertEngine — sliding-window threshold rules with per-rule cooldown."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable

import structlog

from errwatch.alerts.dispatcher import AlertDispatcher
from errwatch.core.types import AlertPayload, AlertRule, ErrorEvent
from errwatch.telemetry.buffer import DEFAULT_CAPACITY, CircularEventBuffer

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]


class AlertEngine:
    """Buffers recent errors and fires rules whose threshold is reached.

    Rules are evaluated eagerly on every registered error, so alert
    latency is zero at the cost of one buffer scan per rule per event.
    The buffer is bounded: under heavy load a rule whose window outlives
    the buffer's retention may under-count.

    Usage::

        engine = AlertEngine(dispatcher=AlertDispatcher(notifier))
        engine.add_rule(AlertRule(name="db", error_patterns=["DB_"], threshold=5))
        engine.register_error(event)
    """

    def __init__(
        self,
        rules: Iterable[AlertRule] | None = None,
        dispatcher: AlertDispatcher | None = None,
        buffer: CircularEventBuffer | None = None,
        buffer_capacity: int = DEFAULT_CAPACITY,
        clock: Clock = time.time,
    ) -> None:
        self._buffer = buffer if buffer is not None else CircularEventBuffer(buffer_capacity)
        self._dispatcher = dispatcher or AlertDispatcher()
        self._clock = clock
        self._rules: list[AlertRule] = []
        # Guards the rule list and the cooldown check-then-set.
        self._rules_lock = threading.Lock()
        for rule in rules or []:
            self.add_rule(rule)

    # ── Properties ──────────────────────────────────────────────

    @property
    def buffer(self) -> CircularEventBuffer:
        return self._buffer

    @property
    def dispatcher(self) -> AlertDispatcher:
        return self._dispatcher

    @property
    def rules(self) -> list[AlertRule]:
        with self._rules_lock:
            return list(self._rules)

    # ── Rule management ─────────────────────────────────────────

    def add_rule(self, rule: AlertRule) -> AlertRule:
        """Register *rule*. Identical rules are not de-duplicated."""
        with self._rules_lock:
            self._rules.append(rule)
        logger.info(
            "alert_rule_added",
            rule_id=rule.id,
            name=rule.name,
            threshold=rule.threshold,
            window_secs=rule.time_window_secs,
        )
        return rule

    def remove_rule(self, rule_id: str) -> bool:
        with self._rules_lock:
            for i, rule in enumerate(self._rules):
                if rule.id == rule_id:
                    del self._rules[i]
                    return True
        return False

    def get_rule(self, rule_id: str) -> AlertRule | None:
        with self._rules_lock:
            return next((r for r in self._rules if r.id == rule_id), None)

    # ── Ingestion ───────────────────────────────────────────────

    def register_error(self, event: ErrorEvent) -> list[AlertPayload]:
        """Buffer *event*, evaluate every rule, and submit triggered alerts.

        Returns the payloads submitted (one per channel per fired rule).
        """
        if event.timestamp is None:
            event = event.model_copy(update={"timestamp": self._clock()})
        self._buffer.append(event)

        fired: list[AlertPayload] = []
        for rule in self.rules:
            fired.extend(self._evaluate(rule))

        for payload in fired:
            self._dispatcher.submit(payload)
        return fired

    # ── Internal ────────────────────────────────────────────────

    def _evaluate(self, rule: AlertRule) -> list[AlertPayload]:
        now = self._clock()
        if _in_cooldown(rule, now):
            return []

        count = sum(
            1 for e in self._buffer.since(now - rule.time_window_secs)
            if rule.matches(e)
        )
        if count < rule.threshold:
            return []

        # Re-check under the lock so two threads crossing the threshold
        # together fire the rule once.
        with self._rules_lock:
            if _in_cooldown(rule, now):
                return []
            rule.last_triggered = now

        logger.info(
            "alert_triggered",
            rule_id=rule.id,
            name=rule.name,
            severity=rule.severity.name,
            error_count=count,
            channels=sorted(c.value for c in rule.channels),
        )

        subject = f"[{rule.severity.name}] {rule.name}"
        message = f"{rule.name} triggered with {count} errors"
        return [
            AlertPayload(
                severity=rule.severity,
                subject=subject,
                message=message,
                channel=channel,
                rule_id=rule.id,
                rule_name=rule.name,
                error_count=count,
                timestamp=now,
            )
            for channel in sorted(rule.channels, key=lambda c: c.value)
        ]


def _in_cooldown(rule: AlertRule, now: float) -> bool:
    if rule.last_triggered is None:
        return False
    return now - rule.last_triggered < rule.cooldown_secs
