"""Tests for AlertDispatcher — background delivery, failure isolation, lifecycle."""

from __future__ import annotations

import asyncio
import threading
import time

from errwatch.alerts.dispatcher import AlertDispatcher
from errwatch.alerts.engine import AlertEngine
from errwatch.alerts.notifiers import AlertNotifier
from errwatch.core.types import AlertPayload, AlertRule, ErrorEvent, NotificationChannel, Severity
from errwatch.telemetry.metrics import MetricsStore


# ── Helpers ─────────────────────────────────────────────────────


class FakeNotifier(AlertNotifier):
    def __init__(self, result: bool | None = True, fail: bool = False) -> None:
        self.sent: list[AlertPayload] = []
        self.threads: list[int] = []
        self.closed = False
        self.close_threads: list[int] = []
        self._result = result
        self._fail = fail

    async def notify(self, alert: AlertPayload) -> bool:  # type: ignore[override]
        if self._fail:
            raise ConnectionError("fake error")
        self.sent.append(alert)
        self.threads.append(threading.get_ident())
        return self._result  # type: ignore[return-value]

    async def close(self) -> None:
        self.closed = True
        self.close_threads.append(threading.get_ident())


class SlowNotifier(FakeNotifier):
    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def notify(self, alert: AlertPayload) -> bool:  # type: ignore[override]
        await self.release.wait()
        return await super().notify(alert)


class SleepyNotifier(FakeNotifier):
    def __init__(self, delay: float) -> None:
        super().__init__()
        self._delay = delay

    async def notify(self, alert: AlertPayload) -> bool:  # type: ignore[override]
        await asyncio.sleep(self._delay)
        return await super().notify(alert)


def _alert(**kw: object) -> AlertPayload:
    defaults: dict[str, object] = {
        "severity": Severity.HIGH,
        "subject": "[HIGH] rule",
        "message": "rule triggered with 3 errors",
        "channel": NotificationChannel.EMAIL,
        "rule_id": "r1",
        "rule_name": "rule",
        "error_count": 3,
        "timestamp": 1000.0,
    }
    defaults.update(kw)
    return AlertPayload(**defaults)  # type: ignore[arg-type]


# ── Delivery ────────────────────────────────────────────────────


class TestDelivery:
    async def test_submit_runs_in_background(self) -> None:
        notifier = SlowNotifier()
        disp = AlertDispatcher(notifier)
        disp.submit(_alert())
        # submit() returned without waiting for the notifier.
        assert notifier.sent == []
        notifier.release.set()
        await disp.drain()
        assert len(notifier.sent) == 1
        assert disp.sent_count == 1

    def test_submit_without_loop_returns_immediately(self) -> None:
        notifier = SleepyNotifier(0.3)
        disp = AlertDispatcher(notifier)
        started = time.monotonic()
        disp.submit(_alert(channel=NotificationChannel.EMAIL))
        disp.submit(_alert(channel=NotificationChannel.SMS))
        assert time.monotonic() - started < 0.2
        assert notifier.sent == []

        disp.flush(timeout=5.0)
        assert len(notifier.sent) == 2
        assert disp.sent_count == 2
        asyncio.run(disp.close())

    def test_record_error_does_not_wait_for_notifier(self) -> None:
        notifier = SleepyNotifier(0.3)
        disp = AlertDispatcher(notifier)
        rule = AlertRule(
            name="slow",
            error_patterns=["boom"],
            threshold=1,
            channels={NotificationChannel.EMAIL, NotificationChannel.SMS},
        )
        store = MetricsStore(alert_engine=AlertEngine(rules=[rule], dispatcher=disp))

        started = time.monotonic()
        store.record_error(ErrorEvent(type="APP_ERROR", message="boom"))
        assert time.monotonic() - started < 0.2

        disp.flush(timeout=5.0)
        assert {a.channel for a in notifier.sent} == rule.channels
        asyncio.run(disp.close())

    def test_background_loop_reused_across_alerts(self) -> None:
        notifier = FakeNotifier()
        disp = AlertDispatcher(notifier)
        disp.submit(_alert())
        disp.flush(timeout=5.0)
        disp.submit(_alert())
        disp.flush(timeout=5.0)

        assert len(notifier.threads) == 2
        assert notifier.threads[0] == notifier.threads[1]
        assert notifier.threads[0] != threading.get_ident()
        asyncio.run(disp.close())

    def test_close_runs_notifier_close_on_background_loop(self) -> None:
        notifier = FakeNotifier()
        disp = AlertDispatcher(notifier)
        disp.submit(_alert())
        asyncio.run(disp.close())
        assert len(notifier.sent) == 1
        assert notifier.closed is True
        assert notifier.close_threads == notifier.threads

    def test_flush_with_nothing_pending(self) -> None:
        AlertDispatcher(FakeNotifier()).flush(timeout=0.1)

    async def test_submit_from_worker_thread_uses_bound_loop(self) -> None:
        notifier = FakeNotifier()
        disp = AlertDispatcher(notifier)
        disp.bind_loop()
        loop_thread = threading.get_ident()

        await asyncio.to_thread(disp.submit, _alert())
        await asyncio.sleep(0)
        await disp.drain()

        assert len(notifier.sent) == 1
        assert notifier.threads == [loop_thread]

    async def test_none_result_counts_as_success(self) -> None:
        disp = AlertDispatcher(FakeNotifier(result=None))
        assert await disp.dispatch(_alert()) is True
        assert disp.sent_count == 1


class TestFailures:
    async def test_exception_is_logged_and_dropped(self) -> None:
        disp = AlertDispatcher(FakeNotifier(fail=True))
        assert await disp.dispatch(_alert()) is False
        assert disp.failed_count == 1

    async def test_false_result_is_failure(self) -> None:
        disp = AlertDispatcher(FakeNotifier(result=False))
        assert await disp.dispatch(_alert()) is False
        assert disp.failed_count == 1

    async def test_no_notifier(self) -> None:
        disp = AlertDispatcher()
        assert await disp.dispatch(_alert()) is False
        assert disp.failed_count == 1

    async def test_failed_alert_not_retried(self) -> None:
        notifier = FakeNotifier(fail=True)
        disp = AlertDispatcher(notifier)
        disp.submit(_alert())
        await disp.drain()
        await asyncio.sleep(0)
        assert disp.failed_count == 1
        assert disp.sent_count == 0

    async def test_background_failure_does_not_affect_others(self) -> None:
        ok = FakeNotifier()
        disp = AlertDispatcher(ok)
        disp.submit(_alert(channel=NotificationChannel.SMS))
        disp.submit(_alert(channel=NotificationChannel.EMAIL))
        await disp.drain()
        assert {a.channel for a in ok.sent} == {
            NotificationChannel.SMS,
            NotificationChannel.EMAIL,
        }


# ── Lifecycle ───────────────────────────────────────────────────


class TestLifecycle:
    async def test_close_drains_and_closes_notifier(self) -> None:
        notifier = SlowNotifier()
        disp = AlertDispatcher(notifier)
        disp.submit(_alert())
        notifier.release.set()
        await disp.close()
        assert len(notifier.sent) == 1
        assert notifier.closed is True

    async def test_close_survives_notifier_error(self) -> None:
        class BadClose(FakeNotifier):
            async def close(self) -> None:
                raise RuntimeError("close failed")

        disp = AlertDispatcher(BadClose())
        await disp.close()  # should not raise

    async def test_drain_with_nothing_pending(self) -> None:
        await AlertDispatcher(FakeNotifier()).drain()
