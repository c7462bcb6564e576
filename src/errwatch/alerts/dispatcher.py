"""AlertDispatcher — fire-and-forget delivery of triggered alerts."""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading

import structlog

from errwatch.alerts.notifiers import AlertNotifier
from errwatch.core.types import AlertPayload

# Dedicated structured logger for every alert the engine fires.
alert_logger = structlog.get_logger("alert_log")

logger = structlog.get_logger(__name__)


class AlertDispatcher:
    """Hands alerts to the notifier without blocking the ingestion path.

    - ``submit()`` is synchronous and always returns immediately: delivery
      runs as a task on the caller's running loop, on a loop bound with
      ``bind_loop()``, or on the dispatcher's own background loop thread.
    - The background loop is started on first use and lives until
      ``close()``, so notifiers that hold loop-bound sessions keep working
      across alerts.
    - Each payload is delivered at most once. Failures are logged and
      dropped, never retried.
    - One payload per channel, so a failing channel never holds up another.
    """

    def __init__(self, notifier: AlertNotifier | None = None) -> None:
        self._notifier = notifier
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task[bool]] = set()
        self._sent = 0
        self._failed = 0

        self._worker_lock = threading.Lock()
        self._worker_loop: asyncio.AbstractEventLoop | None = None
        self._worker_thread: threading.Thread | None = None
        self._pending: set[concurrent.futures.Future[bool]] = set()

    @property
    def notifier(self) -> AlertNotifier | None:
        return self._notifier

    @property
    def sent_count(self) -> int:
        return self._sent

    @property
    def failed_count(self) -> int:
        return self._failed

    def bind_loop(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Deliver alerts submitted from other threads on *loop*."""
        self._loop = loop or asyncio.get_running_loop()

    # ── Submission ──────────────────────────────────────────────

    def submit(self, alert: AlertPayload) -> None:
        alert_logger.info(
            "alert",
            severity=alert.severity.name,
            subject=alert.subject,
            message=alert.message,
            channel=alert.channel.value,
            rule_id=alert.rule_id,
            error_count=alert.error_count,
        )

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None and running is not self._worker_loop:
            self._spawn(alert)
        elif self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._spawn, alert)
        else:
            future = asyncio.run_coroutine_threadsafe(
                self.dispatch(alert), self._background_loop(),
            )
            with self._worker_lock:
                self._pending.add(future)
            future.add_done_callback(self._forget)

    def _spawn(self, alert: AlertPayload) -> None:
        task = asyncio.get_running_loop().create_task(self.dispatch(alert))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _forget(self, future: concurrent.futures.Future[bool]) -> None:
        with self._worker_lock:
            self._pending.discard(future)

    def _background_loop(self) -> asyncio.AbstractEventLoop:
        with self._worker_lock:
            if self._worker_loop is None:
                loop = asyncio.new_event_loop()
                thread = threading.Thread(
                    target=loop.run_forever,
                    name="alert-dispatch",
                    daemon=True,
                )
                thread.start()
                self._worker_loop = loop
                self._worker_thread = thread
                logger.debug("alert_dispatch_loop_started")
            return self._worker_loop

    # ── Delivery ────────────────────────────────────────────────

    async def dispatch(self, alert: AlertPayload) -> bool:
        if self._notifier is None:
            logger.warning("alert_no_notifier", subject=alert.subject)
            self._failed += 1
            return False

        try:
            ok = await self._notifier.notify(alert)
        except Exception:
            logger.exception(
                "alert_notify_error",
                channel=alert.channel.value,
                subject=alert.subject,
            )
            self._failed += 1
            return False

        if ok is False:
            logger.warning(
                "alert_notify_failed",
                channel=alert.channel.value,
                subject=alert.subject,
            )
            self._failed += 1
            return False

        self._sent += 1
        return True

    # ── Lifecycle ───────────────────────────────────────────────

    def flush(self, timeout: float | None = None) -> None:
        """Block until alerts queued on the background loop are delivered.

        For synchronous callers; async code should ``await drain()``.
        """
        with self._worker_lock:
            pending = list(self._pending)
        if pending:
            concurrent.futures.wait(pending, timeout=timeout)

    async def drain(self) -> None:
        """Wait for every in-flight delivery, background loop included."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        with self._worker_lock:
            pending = list(self._pending)
        if pending:
            await asyncio.gather(
                *(asyncio.wrap_future(f) for f in pending),
                return_exceptions=True,
            )

    async def close(self) -> None:
        await self.drain()
        if self._notifier is not None:
            try:
                if self._worker_loop is not None:
                    # The notifier's sessions belong to the background loop.
                    await asyncio.wrap_future(
                        asyncio.run_coroutine_threadsafe(
                            self._notifier.close(), self._worker_loop,
                        )
                    )
                else:
                    await self._notifier.close()
            except Exception:
                logger.exception("notifier_close_error", notifier=type(self._notifier).__name__)
        self._stop_background_loop()

    def _stop_background_loop(self) -> None:
        with self._worker_lock:
            loop, thread = self._worker_loop, self._worker_thread
            self._worker_loop = None
            self._worker_thread = None
        if loop is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout=5.0)
        if not loop.is_running():
            loop.close()
        logger.debug("alert_dispatch_loop_stopped")
