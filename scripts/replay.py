#!/usr/bin/env python3
"""Replay a JSON-lines error log through a telemetry stack.

Each input line is one error event object (``type``, ``message``,
``timestamp``, ``user_id``, ...). Alerts fire through the configured
notifiers as the events stream in; a dashboard summary is printed as JSON
at the end.

Usage::

    # Replay a file with the default config
    python scripts/replay.py errors.jsonl

    # Read from stdin, custom config, console logs
    cat errors.jsonl | python scripts/replay.py - --config config/settings.yaml --log-format console

    # Restrict the summary to the last hour of the replayed data
    python scripts/replay.py errors.jsonl --window 3600
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from typing import IO

import structlog

from errwatch.core.config import load_settings
from errwatch.core.logging import setup_logging
from errwatch.core.types import TimeRange
from errwatch.factory import create_telemetry_stack
from errwatch.reporting.reporter import ErrorReporter

logger = structlog.get_logger(__name__)


class _ReplayClock:
    """Clock that follows the newest replayed timestamp, so alert windows
    are evaluated in the log's own time rather than wall time."""

    def __init__(self) -> None:
        self.now = time.time()

    def __call__(self) -> float:
        return self.now

    def advance(self, ts: object) -> None:
        if isinstance(ts, (int, float)) and not isinstance(ts, bool):
            self.now = float(ts)


def _open_input(path: str) -> IO[str]:
    if path == "-":
        return sys.stdin
    return open(path)


async def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    setup_logging(level=args.log_level, fmt=args.log_format, settings=settings)

    # Captured errors feed the in-process clusterer; the store already logs them.
    reporter = ErrorReporter(settings.reporter, log_errors=False)
    clock = _ReplayClock()
    stack = create_telemetry_stack(settings, reporter=reporter, clock=clock)
    stack.dispatcher.bind_loop()

    accepted = 0
    rejected = 0
    last_ts: float | None = None

    stream = _open_input(args.input)
    try:
        for lineno, line in enumerate(stream, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("replay_bad_json", line=lineno)
                rejected += 1
                continue
            if not isinstance(payload, dict):
                logger.warning("replay_not_an_object", line=lineno)
                rejected += 1
                continue

            clock.advance(payload.get("timestamp"))
            event = stack.store.ingest(payload)
            if event is None:
                rejected += 1
                continue
            accepted += 1
            reporter.capture_error(event)
            if last_ts is None or (event.timestamp or 0.0) > last_ts:
                last_ts = event.timestamp
            # Let background alert deliveries make progress.
            await asyncio.sleep(0)
    finally:
        if stream is not sys.stdin:
            stream.close()

    time_range = None
    if args.window and last_ts is not None:
        time_range = TimeRange.last(args.window, now=last_ts)

    summary = stack.dashboard.summary(time_range)
    clusters = await stack.dashboard.get_root_cause_clusters(limit=args.clusters)
    summary["root_causes"] = clusters.model_dump()

    await stack.close()

    logger.info(
        "replay_finished",
        accepted=accepted,
        rejected=rejected,
        alerts_sent=stack.dispatcher.sent_count,
        alerts_failed=stack.dispatcher.failed_count,
    )
    json.dump(summary, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Replay error events through errwatch")
    parser.add_argument("input", help="JSON-lines file of error events, or - for stdin")
    parser.add_argument("--config", default=None, help="Path to settings YAML")
    parser.add_argument("--log-level", default=None, help="Override log level")
    parser.add_argument(
        "--log-format",
        default=None,
        choices=["json", "console"],
        help="Override log renderer",
    )
    parser.add_argument(
        "--window",
        type=float,
        default=None,
        help="Summarize only the trailing N seconds of replayed data",
    )
    parser.add_argument("--clusters", type=int, default=10, help="Root-cause clusters to show")
    args = parser.parse_args()
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
