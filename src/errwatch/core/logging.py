"""Structured logging setup for the telemetry engine (structlog over stdlib)."""

from __future__ import annotations

import logging
import sys

import structlog

from errwatch.core.config import Settings, get_settings


def setup_logging(
    level: str | None = None,
    fmt: str | None = None,
    settings: Settings | None = None,
) -> None:
    """Route structlog and stdlib records through one stderr handler.

    Args:
        level: Log level override (e.g. "DEBUG"). Uses config if None.
        fmt: "json" or "console". Uses config if None.
        settings: Explicit settings; falls back to the cached global ones.
    """
    cfg = settings or get_settings()
    log_level = getattr(logging, (level or cfg.logging.level).upper(), logging.INFO)
    log_format = fmt or cfg.logging.format

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer: structlog.types.Processor
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    # Every record carries the deployment identity from the reporter config.
    structlog.contextvars.bind_contextvars(
        environment=cfg.reporter.environment,
        release=cfg.reporter.release,
    )
