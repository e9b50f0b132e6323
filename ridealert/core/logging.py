"""Structured logging setup — service log plus an optional audit trail file."""

from __future__ import annotations

import logging
import sys

import structlog

from ridealert.core.config import LoggingConfig, get_settings

AUDIT_LOGGER = "audit_log"

_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def _formatter(renderer: structlog.types.Processor) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def setup_logging(
    level: str | None = None,
    fmt: str | None = None,
    config: LoggingConfig | None = None,
) -> None:
    """Route structlog through stdlib logging.

    Args:
        level: Log level override (e.g. "DEBUG").
        fmt: Renderer override ("json" or "console").
        config: Logging section; the cached settings are used when None.

    Audit events always go to stderr with everything else. When
    ``audit_path`` is configured they are also appended there as JSON lines.
    """
    cfg = config or get_settings().logging
    log_level = getattr(logging, (level or cfg.level).upper(), logging.INFO)

    if (fmt or cfg.format) == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_formatter(renderer))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    audit_logger = logging.getLogger(AUDIT_LOGGER)
    for old in list(audit_logger.handlers):
        audit_logger.removeHandler(old)
        old.close()
    if cfg.audit_path:
        audit_handler = logging.FileHandler(cfg.audit_path, encoding="utf-8")
        audit_handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
        audit_logger.addHandler(audit_handler)

    # Driver chatter stays out of the alert log.
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
