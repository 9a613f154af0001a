"""Structured logging: structlog over stdlib ``logging``.

Console rendering in ``dev``, one JSON object per line elsewhere. Values
under credential-like keys are masked before rendering.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from config.settings import settings

SENSITIVE_KEYS = frozenset({"private_key", "api_key", "authorization", "password", "mnemonic"})

_configured = False


def redact_secrets(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Mask values whose key names a credential."""
    for key in event_dict:
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = "***"
    return event_dict


def setup_logging(
    level: str | None = None,
    json_output: bool | None = None,
    force: bool = False,
) -> None:
    """Install the processor chain and a stdout handler on the root logger.

    *level* defaults to ``LOG_LEVEL``; *json_output* defaults to
    ``APP_ENV != "dev"``. Repeated calls are no-ops unless *force*.
    """
    global _configured
    if _configured and not force:
        return

    if json_output is None:
        json_output = settings.APP_ENV != "dev"
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel((level or settings.LOG_LEVEL).upper())

    # web3 and httpx log every request at DEBUG/INFO
    for noisy in ("web3", "httpx", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    _configured = True
