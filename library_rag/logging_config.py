"""Structured logging for the catalog assistant.

structlog renders every event as JSON (console output with ``LOG_PRETTY=1``),
and stdlib loggers from uvicorn, aiohttp and openai are routed through the
same processors. Query embeddings and long prompt or description fields are
shortened before rendering so a single search turn stays readable.

``core.app`` calls :func:`configure_logging` during startup; modules take their
logger from ``structlog.get_logger(__name__)``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import structlog

from .core import config

__all__ = [
    "configure_logging",
    "bind_request_context",
    "clear_request_context",
    "shorten_long_values",
]

_configured = False


def shorten_long_values(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Collapse oversized strings and numeric vectors in *event_dict*."""
    limit = config.LOG_VALUE_LIMIT
    for key, value in event_dict.items():
        if key == "event":
            continue
        if isinstance(value, str) and len(value) > limit:
            event_dict[key] = f"{value[:limit]}... ({len(value)} chars)"
        elif isinstance(value, (list, tuple)) and len(value) > 8 and all(
            isinstance(v, (int, float)) for v in value
        ):
            event_dict[key] = f"<vector dim={len(value)}>"
    return event_dict


def _processors() -> List[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        shorten_long_values,
    ]


def configure_logging(
    level: Optional[str] = None,
    pretty: Optional[bool] = None,
    force: bool = False,
) -> None:
    """Configure structlog and the stdlib root handler once per process.

    ``level`` and ``pretty`` default to ``LOG_LEVEL`` / ``LOG_PRETTY``.
    """
    global _configured
    if _configured and not force:
        return

    level = (level or config.LOG_LEVEL).upper()
    pretty = config.LOG_PRETTY if pretty is None else pretty
    renderer = structlog.dev.ConsoleRenderer() if pretty else structlog.processors.JSONRenderer()

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_processors(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level, logging.INFO))

    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_processors(),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True


def bind_request_context(
    request_id: Optional[str] = None,
    conversation_id: Optional[str] = None,
) -> None:
    """Attach ids to every log line of the current request; ``None`` leaves a key as is."""
    payload: Dict[str, str] = {}
    if request_id:
        payload["request_id"] = request_id
    if conversation_id:
        payload["conversation_id"] = conversation_id
    if payload:
        structlog.contextvars.bind_contextvars(**payload)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
