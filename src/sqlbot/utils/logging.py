"""
Structured logging for SQLBot.

structlog renders every record as indented JSON on stderr through the
stdlib logging handlers, so uvicorn and library loggers share the output.
Modules get their logger with `logger = get_module_logger()`.

Example record:
    {
      "event": "Schema sync started",
      "table_count": 14,
      "trace_id": "abc-123",
      "logger": "sqlbot.services.schema_sync_service",
      "level": "info",
      "timestamp": "2025-03-02T08:15:00Z",
      "module": "services.schema_sync_service"
    }
"""

import inspect
import json
import logging
from typing import Any, List, Optional

import structlog

from sqlbot.config import get_settings

_configured = False

# Field names whose values are masked in the output
_SECRET_KEYS = frozenset({"password", "api_key", "secret", "token", "authorization"})
_MASK = "***"


def _add_module_info(logger: Any, method_name: str, event_dict: structlog.types.EventDict) -> structlog.types.EventDict:
    """Add a short `module` field: the last two parts of a sqlbot logger name."""
    name = event_dict.get("logger", "unknown")
    event_dict["module"] = ".".join(name.split(".")[-2:]) if name.startswith("sqlbot.") else name
    return event_dict


def _mask(key: str, value: Any) -> Any:
    return _MASK if key.lower() in _SECRET_KEYS and value else value


def _redact_secrets(logger: Any, method_name: str, event_dict: structlog.types.EventDict) -> structlog.types.EventDict:
    """
    Mask credentials in top-level fields and one level into dict fields.

    Data source records and LLM settings get logged while debugging
    connection problems.
    """
    for key, value in list(event_dict.items()):
        if isinstance(value, dict):
            event_dict[key] = {k: _mask(k, v) for k, v in value.items()}
        else:
            event_dict[key] = _mask(key, value)
    return event_dict


def _render_json(logger: Any, method_name: str, event_dict: structlog.types.EventDict) -> str:
    return json.dumps(event_dict, indent=2, ensure_ascii=False, default=str)


def _processors() -> List[Any]:
    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        _add_module_info,
        _redact_secrets,
        _render_json,
    ]


def configure_logging(log_level: Optional[str] = None) -> None:
    """
    Configure structlog and the root logger; later calls are no-ops.

    Args:
        log_level: Level name overriding settings.app.log_level
    """
    global _configured
    if _configured:
        return
    _configured = True

    level = log_level or get_settings().app.log_level.value
    logging.basicConfig(format="%(message)s", level=getattr(logging, level), handlers=[logging.StreamHandler()])

    structlog.configure(
        processors=_processors(),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def get_module_logger() -> structlog.stdlib.BoundLogger:
    """Logger named after the calling module ('unknown' if the frame is unavailable)."""
    frame = inspect.currentframe()
    try:
        caller = frame.f_back if frame is not None else None
        name = caller.f_globals.get("__name__", "unknown") if caller is not None else "unknown"
    finally:
        # Frames hold references to their locals
        del frame
    return get_logger(name)
