"""Logging setup: text or JSON output, tenant context and token redaction.

Confirmation links carry a bearer secret in their path, and request loggers
(uvicorn access logs in particular) would otherwise write it to disk. Every
handler installed here runs ``RedactTokensFilter`` first.
"""
from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


TEXT_LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(tenant_id)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Record attributes promoted to top-level JSON keys
CONTEXT_FIELDS = ("tenant_id", "property_id", "confirmation_id", "task_id")

# Third-party loggers and the level they are clamped to
QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "urllib3": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "twilio.http_client": logging.WARNING,
    "apscheduler": logging.INFO,
}

_TOKEN_IN_PATH = re.compile(r"(/confirmar/|/owner-confirmations/)[A-Za-z0-9_\-]+")


def redact_tokens(text: str) -> str:
    """Replace the token segment of confirmation URLs and paths."""
    return _TOKEN_IN_PATH.sub(r"\1[redacted]", text)


class RedactTokensFilter(logging.Filter):
    """Strips raw confirmation tokens from the message and fills in missing context."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_tokens(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        if not hasattr(record, "tenant_id"):
            record.tenant_id = "-"
        return True


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line for log aggregation.

    Context attributes passed through ``extra`` (tenant, property,
    confirmation and task ids) become top-level keys; ``extra_data`` is
    nested under ``extra``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None and value != "-":
                entry[field] = value
        if hasattr(record, "extra_data"):
            entry["extra"] = record.extra_data
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ContextLogger(logging.LoggerAdapter):
    """
    Adapter that stamps fixed context onto every record.

    Usage:
        log = get_context_logger(__name__, tenant_id="acme")
        log.info("Scheduling pass started")
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple[str, Dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def _build_handler(handler: logging.Handler, json_format: bool) -> logging.Handler:
    handler.addFilter(RedactTokensFilter())
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(TEXT_LOG_FORMAT, DATE_FORMAT))
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """
    Configure the root logger for the API, the scheduler process and the CLI.

    Args:
        level: Logging level name.
        log_file: Also write to this file when given.
        json_format: Emit JSON lines instead of text.
    """
    handlers: List[logging.Handler] = [_build_handler(logging.StreamHandler(sys.stdout), json_format)]
    if log_file:
        handlers.append(_build_handler(logging.FileHandler(log_file), json_format))

    logging.basicConfig(level=level, handlers=handlers, force=True)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    # uvicorn installs its own handlers; redact its access log too
    logging.getLogger("uvicorn.access").addFilter(RedactTokensFilter())


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_context_logger(name: str, **context: Any) -> ContextLogger:
    """Logger whose records all carry ``context``, e.g. ``tenant_id``."""
    return ContextLogger(logging.getLogger(name), context)


def log_external_call(
    logger: logging.Logger,
    service: str,
    operation: str,
    success: bool,
    duration_ms: float,
    **extra: Any,
) -> None:
    """
    Log a call to an outside service (Twilio) with its duration.

    Failures are logged at WARNING; the caller decides whether they matter.
    """
    outcome = "completed" if success else "failed"
    logger.log(
        logging.INFO if success else logging.WARNING,
        f"{service}.{operation} {outcome} in {duration_ms:.0f}ms",
        extra={"extra_data": {
            "service": service,
            "operation": operation,
            "success": success,
            "duration_ms": round(duration_ms, 2),
            **extra,
        }},
    )


__all__ = [
    "ContextLogger",
    "JSONFormatter",
    "RedactTokensFilter",
    "get_context_logger",
    "get_logger",
    "log_external_call",
    "redact_tokens",
    "setup_logging",
]
