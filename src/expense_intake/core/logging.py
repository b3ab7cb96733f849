from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import os
import time
from collections.abc import Iterator
from datetime import datetime, timezone
from typing import Any

LOGGER_ROOT = "expense_intake"

# Fields bound for the current receipt run (user_id, celery_task_id, ...).
_bound_fields: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "expense_intake_log_fields", default={}
)

_configured = False


class JsonFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, event, then bound and call fields."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "ts": ts.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "event": getattr(record, "event", None) or record.getMessage(),
        }
        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            payload.update(fields)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=True)


def configure_logging(level: str | None = None) -> None:
    global _configured  # noqa: PLW0603
    if _configured:
        return
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    resolved = logging.getLevelName(level_name)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger(LOGGER_ROOT)
    root.setLevel(resolved)
    root.handlers = [handler]
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


@contextlib.contextmanager
def bind_log_fields(**fields: Any) -> Iterator[None]:
    """Attach fields to every event logged inside the block (nesting merges)."""
    merged = {**_bound_fields.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _bound_fields.set(merged)
    try:
        yield
    finally:
        _bound_fields.reset(token)


def _merge_fields(fields: dict[str, Any]) -> dict[str, Any]:
    payload = dict(_bound_fields.get())
    payload.update((k, v) for k, v in fields.items() if v is not None)
    return payload


def log_event(
    logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any
) -> None:
    logger.log(level, event, extra={"event": event, "fields": _merge_fields(fields)})


def log_exception(logger: logging.Logger, event: str, **fields: Any) -> None:
    logger.exception(event, extra={"event": event, "fields": _merge_fields(fields)})


def monotonic_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
