"""Logging setup plus request/job/project context for every log record."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import fields, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional
import contextvars
import json
import logging
import logging.config
import os

import numpy as np

CONTEXT_FIELDS = ("request_id", "job_id", "project")
EMPTY_CONTEXT: Mapping[str, str] = {name: "-" for name in CONTEXT_FIELDS}

DEFAULT_LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s %(filename)s:%(lineno)d:%(funcName)s "
    "request_id=%(request_id)s job_id=%(job_id)s project=%(project)s %(message)s"
)

DEV_ENVS = {"dev", "development", "local"}
PROD_ENVS = {"prod", "production"}

_context: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "log_context", default=EMPTY_CONTEXT
)

_RECORD_ATTRS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


def summarize_payload(value: Any, *, max_list: int = 20, max_str: int = 200, depth: int = 3) -> Any:
    """Shrink a payload (scores, projects, sample buffers) to something loggable."""
    if depth <= 0:
        return f"<{type(value).__name__}>"
    nested = dict(max_list=max_list, max_str=max_str, depth=depth - 1)
    if isinstance(value, np.ndarray):
        return {"__ndarray__": list(value.shape), "dtype": str(value.dtype)}
    if isinstance(value, (bytes, bytearray)):
        return {"__bytes__": len(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, str):
        return value if len(value) <= max_str else value[:max_str] + "...(truncated)"
    if is_dataclass(value) and not isinstance(value, type):
        value = {item.name: getattr(value, item.name) for item in fields(value)}
    if isinstance(value, Mapping):
        items = list(value.items())
        summary = {str(key): summarize_payload(item, **nested) for key, item in items[:max_list]}
        if len(items) > max_list:
            summary["__truncated__"] = True
            summary["__len__"] = len(items)
        return summary
    if isinstance(value, (list, tuple)):
        if len(value) <= max_list:
            return [summarize_payload(item, **nested) for item in value]
        return {"__len__": len(value), "sample": [summarize_payload(item, **nested) for item in value[:5]]}
    return value


def set_log_context(
    *, request_id: Optional[str] = None, job_id: Optional[str] = None, project: Optional[str] = None
) -> None:
    """Bind identifiers to the current context; None leaves a field unchanged."""
    updates = {"request_id": request_id, "job_id": job_id, "project": project}
    current = dict(_context.get())
    current.update({key: str(val) for key, val in updates.items() if val is not None})
    _context.set(current)


def clear_log_context() -> None:
    _context.set(EMPTY_CONTEXT)


@contextmanager
def log_context(**values: Optional[str]) -> Iterator[None]:
    """Bind identifiers for the duration of a block, then restore the previous ones."""
    token = _context.set(dict(_context.get()))
    try:
        set_log_context(**values)
        yield
    finally:
        _context.reset(token)


def current_log_context() -> Dict[str, str]:
    return dict(_context.get())


class LoggingContextFilter(logging.Filter):
    """Copy the bound request/job/project identifiers onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, value in _context.get().items():
            setattr(record, name, value)
        return True


class LevelRangeFilter(logging.Filter):
    """Pass records whose level lies within optional lower and upper bounds."""

    def __init__(self, *, min_level: int | str | None = None, max_level: int | str | None = None) -> None:
        super().__init__()
        self._min_level = _level_number(min_level)
        self._max_level = _level_number(max_level)

    def filter(self, record: logging.LogRecord) -> bool:
        if self._min_level is not None and record.levelno < self._min_level:
            return False
        return self._max_level is None or record.levelno <= self._max_level


class MaxLevelFilter(LevelRangeFilter):
    """Used by the prod config to keep warnings off stdout."""

    def __init__(self, max_level: int | str) -> None:
        super().__init__(max_level=max_level)


def _level_number(level: int | str | None) -> int | None:
    if level is None or isinstance(level, int):
        return level
    return logging.getLevelName(level.upper())


class JsonFormatter(logging.Formatter):
    """One JSON object per record; extra= fields are kept."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "severity": record.levelname,
            "logger": record.name,
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            payload[name] = getattr(record, name, "-")
        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS and key not in payload:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def _app_env() -> str:
    return (os.getenv("APP_ENV") or os.getenv("ENV") or "dev").lower()


def is_dev_env() -> bool:
    return _app_env() in DEV_ENVS


def _use_json_logs() -> bool:
    if os.getenv("LOG_FORMAT", "").lower() == "json":
        return True
    return os.getenv("LOG_JSON", "").lower() in {"1", "true", "yes"}


def build_formatter() -> logging.Formatter:
    return JsonFormatter() if _use_json_logs() else logging.Formatter(DEFAULT_LOG_FORMAT)


def attach_context_filter(handler: logging.Handler) -> None:
    if not any(isinstance(existing, LoggingContextFilter) for existing in handler.filters):
        handler.addFilter(LoggingContextFilter())


def ensure_timestamped_handlers(logger_names: Iterable[str] | None = None) -> None:
    """Give root and uvicorn handlers the shared formatter and context filter."""
    formatter = build_formatter()
    for name in logger_names or ("", "uvicorn", "uvicorn.error", "uvicorn.access"):
        for handler in logging.getLogger(name).handlers:
            handler.setFormatter(formatter)
            attach_context_filter(handler)


def _config_path(root_dir: Path) -> Path:
    override = os.getenv("LOG_CONFIG")
    if override:
        candidate = Path(override)
        return candidate if candidate.is_absolute() else root_dir / candidate
    name = "logging.prod.json" if _app_env() in PROD_ENVS else "logging.dev.json"
    return root_dir / "config" / name


def configure_logging() -> None:
    """Apply config/logging.<env>.json, then LOG_FORMAT and BACKEND_LOG_LEVEL overrides."""
    config_path = _config_path(Path(__file__).resolve().parents[2])
    if config_path.exists():
        config = json.loads(config_path.read_text(encoding="utf-8"))
        if _use_json_logs() and "json" in config.get("formatters", {}):
            for handler in config.get("handlers", {}).values():
                handler["formatter"] = "json"
        logging.config.dictConfig(config)
    else:
        logging.basicConfig(level=logging.INFO)
    level_override = os.getenv("BACKEND_LOG_LEVEL")
    if level_override:
        logging.getLogger().setLevel(level_override.upper())
    ensure_timestamped_handlers()


def get_logger(module_name: str) -> logging.Logger:
    """Module logger; in dev it also writes to LOG_DIR/<module>.log."""
    logger = logging.getLogger(module_name)
    logger.propagate = True
    if getattr(logger, "_file_handler_attached", False) or not is_dev_env():
        return logger
    log_dir = Path(os.getenv("LOG_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_dir / f"{module_name.replace('.', '_')}.log", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(build_formatter())
    attach_context_filter(handler)
    logger.addHandler(handler)
    logger._file_handler_attached = True  # type: ignore[attr-defined]
    return logger
