"""Render progress notification sinks."""

from __future__ import annotations

from datetime import datetime, timezone
import json
from pathlib import Path
import threading
from typing import Any, Dict, Iterable, List, Optional, Protocol

from src.backend.logging_utils import get_logger

logger = get_logger(__name__)


def _utc_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


class ProgressSink(Protocol):
    def notify(self, event: Dict[str, Any]) -> None:
        ...


class LoggingProgressSink:
    """Writes every progress event to the log."""
    def notify(self, event: Dict[str, Any]) -> None:
        logger.info(
            "render_progress job_id=%s status=%s progress=%s message=%s",
            event.get("job_id"),
            event.get("status"),
            event.get("progress"),
            event.get("message"),
        )


class MemoryProgressSink:
    """Keeps the latest event so clients can poll for it."""
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest: Optional[Dict[str, Any]] = None

    def notify(self, event: Dict[str, Any]) -> None:
        data = dict(event)
        data.setdefault("updated_at", _utc_iso())
        with self._lock:
            self._latest = data

    def latest(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return dict(self._latest) if self._latest is not None else None


class FileProgressSink:
    """Mirrors the latest event into a JSON file."""
    def __init__(self, path: Path) -> None:
        self._path = path

    def notify(self, event: Dict[str, Any]) -> None:
        write_progress(self._path, event)


class CompositeProgressSink:
    """Fans events out to several sinks; a failing sink never blocks the others."""
    def __init__(self, sinks: Iterable[ProgressSink]) -> None:
        self._sinks: List[ProgressSink] = list(sinks)

    def notify(self, event: Dict[str, Any]) -> None:
        for sink in self._sinks:
            try:
                sink.notify(event)
            except Exception:
                logger.exception("progress_sink_failed sink=%s", type(sink).__name__)


def read_progress(path: Path) -> Optional[Dict[str, Any]]:
    """Read a progress file from disk, returning None on errors."""
    try:
        payload = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    try:
        return json.loads(payload)
    except json.JSONDecodeError:
        return None


def write_progress(
    path: Path,
    payload: Dict[str, Any],
    *,
    expected_job_id: Optional[str] = None,
) -> bool:
    """Write progress data to disk atomically, guarding job ownership."""
    if expected_job_id is not None:
        existing = read_progress(path)
        if existing and existing.get("job_id") not in (None, expected_job_id):
            return False
    data = dict(payload)
    data.setdefault("updated_at", _utc_iso())
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(f"{path.suffix}.tmp")
    tmp_path.write_text(json.dumps(data), encoding="utf-8")
    tmp_path.replace(path)
    return True


def build_progress_payload(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Normalize a render job event into a progress payload for clients."""
    if not data:
        return {"status": "idle"}
    state = data.get("status", "idle")
    if state == "succeeded":
        status = "done"
    elif state in {"failed", "cancelled"}:
        status = "error"
    elif state in {"pending", "rendering", "writing"}:
        status = "running"
    else:
        status = state
    payload: Dict[str, Any] = {
        "status": status,
        "step": state,
        "message": data.get("message"),
        "progress": data.get("progress"),
        "output_path": data.get("output_path"),
        "error": data.get("error"),
        "job_id": data.get("job_id"),
        "revision": data.get("revision"),
        "updated_at": data.get("updated_at"),
    }
    return {key: value for key, value in payload.items() if value is not None}
