"""Render-and-export pipeline for the active project."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
import asyncio
import os
import tempfile
import uuid

import numpy as np

from src.api.audio import write_pcm16
from src.api.errors import CoreError, ErrorKind, Result
from src.api.mixdown import CancellationToken, MixdownEngine, MixdownResult, RenderCancelled
from src.backend.logging_utils import get_logger, log_context
from src.backend.progress import LoggingProgressSink, ProgressSink
from src.backend.session import SessionStore
from src.project.models import Project

if os.name == "nt":
    import msvcrt
else:
    import fcntl

logger = get_logger(__name__)

PROGRESS_STEPS = 10
# Windows sharing/lock violation codes when another process holds the file.
_WINDOWS_BUSY_ERRORS = {32, 33}


class RenderStatus(str, Enum):
    PENDING = "pending"
    RENDERING = "rendering"
    WRITING = "writing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RenderJob:
    job_id: str
    revision: int
    project: Project
    destination: Path
    token: CancellationToken
    status: RenderStatus = RenderStatus.PENDING
    error: Optional[CoreError] = None
    progress: float = 0.0
    events: list = field(default_factory=list)

    def event(self, message: str, **extra: Any) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "job_id": self.job_id,
            "revision": self.revision,
            "status": self.status.value,
            "progress": round(self.progress, 3),
            "message": message,
            "output_path": str(self.destination),
        }
        if self.error is not None:
            payload["error"] = self.error.detail
        payload.update(extra)
        return payload


@dataclass(frozen=True)
class ExportReport:
    job_id: str
    output_path: str
    revision: int
    duration_seconds: float
    sample_rate: int
    channels: int
    status: RenderStatus
    from_cache: bool = False

    def to_payload(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "outputPath": self.output_path,
            "revision": self.revision,
            "durationSeconds": self.duration_seconds,
            "sampleRate": self.sample_rate,
            "channels": self.channels,
            "fromCache": self.from_cache,
        }


class RenderCache:
    """Disk cache of the most recent mixdown, keyed by session revision.

    Revisions restart with every process, so entries also carry a per-instance
    nonce and whatever an earlier process left behind is removed on start.
    """

    def __init__(self, cache_dir: Path) -> None:
        self._cache_dir = cache_dir
        self._nonce = uuid.uuid4().hex[:12]
        self.invalidate()

    def _path(self, revision: int, sample_rate: int, channels: int) -> Path:
        return self._cache_dir / f"mixdown-{self._nonce}-r{revision}-{sample_rate}-{channels}.npy"

    def get(self, revision: int, sample_rate: int, channels: int) -> Optional[MixdownResult]:
        path = self._path(revision, sample_rate, channels)
        if not path.exists():
            return None
        try:
            samples = np.load(path, allow_pickle=False)
        except (OSError, ValueError) as exc:
            logger.warning("render_cache_unreadable path=%s error=%s", path, exc)
            return None
        logger.info("render_cache_hit revision=%s", revision)
        return MixdownResult(samples=samples, sample_rate=sample_rate)

    def put(self, revision: int, result: MixdownResult) -> None:
        self.invalidate()
        try:
            self._cache_dir.mkdir(parents=True, exist_ok=True)
            np.save(self._path(revision, result.sample_rate, result.channels), result.samples)
        except OSError as exc:
            logger.warning("render_cache_write_failed revision=%s error=%s", revision, exc)

    def invalidate(self) -> None:
        if not self._cache_dir.exists():
            return
        for entry in self._cache_dir.glob("mixdown-*.npy"):
            try:
                entry.unlink()
            except OSError as exc:
                logger.warning("render_cache_invalidate_failed path=%s error=%s", entry, exc)


class RenderOrchestrator:
    """Exports the active project to a single 16-bit PCM wave file.

    One export runs at a time. Each export works on a private snapshot of the
    session, so a concurrent load or unload does not affect it.
    """

    def __init__(
        self,
        sessions: SessionStore,
        engine: MixdownEngine,
        *,
        cache: Optional[RenderCache] = None,
        progress: Optional[ProgressSink] = None,
    ) -> None:
        self._sessions = sessions
        self._engine = engine
        self._cache = cache
        self._progress = progress or LoggingProgressSink()
        self._render_lock = asyncio.Lock()
        self._active_job: Optional[RenderJob] = None
        if cache is not None:
            sessions.add_invalidation_hook(cache.invalidate)

    @property
    def active_job(self) -> Optional[RenderJob]:
        return self._active_job

    def cancel_active(self) -> bool:
        """Cancel the running job's mixdown. Returns False when nothing is running."""
        job = self._active_job
        if job is None:
            return False
        job.token.cancel()
        logger.info("render_cancel_requested job_id=%s status=%s", job.job_id, job.status.value)
        return True

    async def export(
        self,
        destination_path: str,
        token: Optional[CancellationToken] = None,
    ) -> Result[ExportReport]:
        snapshot = await self._sessions.snapshot()
        if not snapshot.is_ok:
            return Result(error=snapshot.error)
        if not destination_path or not str(destination_path).strip():
            return Result.fail(ErrorKind.MISSING_INPUT, "outputPath is required.")
        if self._render_lock.locked():
            return Result.fail(ErrorKind.RENDER_IN_PROGRESS, "Another export is already running.")

        async with self._render_lock:
            destination = Path(destination_path).expanduser()
            problem = await asyncio.to_thread(_check_destination, destination)
            if problem is not None:
                logger.warning(
                    "export_destination_rejected path=%s kind=%s detail=%s",
                    destination,
                    problem.kind.value,
                    problem.detail,
                )
                return Result(error=problem)

            job = RenderJob(
                job_id=uuid.uuid4().hex,
                revision=snapshot.value.revision,
                project=snapshot.value.project,
                destination=destination,
                token=token or CancellationToken(),
            )
            self._active_job = job
            try:
                with log_context(job_id=job.job_id, project=job.project.name):
                    return await self._run(job)
            finally:
                self._active_job = None

    async def _run(self, job: RenderJob) -> Result[ExportReport]:
        self._notify(job, "Export queued.")
        mixdown = await self._mixdown(job)
        if not mixdown.is_ok:
            return Result(error=mixdown.error)
        result, from_cache = mixdown.value

        # Cancellation is no longer honoured from here on.
        job.status = RenderStatus.WRITING
        job.progress = 0.9
        self._notify(job, "Writing audio file...")
        try:
            written = await asyncio.to_thread(
                write_pcm16,
                result.samples,
                job.destination,
                sample_rate=result.sample_rate,
            )
        except (OSError, RuntimeError, ValueError) as exc:
            logger.exception("export_write_failed path=%s", job.destination)
            return self._fail(job, ErrorKind.EXPORT_WRITE_FAILED, f"Could not write {job.destination}: {exc}")

        job.status = RenderStatus.SUCCEEDED
        job.progress = 1.0
        self._notify(job, "Export finished.")
        logger.info(
            "export_succeeded path=%s duration_s=%.3f cached=%s",
            written["path"],
            written["duration_seconds"],
            from_cache,
        )
        return Result.ok(
            ExportReport(
                job_id=job.job_id,
                output_path=written["path"],
                revision=job.revision,
                duration_seconds=written["duration_seconds"],
                sample_rate=written["sample_rate"],
                channels=written["channels"],
                status=job.status,
                from_cache=from_cache,
            )
        )

    async def _mixdown(self, job: RenderJob) -> Result[tuple]:
        job.status = RenderStatus.RENDERING
        self._notify(job, "Rendering mixdown...")
        if self._cache is not None:
            cached = await asyncio.to_thread(
                self._cache.get, job.revision, self._engine.sample_rate, self._engine.channels
            )
            if cached is not None:
                return Result.ok((cached, True))

        last_step = [0]

        def on_progress(fraction: float) -> None:
            step = int(fraction * PROGRESS_STEPS)
            if step > last_step[0]:
                last_step[0] = step
                job.progress = 0.9 * fraction
                self._notify(job, "Rendering mixdown...")

        try:
            result = await asyncio.to_thread(self._engine.render, job.project, job.token, on_progress)
        except RenderCancelled:
            job.status = RenderStatus.CANCELLED
            logger.info("export_cancelled job_id=%s", job.job_id)
            return self._fail(job, ErrorKind.RENDER_CANCELLED, "Export was cancelled during mixdown.")
        except Exception as exc:
            logger.exception("export_render_failed job_id=%s", job.job_id)
            return self._fail(job, ErrorKind.RENDER_FAILED, f"Mixdown failed: {exc}")
        if self._cache is not None:
            await asyncio.to_thread(self._cache.put, job.revision, result)
        return Result.ok((result, False))

    def _fail(self, job: RenderJob, kind: ErrorKind, detail: str) -> Result[Any]:
        if job.status != RenderStatus.CANCELLED:
            job.status = RenderStatus.FAILED
        job.error = CoreError(kind=kind, detail=detail)
        job.progress = 1.0
        self._notify(job, "Export failed." if kind != ErrorKind.RENDER_CANCELLED else "Export cancelled.")
        return Result(error=job.error)

    def _notify(self, job: RenderJob, message: str) -> None:
        event = job.event(message)
        job.events.append(event)
        try:
            self._progress.notify(event)
        except Exception:
            logger.exception("render_progress_notify_failed job_id=%s", job.job_id)


def _check_destination(destination: Path) -> Optional[CoreError]:
    """Verify the destination can be written and is not held by another writer."""
    if destination.is_dir():
        return CoreError(ErrorKind.PERMISSION_DENIED, f"{destination} is a directory.")
    parent = destination.parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        return CoreError(ErrorKind.PERMISSION_DENIED, f"Cannot create {parent}: {exc}")
    try:
        with tempfile.NamedTemporaryFile(dir=parent, prefix=".export-probe-", delete=True) as probe:
            probe.write(b"\0")
            probe.flush()
    except OSError as exc:
        return CoreError(ErrorKind.PERMISSION_DENIED, f"Cannot write to {parent}: {exc}")
    if destination.exists():
        return _check_not_locked(destination)
    return None


def _check_not_locked(path: Path) -> Optional[CoreError]:
    try:
        handle = open(path, "r+b")
    except PermissionError as exc:
        if getattr(exc, "winerror", None) in _WINDOWS_BUSY_ERRORS:
            return CoreError(ErrorKind.DESTINATION_BUSY, f"{path} is in use by another process.")
        return CoreError(ErrorKind.PERMISSION_DENIED, f"Cannot open {path} for writing: {exc}")
    except OSError as exc:
        return CoreError(ErrorKind.PERMISSION_DENIED, f"Cannot open {path} for writing: {exc}")
    with handle:
        try:
            if os.name == "nt":
                msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
                msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
            else:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        except OSError:
            return CoreError(ErrorKind.DESTINATION_BUSY, f"{path} is locked by another writer.")
    return None
