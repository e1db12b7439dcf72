"""Holder for the single active project shared by all request handlers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, TypeVar
import asyncio

from src.api.errors import ErrorKind, Result
from src.backend.logging_utils import get_logger
from src.project.models import Project

T = TypeVar("T")

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ProjectSummary:
    name: str
    file_path: Optional[str]
    revision: int
    loaded_at: datetime

    def to_payload(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "filePath": self.file_path,
            "revision": self.revision,
            "loadedAt": self.loaded_at.isoformat(),
        }


@dataclass(frozen=True)
class ProjectSnapshot:
    """A private copy of the active project taken under the session lock."""
    revision: int
    project: Project


class SessionStore:
    """Either empty or holding one loaded project.

    Load, unload and project access are serialized by one lock, so callers
    never see a half-replaced project.
    """

    def __init__(self) -> None:
        self._project: Optional[Project] = None
        self._revision = 0
        self._loaded_at: Optional[datetime] = None
        self._lock = asyncio.Lock()
        self._invalidation_hooks: List[Callable[[], None]] = []

    def add_invalidation_hook(self, hook: Callable[[], None]) -> None:
        """Register a callback run whenever the active project is replaced, edited or cleared.

        Hooks run in a worker thread while the session lock is held.
        """
        self._invalidation_hooks.append(hook)

    async def status(self) -> Optional[ProjectSummary]:
        async with self._lock:
            return self._summary_locked()

    async def load(self, project: Optional[Project]) -> Result[ProjectSummary]:
        if not isinstance(project, Project):
            return Result.fail(ErrorKind.INVALID_PROJECT, "No project was provided.")
        problem = project.validate()
        if problem is not None:
            return Result.fail(ErrorKind.INVALID_PROJECT, problem)
        project.after_load()
        async with self._lock:
            if self._project is not None:
                previous = self._project.name
                self._project = None
                await self._invalidate_caches_locked()
                logger.info("session_project_replaced previous=%s", previous)
            self._project = project
            self._revision += 1
            self._loaded_at = _utcnow()
            summary = self._summary_locked()
        logger.info(
            "session_project_loaded name=%s revision=%s tracks=%s",
            project.name,
            summary.revision,
            len(project.tracks),
        )
        return Result.ok(summary)

    async def unload(self) -> Result[bool]:
        """Clear the active project. The value is False when nothing was loaded."""
        async with self._lock:
            if self._project is None:
                return Result.ok(False)
            name = self._project.name
            self._project = None
            self._loaded_at = None
            await self._invalidate_caches_locked()
        logger.info("session_project_unloaded name=%s", name)
        return Result.ok(True)

    async def with_active_project(self, fn: Callable[[Project], T]) -> Result[T]:
        """Run `fn` against the live project.

        `fn` may edit the project, so every call counts as a change: the
        revision is bumped and cached renders are dropped.
        """
        async with self._lock:
            if self._project is None:
                return Result.fail(ErrorKind.NO_ACTIVE_PROJECT, "No project is loaded.")
            try:
                return Result.ok(fn(self._project))
            finally:
                self._revision += 1
                await self._invalidate_caches_locked()

    async def snapshot(self) -> Result[ProjectSnapshot]:
        async with self._lock:
            if self._project is None:
                return Result.fail(ErrorKind.NO_ACTIVE_PROJECT, "No project is loaded.")
            return Result.ok(ProjectSnapshot(revision=self._revision, project=self._project.clone()))

    def _summary_locked(self) -> Optional[ProjectSummary]:
        if self._project is None or self._loaded_at is None:
            return None
        return ProjectSummary(
            name=self._project.name,
            file_path=self._project.file_path,
            revision=self._revision,
            loaded_at=self._loaded_at,
        )

    async def _invalidate_caches_locked(self) -> None:
        for hook in self._invalidation_hooks:
            try:
                await asyncio.to_thread(hook)
            except Exception:
                logger.exception("session_cache_invalidation_failed hook=%r", hook)
