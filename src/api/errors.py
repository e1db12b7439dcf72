"""Error kinds and explicit result values shared by the core components."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    MISSING_INPUT = "MissingInput"
    INVALID_PROJECT = "InvalidProject"
    NO_ACTIVE_PROJECT = "NoActiveProject"
    UNSUPPORTED_FORMAT = "UnsupportedFormat"
    PERMISSION_DENIED = "PermissionDenied"
    DESTINATION_BUSY = "DestinationBusy"
    EXPORT_WRITE_FAILED = "ExportWriteFailed"
    RENDER_FAILED = "RenderFailed"
    NOT_FOUND = "NotFound"
    RENDER_IN_PROGRESS = "RenderInProgress"
    RENDER_CANCELLED = "RenderCancelled"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"


@dataclass(frozen=True)
class CoreError:
    """A failure reported by a core operation."""

    kind: ErrorKind
    detail: str

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.kind.value, "detail": self.detail}

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.detail}"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Success value or error; exactly one of the two is set."""

    value: Optional[T] = None
    error: Optional[CoreError] = None

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, kind: ErrorKind, detail: str) -> "Result[T]":
        return cls(error=CoreError(kind=kind, detail=detail))

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, raising if this result holds an error.

        Only intended for tests and call sites that already checked `is_ok`.
        """
        if self.error is not None:
            raise RuntimeError(str(self.error))
        return self.value  # type: ignore[return-value]
