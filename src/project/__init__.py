from .models import (
    Note,
    Project,
    SingerRef,
    TempoMarker,
    TimeSignature,
    Track,
    VoicePart,
)

__all__ = [
    "Note",
    "Project",
    "SingerRef",
    "TempoMarker",
    "TimeSignature",
    "Track",
    "VoicePart",
]
