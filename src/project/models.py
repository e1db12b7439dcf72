"""In-memory project model: tracks, voice parts, notes and tempo markers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import copy

DEFAULT_BPM = 120.0
DEFAULT_RESOLUTION = 480
USTX_VERSION = "0.6"
MISSING_SINGER_NAME = "[Missing]"


@dataclass(frozen=True)
class TempoMarker:
    position: int
    bpm: float


@dataclass(frozen=True)
class TimeSignature:
    bar_position: int = 0
    beat_per_bar: int = 4
    beat_unit: int = 4


@dataclass(frozen=True)
class ExpressionDescriptor:
    name: str
    abbr: str
    type: str = "numerical"
    min: float = 0.0
    max: float = 100.0
    default_value: float = 0.0


def default_expressions() -> Dict[str, ExpressionDescriptor]:
    descriptors = [
        ExpressionDescriptor(name="velocity", abbr="vel", min=0, max=200, default_value=100),
        ExpressionDescriptor(name="volume", abbr="vol", min=0, max=200, default_value=100),
        ExpressionDescriptor(name="voice color", abbr="clr", type="options", min=0, max=0),
        ExpressionDescriptor(name="pitch deviation", abbr="pit", type="curve", min=-1200, max=1200),
    ]
    return {descriptor.abbr: descriptor for descriptor in descriptors}


@dataclass(frozen=True)
class SingerRef:
    """Singer bound to a track; `found` is False for the missing-voice placeholder."""

    id: str
    name: str
    found: bool = True

    @classmethod
    def missing(cls, requested: str) -> "SingerRef":
        return cls(id=requested, name=MISSING_SINGER_NAME, found=False)


@dataclass
class Note:
    position: int
    duration: int
    tone: int = 60
    lyric: str = "a"

    @property
    def end(self) -> int:
        return self.position + self.duration


@dataclass
class Track:
    track_no: int
    singer: Optional[SingerRef] = None
    phonemizer: Optional[str] = None
    track_name: Optional[str] = None
    mute: bool = False
    solo: bool = False
    volume: float = 0.0
    pan: float = 0.0


@dataclass
class VoicePart:
    name: str
    track_no: int
    position: int = 0
    notes: List[Note] = field(default_factory=list)
    comment: str = ""

    @property
    def duration(self) -> int:
        if not self.notes:
            return 0
        return max(note.end for note in self.notes)

    @property
    def end(self) -> int:
        return self.position + self.duration


@dataclass
class Project:
    name: str = "New Project"
    file_path: Optional[str] = None
    comment: str = ""
    ustx_version: str = USTX_VERSION
    resolution: int = DEFAULT_RESOLUTION
    tracks: List[Track] = field(default_factory=list)
    voice_parts: List[VoicePart] = field(default_factory=list)
    tempos: List[TempoMarker] = field(default_factory=lambda: [TempoMarker(0, DEFAULT_BPM)])
    time_signatures: List[TimeSignature] = field(default_factory=lambda: [TimeSignature()])
    expressions: Dict[str, ExpressionDescriptor] = field(default_factory=default_expressions)

    def set_tempo(self, bpm: float) -> None:
        """Replace the tempo map with a single marker at tick 0."""
        self.tempos = [TempoMarker(0, float(bpm))]

    def normalize_tempos(self) -> None:
        """Sort tempo markers and make sure tick 0 is defined."""
        if not self.tempos:
            self.tempos = [TempoMarker(0, DEFAULT_BPM)]
            return
        ordered = sorted(self.tempos, key=lambda marker: marker.position)
        deduped: List[TempoMarker] = []
        for marker in ordered:
            if deduped and deduped[-1].position == marker.position:
                # Later markers at the same tick override earlier ones.
                deduped[-1] = marker
            else:
                deduped.append(marker)
        if deduped[0].position > 0:
            deduped.insert(0, TempoMarker(0, deduped[0].bpm))
        self.tempos = deduped

    def after_load(self) -> None:
        """Fix part ownership after construction or deserialization."""
        for index, track in enumerate(self.tracks):
            track.track_no = index
        self.voice_parts.sort(key=lambda part: (part.track_no, part.position))
        for part in self.voice_parts:
            part.notes.sort(key=lambda note: note.position)
        self.normalize_tempos()

    def validate(self) -> Optional[str]:
        """Return a description of the first structural problem, or None."""
        if self.tracks is None or not isinstance(self.tracks, list):
            return "project has no tracks array"
        if self.voice_parts is None or not isinstance(self.voice_parts, list):
            return "project has no parts array"
        if self.resolution <= 0:
            return f"invalid resolution: {self.resolution}"
        if not self.tempos:
            return "project has no tempo markers"
        for marker in self.tempos:
            if marker.bpm <= 0:
                return f"invalid tempo {marker.bpm} at tick {marker.position}"
        for part in self.voice_parts:
            if part.track_no < 0 or part.track_no >= len(self.tracks):
                return f"part '{part.name}' refers to missing track {part.track_no}"
            for note in part.notes:
                if note.duration <= 0:
                    return f"part '{part.name}' has a note with non-positive duration"
        return None

    @property
    def end_tick(self) -> int:
        """Tick at which the last note of the project ends."""
        if not self.voice_parts:
            return 0
        return max(part.end for part in self.voice_parts)

    def note_count(self) -> int:
        return sum(len(part.notes) for part in self.voice_parts)

    def clone(self) -> "Project":
        return copy.deepcopy(self)

    def summary(self) -> Dict[str, Any]:
        return {"name": self.name, "filePath": self.file_path}
