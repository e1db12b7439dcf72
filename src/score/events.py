from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence


@dataclass(frozen=True)
class TempoEvent:
    tick: int
    bpm: float


@dataclass(frozen=True)
class NoteEvent:
    start: int
    duration: int
    pitch_midi: Optional[int] = None
    lyric: Optional[str] = None

    @property
    def end(self) -> int:
        return self.start + self.duration


@dataclass(frozen=True)
class PartData:
    part_id: str
    part_name: Optional[str]
    notes: Sequence[NoteEvent]


@dataclass(frozen=True)
class ScoreData:
    """A parsed score. Tick positions are relative to `ticks_per_quarter`.

    `tempos` is empty when the source carries no tempo metadata at all.
    """

    title: Optional[str]
    ticks_per_quarter: int
    tempos: Sequence[TempoEvent]
    parts: Sequence[PartData]

    def all_notes(self) -> List[NoteEvent]:
        notes = [note for part in self.parts for note in part.notes]
        notes.sort(key=lambda note: (note.start, note.duration))
        return notes
