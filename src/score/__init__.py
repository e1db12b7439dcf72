"""Score reading entry point: dispatches in-memory score files by type."""

from __future__ import annotations

from pathlib import PurePath

from .events import NoteEvent, PartData, ScoreData, TempoEvent
from .midi import parse_midi_bytes
from .musicxml import parse_musicxml_bytes

MIDI_SUFFIXES = frozenset({".mid", ".midi"})
MUSICXML_SUFFIXES = frozenset({".xml", ".musicxml"})
COMPRESSED_MUSICXML_SUFFIXES = frozenset({".mxl"})
SUPPORTED_SUFFIXES = MIDI_SUFFIXES | MUSICXML_SUFFIXES | COMPRESSED_MUSICXML_SUFFIXES


class UnsupportedScoreError(ValueError):
    """Raised for files whose type is not a recognized score container."""


class ScoreReadError(ValueError):
    """Raised when a recognized score file cannot be parsed."""


def is_supported(filename: str) -> bool:
    return PurePath(filename).suffix.lower() in SUPPORTED_SUFFIXES


def read_score(filename: str, data: bytes) -> ScoreData:
    """Parse score content held in memory; the type is taken from `filename`."""
    suffix = PurePath(filename).suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise UnsupportedScoreError(f"Unsupported score file type: {filename}")
    try:
        if suffix in MIDI_SUFFIXES:
            return parse_midi_bytes(data)
        return parse_musicxml_bytes(data, compressed=suffix in COMPRESSED_MUSICXML_SUFFIXES)
    except ScoreReadError:
        raise
    except Exception as exc:
        raise ScoreReadError(f"Could not read score {filename}: {exc}") from exc


__all__ = [
    "NoteEvent",
    "PartData",
    "ScoreData",
    "TempoEvent",
    "ScoreReadError",
    "UnsupportedScoreError",
    "SUPPORTED_SUFFIXES",
    "is_supported",
    "read_score",
]
