"""
Project file (.ustx) reading and writing.

The persisted form is a YAML document. Readers accept in-memory text so
callers never need to round-trip content through a temporary file.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

import yaml

from src.project.models import (
    DEFAULT_BPM,
    DEFAULT_RESOLUTION,
    USTX_VERSION,
    ExpressionDescriptor,
    Note,
    Project,
    SingerRef,
    TempoMarker,
    TimeSignature,
    Track,
    VoicePart,
    default_expressions,
)

if TYPE_CHECKING:
    from src.api.singers import SingerLibrary


class ProjectFormatError(ValueError):
    """Raised when project text cannot be turned into a Project."""


def dumps(project: Project) -> str:
    """Serialize a project to its YAML text form."""
    first_signature = project.time_signatures[0] if project.time_signatures else TimeSignature()
    data: Dict[str, Any] = {
        "name": project.name,
        "comment": project.comment,
        "ustx_version": project.ustx_version,
        "resolution": project.resolution,
        "bpm": project.tempos[0].bpm if project.tempos else DEFAULT_BPM,
        "beat_per_bar": first_signature.beat_per_bar,
        "beat_unit": first_signature.beat_unit,
        "expressions": {
            abbr: {
                "name": descriptor.name,
                "abbr": descriptor.abbr,
                "type": descriptor.type,
                "min": descriptor.min,
                "max": descriptor.max,
                "default_value": descriptor.default_value,
            }
            for abbr, descriptor in project.expressions.items()
        },
        "time_signatures": [
            {
                "bar_position": signature.bar_position,
                "beat_per_bar": signature.beat_per_bar,
                "beat_unit": signature.beat_unit,
            }
            for signature in project.time_signatures
        ],
        "tempos": [{"position": marker.position, "bpm": marker.bpm} for marker in project.tempos],
        "tracks": [_dump_track(track) for track in project.tracks],
        "voice_parts": [_dump_part(part) for part in project.voice_parts],
    }
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)


def _dump_track(track: Track) -> Dict[str, Any]:
    return {
        "singer": track.singer.id if track.singer is not None else None,
        "phonemizer": track.phonemizer,
        "track_name": track.track_name,
        "mute": track.mute,
        "solo": track.solo,
        "volume": track.volume,
        "pan": track.pan,
    }


def _dump_part(part: VoicePart) -> Dict[str, Any]:
    return {
        "name": part.name,
        "comment": part.comment,
        "track_no": part.track_no,
        "position": part.position,
        "notes": [
            {
                "position": note.position,
                "duration": note.duration,
                "tone": note.tone,
                "lyric": note.lyric,
            }
            for note in part.notes
        ],
    }


def write(path: Union[str, Path], project: Project) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dumps(project), encoding="utf-8")
    return path


def loads(
    text: str,
    *,
    file_path: Optional[str] = None,
    singers: Optional["SingerLibrary"] = None,
) -> Project:
    """Parse project text. Singer ids are resolved when a library is given."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ProjectFormatError(f"Invalid project YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ProjectFormatError("Project document must be a mapping.")
    tracks_data = data.get("tracks")
    if not isinstance(tracks_data, list):
        raise ProjectFormatError("Project has no tracks array.")
    try:
        project = Project(
            name=str(data.get("name") or "New Project"),
            file_path=file_path,
            comment=str(data.get("comment") or ""),
            ustx_version=str(data.get("ustx_version") or USTX_VERSION),
            resolution=int(data.get("resolution") or DEFAULT_RESOLUTION),
            tracks=[_load_track(index, item, singers) for index, item in enumerate(tracks_data)],
            voice_parts=[_load_part(item) for item in data.get("voice_parts") or []],
            tempos=_load_tempos(data),
            time_signatures=_load_time_signatures(data),
            expressions=_load_expressions(data.get("expressions")),
        )
    except (TypeError, ValueError, KeyError, AttributeError) as exc:
        raise ProjectFormatError(f"Malformed project content: {exc}") from exc
    project.after_load()
    return project


def read(path: Union[str, Path], *, singers: Optional["SingerLibrary"] = None) -> Project:
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    project = loads(text, file_path=str(path), singers=singers)
    if project.name == "New Project":
        project.name = path.stem
    return project


def _load_track(index: int, item: Any, singers: Optional["SingerLibrary"]) -> Track:
    if not isinstance(item, dict):
        raise ProjectFormatError(f"Track {index} must be a mapping.")
    singer_id = item.get("singer")
    singer = None
    if singer_id:
        if singers is not None:
            singer = singers.resolve(str(singer_id))
        else:
            singer = SingerRef(id=str(singer_id), name=str(singer_id))
    phonemizer = item.get("phonemizer")
    return Track(
        track_no=index,
        singer=singer,
        phonemizer=str(phonemizer) if phonemizer else None,
        track_name=item.get("track_name"),
        mute=bool(item.get("mute", False)),
        solo=bool(item.get("solo", False)),
        volume=float(item.get("volume", 0.0)),
        pan=float(item.get("pan", 0.0)),
    )


def _load_part(item: Dict[str, Any]) -> VoicePart:
    notes: List[Note] = []
    for note in item.get("notes") or []:
        notes.append(
            Note(
                position=int(note["position"]),
                duration=int(note["duration"]),
                tone=int(note.get("tone", 60)),
                lyric=str(note.get("lyric", "a")),
            )
        )
    return VoicePart(
        name=str(item.get("name") or "New Part"),
        comment=str(item.get("comment") or ""),
        track_no=int(item["track_no"]),
        position=int(item.get("position", 0)),
        notes=notes,
    )


def _load_tempos(data: Dict[str, Any]) -> List[TempoMarker]:
    tempos = data.get("tempos")
    if tempos:
        return [TempoMarker(int(item["position"]), float(item["bpm"])) for item in tempos]
    # Older files only carry a single project-wide bpm.
    return [TempoMarker(0, float(data.get("bpm") or DEFAULT_BPM))]


def _load_time_signatures(data: Dict[str, Any]) -> List[TimeSignature]:
    signatures = data.get("time_signatures")
    if signatures:
        return [
            TimeSignature(
                bar_position=int(item.get("bar_position", 0)),
                beat_per_bar=int(item.get("beat_per_bar", 4)),
                beat_unit=int(item.get("beat_unit", 4)),
            )
            for item in signatures
        ]
    return [
        TimeSignature(
            beat_per_bar=int(data.get("beat_per_bar") or 4),
            beat_unit=int(data.get("beat_unit") or 4),
        )
    ]


def _load_expressions(raw: Any) -> Dict[str, ExpressionDescriptor]:
    if not isinstance(raw, dict) or not raw:
        return default_expressions()
    expressions: Dict[str, ExpressionDescriptor] = {}
    for abbr, item in raw.items():
        expressions[str(abbr)] = ExpressionDescriptor(
            name=str(item.get("name", abbr)),
            abbr=str(item.get("abbr", abbr)),
            type=str(item.get("type", "numerical")),
            min=float(item.get("min", 0.0)),
            max=float(item.get("max", 100.0)),
            default_value=float(item.get("default_value", 0.0)),
        )
    return expressions
