"""MusicXML (.xml/.musicxml/.mxl) reader built on music21."""

from __future__ import annotations

import io
import zipfile
from typing import List, Optional, Sequence
from xml.etree import ElementTree

from music21 import chord, converter, note, stream, tempo

from .events import NoteEvent, PartData, ScoreData, TempoEvent

TICKS_PER_QUARTER = 480


def parse_musicxml_bytes(data: bytes, *, compressed: bool = False) -> ScoreData:
    """Parse MusicXML content held in memory into tick-based score data.

    Every part of the score becomes one PartData. Rests are dropped and tied
    notes are merged into a single event.
    """
    text = _read_mxl_content(data) if compressed else data.decode("utf-8", errors="replace")
    score = converter.parseData(text, format="musicxml")
    parts = []
    for index, part in enumerate(score.parts):
        part_id_value = str(part.id) if part.id is not None else f"P{index + 1}"
        parts.append(
            PartData(
                part_id=part_id_value,
                part_name=part.partName,
                notes=_collect_part_events(part),
            )
        )
    title = score.metadata.title if score.metadata else None
    return ScoreData(
        title=title,
        ticks_per_quarter=TICKS_PER_QUARTER,
        tempos=_extract_tempos(score),
        parts=parts,
    )


def _to_ticks(quarter_length: float) -> int:
    return int(round(float(quarter_length) * TICKS_PER_QUARTER))


def _extract_tempos(score: stream.Score) -> Sequence[TempoEvent]:
    tempo_events = []
    for mark in score.recurse().getElementsByClass(tempo.MetronomeMark):
        bpm = _metronome_bpm(mark)
        if bpm is None or bpm <= 0:
            continue
        tempo_events.append(
            TempoEvent(
                tick=_to_ticks(mark.getOffsetInHierarchy(score)),
                bpm=float(bpm),
            )
        )
    tempo_events.sort(key=lambda event: event.tick)
    return tempo_events


def _metronome_bpm(mark: tempo.MetronomeMark) -> Optional[float]:
    if hasattr(mark, "getQuarterBPM"):
        bpm = mark.getQuarterBPM()
        if bpm is not None:
            return float(bpm)
    if mark.number is not None:
        return float(mark.number)
    return None


def _collect_part_events(part: stream.Part) -> Sequence[NoteEvent]:
    elements = [element for element in part.recurse().notes]
    elements.sort(
        key=lambda element: (
            float(element.getOffsetInHierarchy(part)),
            getattr(element, "priority", 0),
        )
    )
    events: List[NoteEvent] = []
    for element in elements:
        start = _to_ticks(element.getOffsetInHierarchy(part))
        duration = _to_ticks(element.duration.quarterLength)
        if duration <= 0:
            # Grace notes carry no duration of their own.
            continue
        tie_type = element.tie.type if element.tie is not None else None
        if tie_type in {"stop", "continue"} and events and events[-1].end == start:
            previous = events[-1]
            events[-1] = NoteEvent(
                start=previous.start,
                duration=previous.duration + duration,
                pitch_midi=previous.pitch_midi,
                lyric=previous.lyric,
            )
            continue
        events.append(
            NoteEvent(
                start=start,
                duration=duration,
                pitch_midi=_top_pitch(element),
                lyric=_extract_lyric_text(element),
            )
        )
    return events


def _top_pitch(element: note.NotRest) -> Optional[int]:
    if isinstance(element, chord.Chord):
        return int(max(element.pitches, key=lambda p: p.midi).midi)
    if isinstance(element, note.Note) and element.pitch is not None:
        return int(element.pitch.midi)
    return None


def _extract_lyric_text(element: note.NotRest) -> Optional[str]:
    if not element.lyrics:
        return None
    text = element.lyrics[0].text
    if text is None:
        return None
    return text.strip() or None


def _read_mxl_content(data: bytes) -> str:
    """Read the root MusicXML document out of an in-memory .mxl archive."""
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            xml_name = _find_mxl_xml(archive)
            xml_bytes = archive.read(xml_name)
    except zipfile.BadZipFile as exc:
        raise ValueError(f"Not a compressed MusicXML archive: {exc}") from exc
    return xml_bytes.decode("utf-8", errors="replace")


def _find_mxl_xml(archive: zipfile.ZipFile) -> str:
    try:
        container_bytes = archive.read("META-INF/container.xml")
    except KeyError:
        return _first_mxl_xml(archive)
    try:
        root = ElementTree.fromstring(container_bytes)
    except ElementTree.ParseError:
        return _first_mxl_xml(archive)
    for elem in root.iter():
        if elem.tag.endswith("rootfile"):
            full_path = elem.attrib.get("full-path")
            if full_path and full_path in archive.namelist():
                return full_path
    return _first_mxl_xml(archive)


def _first_mxl_xml(archive: zipfile.ZipFile) -> str:
    candidates = [
        name
        for name in archive.namelist()
        if name.lower().endswith(".xml") and not name.startswith("META-INF/")
    ]
    if not candidates:
        raise ValueError("No MusicXML file found in archive.")
    return candidates[0]
