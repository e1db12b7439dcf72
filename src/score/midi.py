"""
Standard MIDI File reader.

Each MIDI track that contains at least one note becomes one part. A track
that plays on several channels (as in type-0 files) is split into one part
per channel. Note positions stay in the file's own tick resolution
(`ticks_per_beat`).
"""

import io
from typing import Dict, List, Optional, Tuple

import mido

from .events import NoteEvent, PartData, ScoreData, TempoEvent


def parse_midi_bytes(data: bytes) -> ScoreData:
    try:
        mid = mido.MidiFile(file=io.BytesIO(data))
    except (OSError, EOFError, ValueError, KeyError, IndexError) as exc:
        raise ValueError(f"Invalid MIDI data: {exc}") from exc

    tempos: List[TempoEvent] = []
    parts: List[PartData] = []
    title: Optional[str] = None

    for track_idx, midi_track in enumerate(mid.tracks):
        notes_by_channel: Dict[int, List[NoteEvent]] = {}
        current_tick = 0
        track_name: Optional[str] = None
        # {(channel, pitch): (start_tick, lyric)}
        active_notes: Dict[Tuple[int, int], Tuple[int, Optional[str]]] = {}
        pending_lyric: Optional[Tuple[int, str]] = None

        for msg in midi_track:
            current_tick += msg.time

            if msg.type == "set_tempo":
                tempos.append(TempoEvent(tick=current_tick, bpm=float(mido.tempo2bpm(msg.tempo))))

            elif msg.type == "track_name":
                track_name = msg.name

            elif msg.type == "lyrics":
                pending_lyric = (current_tick, msg.text.strip())

            elif msg.type == "note_on" and msg.velocity > 0:
                lyric = None
                if pending_lyric is not None and pending_lyric[0] == current_tick:
                    lyric = pending_lyric[1] or None
                    pending_lyric = None
                active_notes[(msg.channel, msg.note)] = (current_tick, lyric)

            elif msg.type == "note_off" or (msg.type == "note_on" and msg.velocity == 0):
                key = (msg.channel, msg.note)
                if key in active_notes:
                    start_tick, lyric = active_notes.pop(key)
                    duration = current_tick - start_tick
                    if duration > 0:
                        notes_by_channel.setdefault(msg.channel, []).append(
                            NoteEvent(
                                start=start_tick,
                                duration=duration,
                                pitch_midi=msg.note,
                                lyric=lyric,
                            )
                        )

        if track_idx == 0 and track_name:
            title = track_name
        base_name = track_name or f"Track {track_idx + 1}"
        split = len(notes_by_channel) > 1
        for channel in sorted(notes_by_channel):
            notes = sorted(notes_by_channel[channel], key=lambda event: event.start)
            parts.append(
                PartData(
                    part_id=f"T{track_idx}C{channel}" if split else f"T{track_idx}",
                    part_name=f"{base_name} (Ch {channel + 1})" if split else base_name,
                    notes=notes,
                )
            )

    tempos.sort(key=lambda event: event.tick)
    return ScoreData(
        title=title,
        ticks_per_quarter=int(mid.ticks_per_beat),
        tempos=tempos,
        parts=parts,
    )
