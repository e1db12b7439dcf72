import io
import os

# Keep per-module log files out of the working tree during test runs.
os.environ.setdefault("APP_ENV", "test")

import mido
import pytest


def build_midi(lines, *, bpm=None, ticks_per_beat=480, lyrics=None):
    """Build a Standard MIDI File in memory.

    `lines` is a list of note lists, one per track; each note is
    (start_tick, duration_ticks, pitch).
    """
    mid = mido.MidiFile(ticks_per_beat=ticks_per_beat)
    for index, notes in enumerate(lines):
        track = mido.MidiTrack()
        mid.tracks.append(track)
        track.append(mido.MetaMessage("track_name", name=f"Line {index + 1}", time=0))
        if index == 0 and bpm is not None:
            track.append(mido.MetaMessage("set_tempo", tempo=mido.bpm2tempo(bpm), time=0))
        now = 0
        for note_index, (start, duration, pitch) in enumerate(notes):
            if lyrics and index == 0 and note_index < len(lyrics):
                track.append(mido.MetaMessage("lyrics", text=lyrics[note_index], time=start - now))
                now = start
            track.append(mido.Message("note_on", note=pitch, velocity=90, time=start - now))
            track.append(mido.Message("note_off", note=pitch, velocity=0, time=duration))
            now = start + duration
    buffer = io.BytesIO()
    mid.save(file=buffer)
    return buffer.getvalue()


@pytest.fixture
def two_line_midi():
    soprano = [(0, 240, 72), (480, 240, 74), (960, 240, 76), (1440, 240, 77)]
    alto = [(0, 480, 65), (960, 480, 67)]
    return build_midi([soprano, alto])


@pytest.fixture
def singers_dir(tmp_path):
    root = tmp_path / "singers"
    alice = root / "alice"
    alice.mkdir(parents=True)
    (alice / "character.yaml").write_text("name: Alice\n", encoding="utf-8")
    bob = root / "bob_utau"
    bob.mkdir()
    (bob / "character.txt").write_text("name=Bob\nimage=bob.bmp\n", encoding="utf-8")
    return root
