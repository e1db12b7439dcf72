import io
import zipfile

import mido
import pytest

from conftest import build_midi
from src.score import ScoreReadError, UnsupportedScoreError, is_supported, read_score

DUET_XML = """<?xml version="1.0" encoding="UTF-8"?>
<score-partwise version="3.1">
  <work><work-title>Duet</work-title></work>
  <part-list>
    <score-part id="P1"><part-name>Soprano</part-name></score-part>
    <score-part id="P2"><part-name>Alto</part-name></score-part>
  </part-list>
  <part id="P1">
    <measure number="1">
      <attributes>
        <divisions>1</divisions>
        <time><beats>4</beats><beat-type>4</beat-type></time>
        <clef><sign>G</sign><line>2</line></clef>
      </attributes>
      <direction placement="above">
        <direction-type>
          <metronome><beat-unit>quarter</beat-unit><per-minute>100</per-minute></metronome>
        </direction-type>
      </direction>
      <note>
        <pitch><step>C</step><octave>5</octave></pitch>
        <duration>1</duration><type>quarter</type>
        <lyric><syllabic>single</syllabic><text>la</text></lyric>
      </note>
      <note>
        <pitch><step>D</step><octave>5</octave></pitch>
        <duration>1</duration><type>quarter</type>
      </note>
      <note>
        <pitch><step>E</step><octave>5</octave></pitch>
        <duration>2</duration><tie type="start"/><type>half</type>
        <notations><tied type="start"/></notations>
      </note>
    </measure>
    <measure number="2">
      <note>
        <pitch><step>E</step><octave>5</octave></pitch>
        <duration>1</duration><tie type="stop"/><type>quarter</type>
        <notations><tied type="stop"/></notations>
      </note>
      <note><rest/><duration>3</duration></note>
    </measure>
  </part>
  <part id="P2">
    <measure number="1">
      <attributes>
        <divisions>1</divisions>
        <time><beats>4</beats><beat-type>4</beat-type></time>
        <clef><sign>G</sign><line>2</line></clef>
      </attributes>
      <note>
        <pitch><step>A</step><octave>4</octave></pitch>
        <duration>4</duration><type>whole</type>
      </note>
    </measure>
    <measure number="2">
      <note><rest measure="yes"/><duration>4</duration></note>
    </measure>
  </part>
</score-partwise>
"""

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container>
  <rootfiles><rootfile full-path="score/duet.xml"/></rootfiles>
</container>
"""


def _mxl(xml_text: str) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("META-INF/container.xml", CONTAINER_XML)
        archive.writestr("score/duet.xml", xml_text)
    return buffer.getvalue()


@pytest.mark.parametrize(
    "name,expected",
    [
        ("song.mid", True),
        ("SONG.MIDI", True),
        ("song.xml", True),
        ("song.musicxml", True),
        ("song.mxl", True),
        ("song.ustx", False),
        ("song", False),
    ],
)
def test_supported_suffixes(name, expected):
    assert is_supported(name) is expected


def test_musicxml_parts_become_separate_lines():
    score = read_score("duet.xml", DUET_XML.encode("utf-8"))
    assert score.title == "Duet"
    assert score.ticks_per_quarter == 480
    assert [part.part_name for part in score.parts] == ["Soprano", "Alto"]

    soprano = score.parts[0].notes
    assert [(n.start, n.duration, n.pitch_midi) for n in soprano] == [
        (0, 480, 72),
        (480, 480, 74),
        (960, 1440, 76),
    ]
    assert soprano[0].lyric == "la"
    assert soprano[1].lyric is None
    assert [(n.start, n.duration, n.pitch_midi) for n in score.parts[1].notes] == [(0, 1920, 69)]


def test_musicxml_tempo_marks_read():
    score = read_score("duet.musicxml", DUET_XML.encode("utf-8"))
    assert score.tempos
    assert score.tempos[0].tick == 0
    assert score.tempos[0].bpm == pytest.approx(100.0)


def test_compressed_musicxml_uses_container_rootfile():
    score = read_score("duet.mxl", _mxl(DUET_XML))
    assert len(score.parts) == 2


def test_compressed_musicxml_rejects_non_zip():
    with pytest.raises(ScoreReadError):
        read_score("duet.mxl", b"plain bytes")


def test_midi_tracks_and_tempo():
    data = build_midi([[(0, 480, 60), (480, 240, 62)], [(0, 960, 55)]], bpm=75, ticks_per_beat=960)
    score = read_score("song.mid", data)
    assert score.ticks_per_quarter == 960
    assert score.title == "Line 1"
    assert [part.part_name for part in score.parts] == ["Line 1", "Line 2"]
    assert [(n.start, n.duration) for n in score.parts[0].notes] == [(0, 480), (480, 240)]
    assert score.tempos[0].bpm == pytest.approx(75.0, abs=0.01)


def _single_track_two_channels():
    mid = mido.MidiFile(type=0, ticks_per_beat=480)
    track = mido.MidiTrack()
    mid.tracks.append(track)
    track.append(mido.MetaMessage("track_name", name="Piano", time=0))
    track.append(mido.Message("note_on", channel=0, note=72, velocity=90, time=0))
    track.append(mido.Message("note_on", channel=1, note=48, velocity=90, time=0))
    track.append(mido.Message("note_off", channel=0, note=72, velocity=0, time=480))
    track.append(mido.Message("note_off", channel=1, note=48, velocity=0, time=480))
    buffer = io.BytesIO()
    mid.save(file=buffer)
    return buffer.getvalue()


def test_midi_type0_channels_become_separate_parts():
    score = read_score("piano.mid", _single_track_two_channels())
    assert [part.part_name for part in score.parts] == ["Piano (Ch 1)", "Piano (Ch 2)"]
    assert [part.part_id for part in score.parts] == ["T0C0", "T0C1"]
    assert [(n.start, n.duration, n.pitch_midi) for n in score.parts[0].notes] == [(0, 480, 72)]
    assert [(n.start, n.duration, n.pitch_midi) for n in score.parts[1].notes] == [(0, 960, 48)]


def test_midi_without_tempo_has_no_tempo_events():
    score = read_score("song.mid", build_midi([[(0, 480, 60)]]))
    assert score.tempos == []


def test_unsupported_type_raises():
    with pytest.raises(UnsupportedScoreError):
        read_score("song.wav", b"RIFF")
