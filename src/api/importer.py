"""
Score import: builds a new Project from MIDI/MusicXML files.
"""

from dataclasses import dataclass
from pathlib import PurePath
import logging
from typing import List, Optional, Sequence

from src.api.errors import ErrorKind, Result
from src.api.singers import SingerLibrary
from src.api.tempo import fold_bpm, infer_bpm
from src.backend.logging_utils import get_logger, summarize_payload
from src.phonemizer.registry import PhonemizerRegistry
from src.project.models import Note, Project, TempoMarker, Track, VoicePart
from src.score import ScoreData, ScoreReadError, UnsupportedScoreError, is_supported, read_score

logger = get_logger(__name__)

DEFAULT_LYRIC = "a"
DEFAULT_TONE = 60


@dataclass(frozen=True)
class ScoreFile:
    """An uploaded score held in memory."""

    name: str
    data: bytes


def import_scores(
    score_files: Sequence[ScoreFile],
    voice_assignments: Optional[Sequence[str]],
    phonemizer_assignments: Optional[Sequence[str]],
    explicit_bpm: Optional[float] = None,
    *,
    singers: SingerLibrary,
    phonemizers: PhonemizerRegistry,
    project_name: Optional[str] = None,
) -> Result[Project]:
    """
    Convert score files into a new Project.

    Args:
        score_files: Scores to import, in order
        voice_assignments: Singer names, bound to the new tracks by index
        phonemizer_assignments: Phonemizer identifiers, bound by index
        explicit_bpm: Tempo to use instead of the files' tempo data
        singers: Singer lookup used to resolve voice names
        phonemizers: Registry used to resolve phonemizer identifiers
        project_name: Optional name; defaults to the first score's title

    Returns:
        Result holding the constructed Project. The project is not loaded
        into any session.
    """
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "import_scores input=%s",
            summarize_payload(
                {
                    "files": [score_file.name for score_file in score_files or []],
                    "voices": list(voice_assignments or []),
                    "phonemizers": list(phonemizer_assignments or []),
                    "bpm": explicit_bpm,
                }
            ),
        )
    if not score_files:
        return Result.fail(ErrorKind.MISSING_INPUT, "At least one score file is required.")
    if not voice_assignments:
        return Result.fail(ErrorKind.MISSING_INPUT, "At least one voice assignment is required.")
    if phonemizer_assignments is None:
        return Result.fail(ErrorKind.MISSING_INPUT, "Phonemizer assignments are required.")
    if explicit_bpm is not None and not explicit_bpm > 0:
        return Result.fail(ErrorKind.MISSING_INPUT, f"bpm must be positive, got {explicit_bpm}.")

    for score_file in score_files:
        if not is_supported(score_file.name):
            return Result.fail(
                ErrorKind.UNSUPPORTED_FORMAT,
                f"Unsupported score file type: {score_file.name}",
            )

    scores: List[ScoreData] = []
    for score_file in score_files:
        try:
            scores.append(read_score(score_file.name, score_file.data))
        except (UnsupportedScoreError, ScoreReadError) as exc:
            logger.warning("import_score_unreadable file=%s error=%s", score_file.name, exc)
            return Result.fail(ErrorKind.UNSUPPORTED_FORMAT, f"{score_file.name}: {exc}")

    first = scores[0]
    project = Project(
        name=project_name or first.title or PurePath(score_files[0].name).stem,
    )
    _apply_tempo(project, first, explicit_bpm)

    voices = list(voice_assignments)
    phonemizer_ids = list(phonemizer_assignments)
    for score in scores:
        for part_data in score.parts:
            track_no = len(project.tracks)
            track = Track(track_no=track_no, track_name=part_data.part_name)
            if track_no < len(voices) and voices[track_no]:
                track.singer = singers.resolve(voices[track_no])
            if track_no < len(phonemizer_ids):
                track.phonemizer = phonemizers.resolve(phonemizer_ids[track_no])
                if track.phonemizer is None:
                    logger.info(
                        "import_phonemizer_unknown track=%s phonemizer=%s",
                        track_no,
                        phonemizer_ids[track_no],
                    )
            project.tracks.append(track)
            project.voice_parts.append(
                _build_part(part_data.part_name, part_data.notes, track_no, score, project.resolution)
            )

    project.after_load()
    problem = project.validate()
    if problem is not None:
        return Result.fail(ErrorKind.INVALID_PROJECT, problem)
    logger.info(
        "import_completed files=%s tracks=%s notes=%s bpm=%.3f",
        len(score_files),
        len(project.tracks),
        project.note_count(),
        project.tempos[0].bpm,
    )
    return Result.ok(project)


def _apply_tempo(project: Project, score: ScoreData, explicit_bpm: Optional[float]) -> None:
    """Explicit bpm wins, then the file's tempo data, then inference."""
    if explicit_bpm is not None:
        project.set_tempo(float(explicit_bpm))
        return
    if score.tempos:
        project.tempos = [
            TempoMarker(_rescale(event.tick, score, project.resolution), event.bpm)
            for event in score.tempos
        ]
        project.normalize_tempos()
        return
    bpm = infer_bpm(score.all_notes(), score.ticks_per_quarter)
    project.set_tempo(fold_bpm(bpm))
    logger.info("import_tempo_inferred bpm=%.3f", bpm)


def _rescale(tick: int, score: ScoreData, resolution: int) -> int:
    if score.ticks_per_quarter == resolution:
        return int(tick)
    return int(round(tick * resolution / score.ticks_per_quarter))


def _build_part(name, notes, track_no: int, score: ScoreData, resolution: int) -> VoicePart:
    position = _rescale(min((note.start for note in notes), default=0), score, resolution)
    part_notes = []
    for event in notes:
        start = _rescale(event.start, score, resolution)
        end = _rescale(event.end, score, resolution)
        part_notes.append(
            Note(
                position=start - position,
                duration=max(end - start, 1),
                tone=event.pitch_midi if event.pitch_midi is not None else DEFAULT_TONE,
                lyric=event.lyric or DEFAULT_LYRIC,
            )
        )
    return VoicePart(
        name=name or f"Part {track_no + 1}",
        track_no=track_no,
        position=position,
        notes=part_notes,
    )
