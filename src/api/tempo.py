"""
Tempo inference from note timing.

Used when an imported score carries no tempo metadata. The estimate comes
from the dominant periodicity of a note-occupancy signal.
"""

import logging
import math
from collections import Counter
from typing import Iterable, List, Protocol, Sequence, Tuple

import numpy as np

from src.backend.logging_utils import get_logger

logger = get_logger(__name__)

DEFAULT_BPM = 120.0
MIN_BPM = 30.0
MAX_BPM = 300.0
SAMPLE_STEP_TICKS = 10
PEAK_NEIGHBORHOOD = 2
# Standard MIDI default tempo: one quarter note lasts half a second.
MICROSECONDS_PER_QUARTER = 500_000
BEATS_PER_BAR = 4


class TimedNote(Protocol):
    start: int
    duration: int


def infer_bpm(notes: Iterable[TimedNote], ticks_per_quarter: int) -> float:
    """
    Estimate a tempo for a sequence of notes.

    Args:
        notes: Note events exposing `start` and `duration` in ticks
        ticks_per_quarter: Tick resolution of the source (must be positive)

    Returns:
        Beats per minute, within [MIN_BPM, MAX_BPM], or DEFAULT_BPM when
        there is nothing to analyze.
    """
    if ticks_per_quarter <= 0:
        raise ValueError(f"ticks_per_quarter must be positive: {ticks_per_quarter}")
    spans = [(int(note.start), int(note.duration)) for note in notes]
    if not spans:
        return DEFAULT_BPM
    signal, total_span = build_occupancy_signal(spans, step=SAMPLE_STEP_TICKS)
    if total_span <= 0:
        return DEFAULT_BPM
    autocorr = autocorrelate(signal)
    peaks = find_peaks(autocorr, neighborhood=PEAK_NEIGHBORHOOD)
    intervals = np.diff(np.asarray(peaks, dtype=np.int64))
    microseconds_per_tick = MICROSECONDS_PER_QUARTER / ticks_per_quarter

    if intervals.size > 0:
        interval = Counter(intervals.tolist()).most_common(1)[0][0]
        period_us = interval * SAMPLE_STEP_TICKS * microseconds_per_tick
        bpm = 60_000_000 / period_us
        source = "autocorrelation"
    else:
        beats = total_span / (ticks_per_quarter * BEATS_PER_BAR)
        seconds = total_span * microseconds_per_tick * 1e-6
        bpm = beats * 60 / seconds
        interval = None
        source = "duration_fallback"

    folded = fold_bpm(bpm)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "tempo_inferred source=%s notes=%s span=%s peaks=%s interval=%s raw_bpm=%.4f bpm=%.4f",
            source,
            len(spans),
            total_span,
            len(peaks),
            interval,
            bpm,
            folded,
        )
    return folded


def build_occupancy_signal(
    spans: Sequence[Tuple[int, int]], *, step: int = SAMPLE_STEP_TICKS
) -> Tuple[np.ndarray, int]:
    """Sample note coverage into a 0/1 signal.

    Sample `i` covers ticks [origin + i*step, origin + (i+1)*step), where the
    origin is the earliest note start. A sample is 1 when any note overlaps it.
    Returns the signal and the total span in ticks.
    """
    origin = min(start for start, _ in spans)
    end = max(start + max(duration, 0) for start, duration in spans)
    total_span = end - origin
    length = math.ceil(total_span / step) + 1
    signal = np.zeros(length, dtype=np.int64)
    for start, duration in spans:
        rel_start = start - origin
        rel_end = rel_start + max(duration, 0)
        first = rel_start // step
        last = max(first, math.ceil(rel_end / step) - 1)
        signal[first : last + 1] = 1
    return signal, total_span


def autocorrelate(signal: np.ndarray) -> np.ndarray:
    """Unnormalized autocorrelation for lags 0 .. len(signal) // 2."""
    full = np.correlate(signal, signal, mode="full")
    center = len(signal) - 1
    return full[center : center + len(signal) // 2 + 1]


def find_peaks(values: np.ndarray, *, neighborhood: int = PEAK_NEIGHBORHOOD) -> List[int]:
    """Indices of local maxima.

    Lag 0 is always the first peak. Any other index is a peak when it
    strictly exceeds every value within `neighborhood` samples on each side;
    indices too close to the end to have a full neighborhood are skipped.
    """
    if values.size == 0:
        return []
    peaks = [0]
    for i in range(max(neighborhood, 1), values.size - neighborhood):
        center = values[i]
        window = np.concatenate(
            (values[i - neighborhood : i], values[i + 1 : i + 1 + neighborhood])
        )
        if np.all(center > window):
            peaks.append(i)
    return peaks


def fold_bpm(bpm: float) -> float:
    """Double or halve until the tempo lies within [MIN_BPM, MAX_BPM]."""
    if not math.isfinite(bpm) or bpm <= 0:
        return DEFAULT_BPM
    while bpm < MIN_BPM:
        bpm *= 2.0
    while bpm > MAX_BPM:
        bpm /= 2.0
    return float(bpm)
