"""
Mixdown of a project into a single interleaved PCM buffer.

This is a reference engine: every note is rendered as an enveloped sine tone
at its pitch. Voice synthesis engines plug in behind the same interface.
"""

from __future__ import annotations

import bisect
import logging
import math
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import numpy as np

from src.backend.logging_utils import get_logger
from src.project.models import Project, TempoMarker, Track

logger = get_logger(__name__)

NOTE_GAIN = 0.2
ENVELOPE_SECONDS = 0.01


class RenderCancelled(Exception):
    """Raised by the engine when its cancellation token is triggered."""


class CancellationToken:
    """Caller-driven cancellation flag shared with the mixdown engine."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RenderCancelled("Render was cancelled.")


class TimeAxis:
    """Tempo-aware time axis for converting ticks to seconds."""

    def __init__(self, tempos: Sequence[TempoMarker], resolution: int):
        self.resolution = resolution
        self.tempos = sorted(tempos, key=lambda t: t.position)
        if not self.tempos or self.tempos[0].position > 0:
            first_bpm = self.tempos[0].bpm if self.tempos else 120.0
            self.tempos.insert(0, TempoMarker(0, first_bpm))
        self.positions = [t.position for t in self.tempos]

        # Precompute second offsets for each tempo change
        self.offsets = [0.0]
        current = 0.0
        for i in range(len(self.tempos) - 1):
            ticks = self.tempos[i + 1].position - self.tempos[i].position
            current += self._ticks_to_seconds(ticks, self.tempos[i].bpm)
            self.offsets.append(current)

    def _ticks_to_seconds(self, ticks: float, bpm: float) -> float:
        return ticks / self.resolution * 60.0 / bpm

    def seconds_at(self, tick: int) -> float:
        idx = max(bisect.bisect_right(self.positions, tick) - 1, 0)
        tempo = self.tempos[idx]
        return self.offsets[idx] + self._ticks_to_seconds(tick - tempo.position, tempo.bpm)


@dataclass
class MixdownResult:
    samples: np.ndarray  # float32, shape (frames, channels)
    sample_rate: int

    @property
    def channels(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration_seconds(self) -> float:
        return self.samples.shape[0] / float(self.sample_rate)


def _audible_tracks(tracks: Sequence[Track]) -> List[bool]:
    any_solo = any(track.solo for track in tracks)
    return [(track.solo if any_solo else True) and not track.mute for track in tracks]


def _pan_gains(pan: float) -> tuple[float, float]:
    """Constant-power pan; `pan` ranges from -100 (left) to 100 (right)."""
    position = (max(-100.0, min(100.0, pan)) / 100.0 + 1.0) * math.pi / 4.0
    return math.cos(position), math.sin(position)


class MixdownEngine:
    def __init__(self, sample_rate: int = 44100, channels: int = 2) -> None:
        if channels not in (1, 2):
            raise ValueError(f"channels must be 1 or 2, got {channels}")
        self.sample_rate = sample_rate
        self.channels = channels

    def timeline_seconds(self, project: Project) -> float:
        axis = TimeAxis(project.tempos, project.resolution)
        return axis.seconds_at(project.end_tick)

    def render(
        self,
        project: Project,
        token: CancellationToken,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> MixdownResult:
        """Render all audible parts. Raises RenderCancelled when cancelled."""
        token.raise_if_cancelled()
        axis = TimeAxis(project.tempos, project.resolution)
        total_frames = max(1, int(round(axis.seconds_at(project.end_tick) * self.sample_rate)))
        buffer = np.zeros((total_frames, self.channels), dtype=np.float32)
        audible = _audible_tracks(project.tracks)
        total_notes = max(project.note_count(), 1)
        done = 0
        envelope_frames = max(1, int(ENVELOPE_SECONDS * self.sample_rate))

        for part in project.voice_parts:
            track = project.tracks[part.track_no]
            if not audible[part.track_no]:
                done += len(part.notes)
                continue
            gain = NOTE_GAIN * 10.0 ** (track.volume / 20.0)
            if self.channels == 2:
                left, right = _pan_gains(track.pan)
                channel_gains = np.array([left, right], dtype=np.float32) * gain
            else:
                channel_gains = np.array([gain], dtype=np.float32)
            for note in part.notes:
                token.raise_if_cancelled()
                start = int(round(axis.seconds_at(part.position + note.position) * self.sample_rate))
                end = int(round(axis.seconds_at(part.position + note.end) * self.sample_rate))
                end = min(end, total_frames)
                if end > start:
                    tone = self._tone(note.tone, end - start, envelope_frames)
                    buffer[start:end] += tone[:, None] * channel_gains[None, :]
                done += 1
                if on_progress is not None:
                    on_progress(done / total_notes)

        peak = float(np.abs(buffer).max()) if buffer.size else 0.0
        if peak > 1.0:
            buffer /= peak
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "mixdown_rendered frames=%s channels=%s peak=%.4f",
                total_frames,
                self.channels,
                peak,
            )
        return MixdownResult(samples=buffer, sample_rate=self.sample_rate)

    def _tone(self, midi: int, frames: int, envelope_frames: int) -> np.ndarray:
        freq = 440.0 * 2.0 ** ((midi - 69) / 12.0)
        t = np.arange(frames, dtype=np.float32) / self.sample_rate
        wave = np.sin(2.0 * np.pi * freq * t).astype(np.float32)
        ramp = min(envelope_frames, frames // 2)
        if ramp > 0:
            fade = np.linspace(0.0, 1.0, ramp, dtype=np.float32)
            wave[:ramp] *= fade
            wave[-ramp:] *= fade[::-1]
        return wave
