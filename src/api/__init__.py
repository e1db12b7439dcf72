"""
Project core API

Score import, tempo inference, mixdown and audio output.
"""

from src.api.errors import CoreError, ErrorKind, Result
from src.api.tempo import infer_bpm
from src.api.importer import ScoreFile, import_scores
from src.api.singers import SingerLibrary
from src.api.mixdown import CancellationToken, MixdownEngine, MixdownResult, RenderCancelled
from src.api.audio import write_pcm16

__all__ = [
    # Errors
    "CoreError",
    "ErrorKind",
    "Result",
    # Import
    "ScoreFile",
    "import_scores",
    "infer_bpm",
    "SingerLibrary",
    # Render
    "CancellationToken",
    "MixdownEngine",
    "MixdownResult",
    "RenderCancelled",
    # Output
    "write_pcm16",
]
