"""
16-bit PCM wave output for rendered mixdowns.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Union

import numpy as np
import soundfile as sf

from src.backend.logging_utils import get_logger, summarize_payload

logger = get_logger(__name__)


def write_pcm16(
    samples: Union[List[float], np.ndarray],
    output_path: Union[str, Path],
    *,
    sample_rate: int = 44100,
) -> Dict[str, Any]:
    """
    Write interleaved float samples as a 16-bit PCM WAV file.

    Args:
        samples: Values in [-1, 1], shape (frames,) or (frames, channels)
        output_path: Destination; written as WAV whatever its suffix
        sample_rate: Frames per second

    Returns:
        Dict with path (absolute), duration_seconds, sample_rate, channels.
        The parent directory must already exist.
    """
    buffer = np.array(samples, dtype=np.float32)
    if buffer.ndim == 1:
        buffer = buffer.reshape(-1, 1)
    if buffer.ndim != 2 or buffer.shape[0] == 0:
        raise ValueError(f"Expected a non-empty (frames, channels) buffer, got shape {buffer.shape}")
    if sample_rate <= 0:
        raise ValueError(f"sample_rate must be positive, got {sample_rate}")
    path = Path(output_path)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "write_pcm16 input=%s",
            summarize_payload({"samples": buffer, "output_path": path, "sample_rate": sample_rate}),
        )

    # Out-of-range values would wrap around when quantized.
    np.clip(buffer, -1.0, 1.0, out=buffer)
    sf.write(str(path), buffer, sample_rate, subtype="PCM_16", format="WAV")

    frames, channels = buffer.shape
    result = {
        "path": str(path.resolve()),
        "duration_seconds": frames / float(sample_rate),
        "sample_rate": sample_rate,
        "channels": int(channels),
    }
    logger.info(
        "pcm_written path=%s frames=%s channels=%s sample_rate=%s",
        result["path"],
        frames,
        channels,
        sample_rate,
    )
    return result
