"""PCM conversion utilities."""
from __future__ import annotations

from typing import Sequence

import numpy as np

from constants import (
    PCM16_MAX,
    PCM16_MIN,
    PCM16_NEGATIVE_SCALE,
    PCM16_POSITIVE_SCALE,
)


def float_to_pcm16(samples: Sequence[float] | np.ndarray) -> np.ndarray:
    """
    Convert float samples to signed 16-bit PCM.

    - Clamp to [-1.0, 1.0]
    - Negative side scaled by 32768, positive side by 32767
    - Truncate toward zero (so -1.0 -> -32768 and 1.0 -> 32767 exactly)
    """
    audio_f64 = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(
        audio_f64 < 0,
        audio_f64 * PCM16_NEGATIVE_SCALE,
        audio_f64 * PCM16_POSITIVE_SCALE,
    )
    return np.trunc(scaled).astype("<i2")


def pcm16le_to_samples(pcm_bytes: bytes) -> np.ndarray:
    """
    Reinterpret PCM16 little-endian bytes as int16 samples.

    A single trailing byte (odd length) is dropped.
    """
    if len(pcm_bytes) % 2 != 0:
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    return np.frombuffer(pcm_bytes, dtype="<i2").astype(np.int16)


def samples_to_pcm16le(samples: Sequence[int] | np.ndarray) -> bytes:
    """
    Serialize integer samples as PCM16 little-endian bytes.

    Values outside the signed 16-bit range are clamped, not wrapped.
    """
    wide = np.asarray(samples, dtype=np.int64)
    return np.clip(wide, PCM16_MIN, PCM16_MAX).astype("<i2").tobytes()
