# backend/audio/wav.py
"""
Canonical 44-byte WAV (RIFF / PCM) header helpers.

Layout (all integers little-endian):

    0   "RIFF"
    4   u32  riff_size  = 36 + data_size
    8   "WAVE"
    12  "fmt "
    16  u32  16              (fmt chunk size)
    20  u16  1               (PCM)
    22  u16  channels
    24  u32  sample_rate
    28  u32  byte_rate      = sample_rate * channels * bit_depth / 8
    32  u16  block_align    = channels * bit_depth / 8
    34  u16  bit_depth
    36  "data"
    40  u32  data_size

Streaming writers don't know data_size up front: they write a header with
data_size = 0 and rewrite it (offsets 4 and 40 change) once every byte
is on disk.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from constants import (
    WAV_FMT_CHUNK_BYTES,
    WAV_FORMAT_PCM,
    WAV_HEADER_BYTES,
    WAV_RIFF_SIZE_OVERHEAD,
)

_HEADER_STRUCT = struct.Struct("<4sI4s4sIHHIIHH4sI")


class WavHeaderError(ValueError):
    """Raised when a buffer is too short or not a RIFF/WAVE header."""


@dataclass(frozen=True)
class WavHeaderInfo:
    """Decoded view of a canonical header."""
    riff_size: int
    channels: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bit_depth: int
    data_size: int


def build_wav_header(
    *,
    sample_rate: int,
    channels: int,
    bit_depth: int,
    data_size: int = 0,
) -> bytes:
    """Build a 44-byte PCM WAV header."""
    bytes_per_sample = bit_depth // 8
    byte_rate = sample_rate * channels * bytes_per_sample
    block_align = channels * bytes_per_sample

    return _HEADER_STRUCT.pack(
        b"RIFF",
        WAV_RIFF_SIZE_OVERHEAD + data_size,
        b"WAVE",
        b"fmt ",
        WAV_FMT_CHUNK_BYTES,
        WAV_FORMAT_PCM,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bit_depth,
        b"data",
        data_size,
    )


def parse_wav_header(buf: bytes) -> WavHeaderInfo:
    """
    Decode the first 44 bytes of a canonical WAV file.

    Raises:
        WavHeaderError if the buffer is short or the magic tags are wrong.
    """
    if len(buf) < WAV_HEADER_BYTES:
        raise WavHeaderError(f"WAV header needs {WAV_HEADER_BYTES} bytes, got {len(buf)}")

    (riff, riff_size, wave, fmt, _fmt_size, _audio_format, channels,
     sample_rate, byte_rate, block_align, bit_depth, data, data_size) = (
        _HEADER_STRUCT.unpack_from(buf, 0)
    )

    if riff != b"RIFF" or wave != b"WAVE" or fmt != b"fmt " or data != b"data":
        raise WavHeaderError("Not a canonical RIFF/WAVE header")

    return WavHeaderInfo(
        riff_size=riff_size,
        channels=channels,
        sample_rate=sample_rate,
        byte_rate=byte_rate,
        block_align=block_align,
        bit_depth=bit_depth,
        data_size=data_size,
    )
