# pylint: disable=missing-module-docstring,missing-function-docstring

import struct

import pytest

from audio.wav import WavHeaderError, build_wav_header, parse_wav_header


def test_placeholder_header_layout() -> None:
    header = build_wav_header(sample_rate=16000, channels=1, bit_depth=16)

    assert len(header) == 44
    assert header[0:4] == b"RIFF"
    assert header[8:16] == b"WAVEfmt "
    assert header[36:40] == b"data"
    assert struct.unpack_from("<I", header, 4)[0] == 36
    assert struct.unpack_from("<I", header, 40)[0] == 0


def test_header_fields_round_trip() -> None:
    header = build_wav_header(sample_rate=48000, channels=2, bit_depth=16, data_size=1000)

    info = parse_wav_header(header)

    assert info.riff_size == 1036
    assert info.data_size == 1000
    assert info.sample_rate == 48000
    assert info.channels == 2
    assert info.bit_depth == 16
    assert info.byte_rate == 48000 * 2 * 2
    assert info.block_align == 4


def test_parse_rejects_short_buffer() -> None:
    with pytest.raises(WavHeaderError):
        parse_wav_header(b"RIFF")


def test_parse_rejects_wrong_magic() -> None:
    header = bytearray(build_wav_header(sample_rate=16000, channels=1, bit_depth=16))
    header[0:4] = b"RIFX"

    with pytest.raises(WavHeaderError):
        parse_wav_header(bytes(header))
