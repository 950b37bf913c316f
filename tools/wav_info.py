"""Print the header of a recording and check its size fields against the file."""

import sys
import wave
from pathlib import Path

from audio.wav import parse_wav_header
from constants import WAV_HEADER_BYTES, WAV_RIFF_SIZE_OVERHEAD


def describe(path: Path) -> int:
    raw = path.read_bytes()
    info = parse_wav_header(raw)
    payload = len(raw) - WAV_HEADER_BYTES

    print(f"file: {path}")
    print("sample_rate:", info.sample_rate)
    print("channels:", info.channels)
    print("bit_depth:", info.bit_depth)
    print("data_size:", info.data_size, f"(file holds {payload})")
    print("riff_size:", info.riff_size, f"(expected {payload + WAV_RIFF_SIZE_OVERHEAD})")

    with wave.open(str(path), "rb") as wf:
        seconds = wf.getnframes() / wf.getframerate()
    print(f"duration_s: {seconds:.2f}")

    return 0 if info.data_size == payload else 1


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("usage: python tools/wav_info.py recordings/recording-....wav")
        raise SystemExit(2)
    raise SystemExit(describe(Path(sys.argv[1])))
