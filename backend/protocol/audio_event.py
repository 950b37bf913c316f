# backend/protocol/audio_event.py
"""
Audio event framing for the text websocket transport.

Wire shape (one JSON object per text frame):

    {
        "headers": {
            ":message-type": "event",
            ":event-type": "AudioEvent",
            ":content-type": "audio/pcm;rate=16000;channels=1"
        },
        "payload": "<base64 of PCM16 little-endian samples>"
    }

Client side builds packets with build_audio_packet().
Server side decodes them with decode_audio_message(), which never raises:
anything that is not a usable audio event is logged and returns None.

Usage example:

    packet = build_audio_packet(float_block, sample_rate=16000, channels=1)
    ws_send(json.dumps(packet.to_dict()))

    decoded = decode_audio_message(text, defaults=audio_format)
    if decoded is not None:
        recorder.write_packet(decoded)
"""

from __future__ import annotations

import base64
import binascii
import json
import re
import time
from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np

from audio.pcm import float_to_pcm16, pcm16le_to_samples
from config import AudioFormatConfig
from constants import (
    AUDIO_CONTENT_TYPE_PREFIX,
    AUDIO_EVENT_TYPE,
    AUDIO_MESSAGE_TYPE,
    DEFAULT_BIT_DEPTH,
    HEADER_CONTENT_TYPE,
    HEADER_EVENT_TYPE,
    HEADER_MESSAGE_TYPE,
)
from observability.logger import log_event

_RATE_RE = re.compile(r"rate=(\d+)")
_CHANNELS_RE = re.compile(r"channels=(\d+)")


# -------------------------
# Exceptions
# -------------------------

class AudioEventError(Exception):
    """Base class for audio event framing errors."""


class InvalidAudioEvent(AudioEventError):
    """
    Raised by the strict parsing helpers when a record claims to be an
    audio event but cannot be turned into samples (missing or undecodable
    payload). decode_audio_message() converts these into a logged None.
    """


# -------------------------
# Packet (client -> server)
# -------------------------

@dataclass(frozen=True)
class AudioPacket:
    """
    One captured buffer, ready for the transport.

    content_type:
        "audio/pcm;rate=<sample_rate>;channels=<channels>"

    payload:
        base64 of little-endian signed 16-bit PCM.
    """
    content_type: str
    payload: str

    def to_dict(self) -> dict[str, Any]:
        """Wire representation."""
        return {
            "headers": {
                HEADER_MESSAGE_TYPE: AUDIO_MESSAGE_TYPE,
                HEADER_EVENT_TYPE: AUDIO_EVENT_TYPE,
                HEADER_CONTENT_TYPE: self.content_type,
            },
            "payload": self.payload,
        }


def format_content_type(sample_rate: int, channels: int) -> str:
    return f"{AUDIO_CONTENT_TYPE_PREFIX};rate={sample_rate};channels={channels}"


def build_audio_packet(
    samples: Sequence[float] | np.ndarray,
    *,
    sample_rate: int,
    channels: int,
) -> AudioPacket:
    """
    Frame a block of float samples in [-1.0, 1.0] as an AudioPacket.

    Out-of-range input is clamped before quantization.
    """
    pcm = float_to_pcm16(samples)
    return AudioPacket(
        content_type=format_content_type(sample_rate, channels),
        payload=base64.b64encode(pcm.tobytes()).decode("ascii"),
    )


# -------------------------
# Decoded audio (server side)
# -------------------------

@dataclass(frozen=True)
class DecodedAudio:
    """
    Samples recovered from one audio event.

    samples:
        int16 array, interleaved when channels > 1.

    received_at:
        Wall-clock seconds when the frame was decoded (observability only).
    """
    samples: np.ndarray
    sample_rate: int
    channels: int
    bit_depth: int = DEFAULT_BIT_DEPTH
    received_at: float = 0.0

    @property
    def byte_length(self) -> int:
        """Size of the samples once serialized as PCM16."""
        return int(self.samples.size) * 2


def parse_content_type(
    content_type: str | None,
    *,
    defaults: AudioFormatConfig,
) -> tuple[int, int]:
    """
    Extract (sample_rate, channels) from an "audio/pcm;rate=N;channels=M"
    descriptor. Absent or non-positive values fall back to defaults.
    """
    sample_rate = defaults.sample_rate
    channels = defaults.channels

    if not isinstance(content_type, str):
        return sample_rate, channels

    rate_match = _RATE_RE.search(content_type)
    if rate_match and int(rate_match.group(1)) > 0:
        sample_rate = int(rate_match.group(1))

    channels_match = _CHANNELS_RE.search(content_type)
    if channels_match and int(channels_match.group(1)) > 0:
        channels = int(channels_match.group(1))

    return sample_rate, channels


def is_audio_event(record: Any) -> bool:
    """True if a parsed JSON record follows the audio event convention."""
    if not isinstance(record, dict):
        return False
    headers = record.get("headers")
    if not isinstance(headers, dict):
        return False
    return headers.get(HEADER_EVENT_TYPE) == AUDIO_EVENT_TYPE


def decode_payload(payload: Any) -> np.ndarray:
    """
    Decode a base64 PCM16 payload into int16 samples.

    Raises:
        InvalidAudioEvent if the payload is missing or not valid base64.
    """
    if not isinstance(payload, str) or not payload:
        raise InvalidAudioEvent("Audio event has no payload")

    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidAudioEvent(f"Payload is not valid base64: {e}") from e

    return pcm16le_to_samples(raw)


def decode_audio_message(
    raw_message: str | bytes,
    *,
    defaults: AudioFormatConfig,
    received_at: float | None = None,
) -> DecodedAudio | None:
    """
    Decode one inbound text frame.

    Returns None (after logging a diagnostic) when the frame is not JSON,
    is not an audio event, or carries no usable payload. Never raises.
    """
    try:
        record = json.loads(raw_message)
    # JSONDecodeError and UnicodeDecodeError are ValueErrors; deep nesting
    # surfaces as RecursionError
    except (ValueError, RecursionError) as e:
        preview = raw_message[:100] if isinstance(raw_message, str) else repr(raw_message[:100])
        log_event({
            "event_type": "NON_JSON_MESSAGE",
            "error": str(e),
            "payload_preview": preview,
        })
        return None

    if not is_audio_event(record):
        log_event({
            "event_type": "NON_AUDIO_MESSAGE",
            "message_type": type(record).__name__,
            "keys": sorted(record.keys())[:10] if isinstance(record, dict) else None,
        })
        return None

    headers = record["headers"]
    sample_rate, channels = parse_content_type(
        headers.get(HEADER_CONTENT_TYPE), defaults=defaults
    )

    try:
        samples = decode_payload(record.get("payload"))
    except InvalidAudioEvent as e:
        log_event({
            "event_type": "AUDIO_EVENT_DECODE_ERROR",
            "error": str(e),
        })
        return None

    return DecodedAudio(
        samples=samples,
        sample_rate=sample_rate,
        channels=channels,
        bit_depth=DEFAULT_BIT_DEPTH,
        received_at=time.time() if received_at is None else received_at,
    )
