"""
BEHAVIOR-AS-CONSTANTS
---------------------
Single source of truth for protocol and behavioral constants.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Deployment-specific values (host, port, paths) live in config.py instead.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Default audio format (used when audio-config.json is absent)
# =============================================================================

DEFAULT_SAMPLE_RATE_HZ: Final[int] = 16_000
DEFAULT_CHANNELS: Final[int] = 1
DEFAULT_BIT_DEPTH: Final[int] = 16

PCM16_BYTES_PER_SAMPLE: Final[int] = 2
PCM16_MIN: Final[int] = -32768
PCM16_MAX: Final[int] = 32767

# Float -> PCM16 scale factors (two's-complement range is asymmetric)
PCM16_NEGATIVE_SCALE: Final[float] = 32768.0
PCM16_POSITIVE_SCALE: Final[float] = 32767.0

# =============================================================================
# Capture
# =============================================================================

CAPTURE_BUFFER_FRAMES: Final[int] = 4096

# Upper bound on how long stop_capture() waits for the block in flight
CAPTURE_STOP_JOIN_TIMEOUT_S: Final[float] = 1.0

# =============================================================================
# Audio event wire format
# =============================================================================

AUDIO_MESSAGE_TYPE: Final[str] = "event"
AUDIO_EVENT_TYPE: Final[str] = "AudioEvent"
AUDIO_CONTENT_TYPE_PREFIX: Final[str] = "audio/pcm"

HEADER_MESSAGE_TYPE: Final[str] = ":message-type"
HEADER_EVENT_TYPE: Final[str] = ":event-type"
HEADER_CONTENT_TYPE: Final[str] = ":content-type"

# =============================================================================
# WAV container
# =============================================================================

WAV_HEADER_BYTES: Final[int] = 44
WAV_RIFF_SIZE_OFFSET: Final[int] = 4
WAV_DATA_SIZE_OFFSET: Final[int] = 40
# RIFF chunk size = data size + everything after the RIFF size field
WAV_RIFF_SIZE_OVERHEAD: Final[int] = 36
WAV_FMT_CHUNK_BYTES: Final[int] = 16
WAV_FORMAT_PCM: Final[int] = 1

RECORDING_FILE_PREFIX: Final[str] = "recording-"
RECORDING_FILE_SUFFIX: Final[str] = ".wav"

# Queued-but-unwritten bytes above which write_packet() reports saturation
RECORDER_HIGH_WATER_MARK_BYTES: Final[int] = 16 * 1024

# =============================================================================
# Connection resilience
# =============================================================================

WS_NORMAL_CLOSURE: Final[int] = 1000
WS_ABNORMAL_CLOSURE: Final[int] = 1006

CLIENT_MAX_RETRIES: Final[int] = 4
CLIENT_RETRY_BASE_DELAY_MS: Final[int] = 1_000
CLIENT_RETRY_MAX_DELAY_MS: Final[int] = 10_000
CLIENT_OPEN_TIMEOUT_S: Final[float] = 10.0

# =============================================================================
# Server lifecycle
# =============================================================================

SERVER_RESTART_DELAY_S: Final[float] = 0.5
SERVER_SHUTDOWN_CLOSE_REASON: Final[str] = "Server shutting down"
CLIENT_DISCONNECT_CLOSE_REASON: Final[str] = "Manual disconnect"

# =============================================================================
# Helper Functions
# =============================================================================

def retry_delay_ms(retry_count: int) -> int:
    """
    Backoff delay before reconnect attempt number `retry_count` (1-based).

    delay = min(base * 2^(n-1), max) -> 1000, 2000, 4000, 8000 for n = 1..4.
    Non-positive input is treated as the first retry.
    """
    exponent = max(retry_count, 1) - 1
    return min(CLIENT_RETRY_BASE_DELAY_MS * (2 ** exponent), CLIENT_RETRY_MAX_DELAY_MS)
