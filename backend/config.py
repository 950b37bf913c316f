"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Load the static audio format record (audio-config.json)
- Provide typed, immutable config objects

Non-responsibilities:
- No protocol constants
- No runtime mutation
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from constants import (
    DEFAULT_BIT_DEPTH,
    DEFAULT_CHANNELS,
    DEFAULT_SAMPLE_RATE_HZ,
)


@dataclass(frozen=True)
class AudioFormatConfig:
    """
    Static audio format shared by the capture side and the recorder.

    The capture side requests this format from the microphone; the recorder
    uses it for the placeholder WAV header.
    """

    sample_rate: int = DEFAULT_SAMPLE_RATE_HZ
    channels: int = DEFAULT_CHANNELS
    bit_depth: int = DEFAULT_BIT_DEPTH

    @staticmethod
    def load(path: str | Path) -> AudioFormatConfig:
        """
        Load the format from a JSON file shaped like
        {"sampleRate": 16000, "channels": 1, "bitDepth": 16}.

        A missing file yields the defaults. Missing keys fall back to defaults.

        Raises:
            ValueError if the file exists but is not a valid format record.
        """
        config_path = Path(path)
        if not config_path.exists():
            return AudioFormatConfig()

        try:
            raw = json.loads(config_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid audio config {config_path}: {e}") from e

        if not isinstance(raw, dict):
            raise ValueError(f"Audio config {config_path} must be a JSON object")

        try:
            fmt = AudioFormatConfig(
                sample_rate=int(raw.get("sampleRate", DEFAULT_SAMPLE_RATE_HZ)),
                channels=int(raw.get("channels", DEFAULT_CHANNELS)),
                bit_depth=int(raw.get("bitDepth", DEFAULT_BIT_DEPTH)),
            )
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid audio config {config_path}: {e}") from e

        if fmt.sample_rate <= 0 or fmt.channels <= 0 or fmt.bit_depth != 16:
            raise ValueError(
                f"Unsupported audio format in {config_path}: "
                f"{fmt.sample_rate}Hz {fmt.channels}ch {fmt.bit_depth}bit"
            )
        return fmt

    def to_dict(self) -> dict[str, int]:
        """Wire/JSON representation (camelCase, like the config file)."""
        return {
            "sampleRate": self.sample_rate,
            "channels": self.channels,
            "bitDepth": self.bit_depth,
        }


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the app factory, console, and client wiring.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    server_host: str
    server_port: int
    recordings_dir: Path

    # ------------------------------------------------------------------
    # Client
    # ------------------------------------------------------------------

    server_url: str

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    audio_config_path: Path
    audio_format: AudioFormatConfig

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if SERVER_PORT is not an integer or the audio config
            file is malformed.
        """
        host = os.environ.get("SERVER_HOST", "localhost")
        port = int(os.environ.get("SERVER_PORT", "5000"))
        audio_config_path = Path(os.environ.get("AUDIO_CONFIG_PATH", "audio-config.json"))

        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            server_host=host,
            server_port=port,
            recordings_dir=Path(os.environ.get("RECORDINGS_DIR", "recordings")),

            server_url=os.environ.get("SERVER_URL", f"ws://{host}:{port}"),

            audio_config_path=audio_config_path,
            audio_format=AudioFormatConfig.load(audio_config_path),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",
        )
