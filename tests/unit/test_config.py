# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from pathlib import Path

import pytest

from config import AppConfig, AudioFormatConfig


def test_missing_audio_config_uses_defaults(tmp_path: Path) -> None:
    fmt = AudioFormatConfig.load(tmp_path / "nope.json")

    assert fmt == AudioFormatConfig(sample_rate=16000, channels=1, bit_depth=16)


def test_audio_config_is_read_from_json(tmp_path: Path) -> None:
    path = tmp_path / "audio-config.json"
    path.write_text(json.dumps({"sampleRate": 48000, "channels": 2, "bitDepth": 16}))

    fmt = AudioFormatConfig.load(path)

    assert fmt.to_dict() == {"sampleRate": 48000, "channels": 2, "bitDepth": 16}


@pytest.mark.parametrize(
    "content",
    ["{not json", "[1, 2]", json.dumps({"bitDepth": 24}), json.dumps({"sampleRate": "fast"})],
)
def test_invalid_audio_config_raises(tmp_path: Path, content: str) -> None:
    path = tmp_path / "audio-config.json"
    path.write_text(content)

    with pytest.raises(ValueError):
        AudioFormatConfig.load(path)


def test_app_config_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SERVER_HOST", "127.0.0.1")
    monkeypatch.setenv("SERVER_PORT", "6001")
    monkeypatch.setenv("RECORDINGS_DIR", str(tmp_path / "rec"))
    monkeypatch.setenv("AUDIO_CONFIG_PATH", str(tmp_path / "missing.json"))
    monkeypatch.delenv("SERVER_URL", raising=False)

    config = AppConfig.load_from_env()

    assert config.server_port == 6001
    assert config.server_url == "ws://127.0.0.1:6001"
    assert config.recordings_dir == tmp_path / "rec"
    assert config.audio_format.sample_rate == 16000


def test_app_config_rejects_bad_port(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SERVER_PORT", "five thousand")

    with pytest.raises(ValueError):
        AppConfig.load_from_env()
