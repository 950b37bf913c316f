# pylint: disable=missing-module-docstring,missing-function-docstring

import json
import struct
from pathlib import Path

from fastapi import FastAPI
from fastapi.testclient import TestClient

from config import AppConfig, AudioFormatConfig
from protocol.audio_event import build_audio_packet
from server.app import create_app


def _app(tmp_path: Path) -> FastAPI:
    config = AppConfig(
        env="test",
        log_level="INFO",
        server_host="localhost",
        server_port=5000,
        recordings_dir=tmp_path / "recordings",
        server_url="ws://localhost:5000",
        audio_config_path=tmp_path / "audio-config.json",
        audio_format=AudioFormatConfig(),
        enable_json_logs=True,
    )
    return create_app(config)


def _audio_frame(n_samples: int) -> str:
    packet = build_audio_packet([0.25] * n_samples, sample_rate=16000, channels=1)
    return json.dumps(packet.to_dict())


def test_health(tmp_path: Path) -> None:
    with TestClient(_app(tmp_path)) as client:
        assert client.get("/health").json() == {"status": "ok"}


def test_stats_reflect_lifespan(tmp_path: Path) -> None:
    app = _app(tmp_path)

    with TestClient(app) as client:
        stats = client.get("/stats").json()
        assert stats["status"] == "RUNNING"
        assert stats["address"] == "ws://localhost:5000"
        assert stats["recording"]["is_recording"] is False

    assert app.state.server_session.is_running is False


def test_stream_and_record_over_websocket(tmp_path: Path) -> None:
    with TestClient(_app(tmp_path)) as client:
        started = client.post("/recording/start")
        assert started.status_code == 200
        file_path = Path(started.json()["file_path"])

        with client.websocket_connect("/") as ws:
            welcome = ws.receive_json()
            assert welcome["type"] == "welcome"
            assert welcome["clientId"] == 1

            ws.send_text("garbage that is not json")
            ws.send_text(_audio_frame(100))
            ws.send_bytes(b"\x00\x01")
            ws.send_text(_audio_frame(60))

        stats = client.get("/stats").json()
        assert stats["total_packets"] == 2
        assert stats["connected_clients"] == 0
        assert stats["recording"]["packets_written"] == 2

        stopped = client.post("/recording/stop")
        assert stopped.status_code == 200
        body = stopped.json()
        assert body["stopped"] is True
        assert body["bytes_written"] == 320

    data = file_path.read_bytes()
    assert len(data) == 44 + 320
    assert struct.unpack_from("<I", data, 4)[0] == 36 + 320
    assert struct.unpack_from("<I", data, 40)[0] == 320


def test_recording_conflicts_return_409(tmp_path: Path) -> None:
    with TestClient(_app(tmp_path)) as client:
        assert client.post("/recording/stop").status_code == 409

        assert client.post("/recording/start").status_code == 200
        second = client.post("/recording/start")
        assert second.status_code == 409
        assert second.json()["started"] is False
        assert second.json()["is_recording"] is True

        assert client.get("/recording").json()["is_recording"] is True
        assert client.post("/recording/stop").status_code == 200
        assert client.get("/recording").json()["is_recording"] is False


def test_shutdown_finalizes_active_recording(tmp_path: Path) -> None:
    with TestClient(_app(tmp_path)) as client:
        file_path = Path(client.post("/recording/start").json()["file_path"])
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text(_audio_frame(50))

    data = file_path.read_bytes()
    assert struct.unpack_from("<I", data, 40)[0] == 100
    assert struct.unpack_from("<I", data, 4)[0] == 136
