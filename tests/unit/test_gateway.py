# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
from pathlib import Path
from typing import Any

import numpy as np
import pytest

import session.gateway as gateway_mod
from audio.recorder import StreamingWavRecorder
from config import AudioFormatConfig
from protocol.audio_event import build_audio_packet
from session.gateway import ConnectionGateway
from session.server_session import ServerSession

FORMAT = AudioFormatConfig()


@pytest.fixture
def emitted(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = []
    monkeypatch.setattr(gateway_mod, "log_event", events.append)
    return events


def _gateway(tmp_path: Path) -> tuple[ConnectionGateway, ServerSession, StreamingWavRecorder]:
    server = ServerSession(host="localhost", port=5000)
    recorder = StreamingWavRecorder(audio_format=FORMAT, recordings_dir=tmp_path)
    gw = ConnectionGateway(server_session=server, recorder=recorder, audio_format=FORMAT)
    return gw, server, recorder


def _audio_frame(samples: list[float]) -> str:
    return json.dumps(build_audio_packet(samples, sample_rate=16000, channels=1).to_dict())


def test_connect_registers_client_and_welcomes(tmp_path: Path, emitted: list[dict[str, Any]]) -> None:
    gw, server, _ = _gateway(tmp_path)

    result = gw.on_ws_connect("127.0.0.1:5555")

    assert result.outbound_json == ({
        "type": "welcome",
        "message": "Connected to audio streaming server",
        "clientId": 1,
    },)
    assert list(server.clients) == [1]
    assert emitted[0]["event_type"] == "CLIENT_CONNECTED"
    assert emitted[0]["remote"] == "127.0.0.1:5555"


def test_audio_frames_update_stats_and_preview(tmp_path: Path, emitted: list[dict[str, Any]]) -> None:
    gw, server, _ = _gateway(tmp_path)
    gw.on_ws_connect()

    async def scenario() -> None:
        for _ in range(4):
            await gw.on_text_message(_audio_frame([0.0, 0.5, -0.5]))

    asyncio.run(scenario())

    received = [e for e in emitted if e["event_type"] == "AUDIO_PACKET_RECEIVED"]
    assert [e["packet_num"] for e in received] == [1, 2, 3, 4]
    assert received[0]["first_samples"] == [0, 16383, -16384]
    assert "first_samples" not in received[3]
    assert (server.total_packets, server.total_bytes) == (4, 24)


def test_non_audio_frames_are_dropped_without_counting(tmp_path: Path, emitted: list[dict[str, Any]]) -> None:
    gw, server, _ = _gateway(tmp_path)
    gw.on_ws_connect()

    async def scenario() -> None:
        await gw.on_text_message("not json")
        await gw.on_text_message(json.dumps({"type": "ping"}))

    asyncio.run(scenario())

    assert server.total_packets == 0
    assert gw.client is not None


def test_disconnect_unregisters_and_logs_totals(tmp_path: Path, emitted: list[dict[str, Any]]) -> None:
    gw, server, _ = _gateway(tmp_path)
    gw.on_ws_connect()

    asyncio.run(gw.on_text_message(_audio_frame([0.1] * 10)))
    gw.on_ws_disconnect(code=1000, reason="bye")
    gw.on_ws_disconnect(code=1000, reason="again")

    assert not server.clients
    disconnected = [e for e in emitted if e["event_type"] == "CLIENT_DISCONNECTED"]
    assert len(disconnected) == 1
    assert disconnected[0]["total_packets"] == 1
    assert disconnected[0]["total_bytes"] == 20
    assert emitted[-1]["event_type"] == "WS_DISCONNECT_WITHOUT_CLIENT"


def test_packets_reach_active_recorder(tmp_path: Path, emitted: list[dict[str, Any]]) -> None:
    gw, _, recorder = _gateway(tmp_path)
    gw.on_ws_connect()

    async def scenario() -> int:
        recorder.start()
        await gw.on_text_message(_audio_frame([0.2] * 16))
        summary = await recorder.stop()
        assert summary is not None
        return summary.bytes_written

    assert asyncio.run(scenario()) == 32


def test_two_connections_share_one_recording(tmp_path: Path, emitted: list[dict[str, Any]]) -> None:
    server = ServerSession(host="localhost", port=5000)
    recorder = StreamingWavRecorder(
        audio_format=FORMAT,
        recordings_dir=tmp_path,
        high_water_mark_bytes=48,
    )
    gateways = [
        ConnectionGateway(server_session=server, recorder=recorder, audio_format=FORMAT)
        for _ in range(2)
    ]
    for gw in gateways:
        gw.on_ws_connect()

    async def stream(gw: ConnectionGateway, value: float) -> None:
        for _ in range(5):
            await gw.on_text_message(_audio_frame([value] * 8))

    async def scenario() -> tuple[Path, int]:
        path = recorder.start()
        assert path is not None
        await asyncio.gather(stream(gateways[0], 0.25), stream(gateways[1], -0.25))
        summary = await recorder.stop()
        assert summary is not None
        return path, summary.packets_written

    path, packets = asyncio.run(scenario())

    assert packets == 10
    assert server.total_packets == 10
    data = path.read_bytes()
    assert len(data) == 44 + 10 * 16
    samples = np.frombuffer(data[44:], dtype="<i2").reshape(10, 8)
    # Packets from both clients arrive whole, never interleaved mid-packet
    for row in samples:
        assert len(set(row.tolist())) == 1
    assert sorted({int(row[0]) for row in samples}) == [-8192, 8191]


def test_binary_frames_are_ignored(tmp_path: Path, emitted: list[dict[str, Any]]) -> None:
    gw, server, _ = _gateway(tmp_path)
    gw.on_ws_connect()

    result = gw.on_binary_message(b"\x00\x01")

    assert result.outbound_json == ()
    assert emitted[-1]["event_type"] == "BINARY_MESSAGE_IGNORED"
    assert server.total_packets == 0
