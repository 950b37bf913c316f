# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import base64
import threading
import time
from typing import Any

import numpy as np
import pytest

import client.capture as capture_mod
from client.capture import AudioCapture, MicrophonePermissionDenied
from config import AudioFormatConfig

FORMAT = AudioFormatConfig(sample_rate=16000, channels=2, bit_depth=16)


@pytest.fixture(autouse=True)
def _silence_logs(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(capture_mod, "log_event", lambda _event: None)


class FakeRecorder:
    def __init__(self, mic: "FakeMicrophone", channels: int) -> None:
        self._mic = mic
        self._channels = channels

    def __enter__(self) -> "FakeRecorder":
        self._mic.open_recorders += 1
        return self

    def __exit__(self, *exc: Any) -> None:
        self._mic.open_recorders -= 1

    def record(self, numframes: int) -> np.ndarray:
        self._mic.blocks_read.set()
        # Pace the capture thread a little, like a real device would
        time.sleep(0.001)
        left = np.full(numframes, 0.5, dtype=np.float32)
        right = np.full(numframes, -1.5, dtype=np.float32)
        return np.stack([left, right], axis=1)


class FakeMicrophone:
    name = "fake mic"

    def __init__(self) -> None:
        self.open_recorders = 0
        self.blocks_read = threading.Event()
        self.recorder_args: dict[str, Any] = {}

    def recorder(self, *, samplerate: int, channels: int, blocksize: int) -> FakeRecorder:
        self.recorder_args = {"samplerate": samplerate, "channels": channels, "blocksize": blocksize}
        return FakeRecorder(self, channels)


def test_request_access_is_idempotent() -> None:
    calls: list[int] = []
    mic = FakeMicrophone()

    def provider() -> FakeMicrophone:
        calls.append(1)
        return mic

    capture = AudioCapture(send=lambda _p: None, audio_format=FORMAT, microphone_provider=provider)

    assert capture.request_access() is mic
    assert capture.request_access() is mic
    assert calls == [1]


def test_request_access_denied() -> None:
    def refuse() -> Any:
        raise OSError("device busy")

    capture = AudioCapture(send=lambda _p: None, audio_format=FORMAT, microphone_provider=refuse)

    with pytest.raises(MicrophonePermissionDenied):
        capture.request_access()

    capture_none = AudioCapture(send=lambda _p: None, audio_format=FORMAT, microphone_provider=lambda: None)
    with pytest.raises(MicrophonePermissionDenied):
        capture_none.request_access()


def test_start_without_handle_is_noop() -> None:
    async def scenario() -> None:
        capture = AudioCapture(send=lambda _p: None, audio_format=FORMAT, microphone_provider=FakeMicrophone)
        capture.start_capture()
        assert not capture.is_active()

    asyncio.run(scenario())


def test_capture_streams_interleaved_clamped_packets() -> None:
    mic = FakeMicrophone()
    sent: list[dict[str, Any]] = []

    async def scenario() -> None:
        got_packet = asyncio.Event()

        def send(packet: dict[str, Any]) -> None:
            sent.append(packet)
            got_packet.set()

        capture = AudioCapture(
            send=send,
            audio_format=FORMAT,
            microphone_provider=lambda: mic,
            block_frames=8,
        )
        capture.request_access()
        capture.start_capture()
        capture.start_capture()
        assert capture.is_active()

        await asyncio.wait_for(got_packet.wait(), timeout=5)
        capture.stop_capture()
        # The capture thread has left the device recorder by now
        assert mic.open_recorders == 0
        count = len(sent)
        await asyncio.sleep(0.05)

        # Nothing is forwarded after stop_capture()
        assert len(sent) == count
        assert not capture.is_active()

    asyncio.run(scenario())

    assert mic.recorder_args == {"samplerate": 16000, "channels": 2, "blocksize": 8}
    packet = sent[0]
    assert packet["headers"][":content-type"] == "audio/pcm;rate=16000;channels=2"
    samples = np.frombuffer(base64.b64decode(packet["payload"]), dtype="<i2")
    assert samples.size == 16
    assert samples[:4].tolist() == [16383, -32768, 16383, -32768]


def test_stop_capture_is_idempotent_in_any_state() -> None:
    capture = AudioCapture(send=lambda _p: None, audio_format=FORMAT, microphone_provider=FakeMicrophone)

    capture.stop_capture()
    capture.request_access()
    capture.stop_capture()
    capture.stop_capture()

    assert not capture.is_active()


def test_device_error_stops_capture() -> None:
    class BrokenMicrophone(FakeMicrophone):
        def recorder(self, *, samplerate: int, channels: int, blocksize: int) -> FakeRecorder:
            raise RuntimeError("device unplugged")

    async def scenario() -> None:
        capture = AudioCapture(
            send=lambda _p: None,
            audio_format=FORMAT,
            microphone_provider=BrokenMicrophone,
        )
        capture.request_access()
        capture.start_capture()

        for _ in range(100):
            if not capture.is_active():
                break
            await asyncio.sleep(0.01)

        assert not capture.is_active()

    asyncio.run(scenario())
