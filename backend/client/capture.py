"""
Microphone capture and framing.

Responsibilities:
- Acquire a microphone handle (request_access)
- Read fixed-size float blocks on a capture thread
- Quantize each block to PCM16 and wrap it as an AudioPacket
- Hand packets to the event loop, where `send` is called

Threading:
- The capture thread never touches connection state; every packet is
  forwarded with loop.call_soon_threadsafe
- Packets captured after stop_capture() are dropped on the loop side
- Forwarding is fire-and-forget: `send` decides whether the packet goes out
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable

import numpy as np

from config import AudioFormatConfig
from constants import CAPTURE_BUFFER_FRAMES, CAPTURE_STOP_JOIN_TIMEOUT_S
from observability.logger import log_event
from protocol.audio_event import AudioPacket, build_audio_packet

PacketSink = Callable[[dict[str, Any]], Any]
MicrophoneProvider = Callable[[], Any]


class CaptureError(Exception):
    """Base class for capture errors."""


class MicrophonePermissionDenied(CaptureError):
    """The audio device could not be opened for recording."""


def default_microphone() -> Any:
    """
    Return the system default input device.

    soundcard is imported here because importing it already talks to the
    platform audio server.
    """
    import soundcard  # pylint: disable=import-outside-toplevel

    return soundcard.default_microphone()


class AudioCapture:
    """
    Live microphone stream feeding a packet sink.

    The microphone object only needs `recorder(samplerate, channels,
    blocksize)` returning a context manager with `record(numframes)`.
    """

    def __init__(
        self,
        *,
        send: PacketSink,
        audio_format: AudioFormatConfig,
        microphone_provider: MicrophoneProvider = default_microphone,
        block_frames: int = CAPTURE_BUFFER_FRAMES,
    ) -> None:
        self._send = send
        self._audio_format = audio_format
        self._microphone_provider = microphone_provider
        self._block_frames = block_frames

        self._microphone: Any = None
        self._thread: threading.Thread | None = None
        self._stop_event: threading.Event | None = None
        self._capturing = False

        self.packets_captured = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def request_access(self) -> Any:
        """
        Return the microphone handle, acquiring it on first use.

        Raises:
            MicrophonePermissionDenied if no device can be opened.
        """
        if self._microphone is not None:
            return self._microphone

        try:
            microphone = self._microphone_provider()
        except Exception as e:  # pylint: disable=broad-exception-caught
            raise MicrophonePermissionDenied(f"{type(e).__name__}: {e}") from e

        if microphone is None:
            raise MicrophonePermissionDenied("No microphone available")

        self._microphone = microphone
        log_event({
            "event_type": "MICROPHONE_ACCESS_GRANTED",
            "device": str(getattr(microphone, "name", microphone)),
            **self._audio_format.to_dict(),
        })
        return microphone

    def start_capture(self) -> None:
        """Begin streaming. No-op without a handle or while already capturing."""
        if self._microphone is None or self._capturing:
            return

        loop = asyncio.get_running_loop()
        stop_event = threading.Event()

        self._stop_event = stop_event
        self._capturing = True
        self._thread = threading.Thread(
            target=self._capture_loop,
            args=(self._microphone, stop_event, loop),
            daemon=True,
            name="AudioCaptureThread",
        )
        self._thread.start()

        log_event({
            "event_type": "CAPTURE_STARTED",
            "block_frames": self._block_frames,
            **self._audio_format.to_dict(),
        })

    def stop_capture(self) -> None:
        """
        Stop streaming and release the microphone handle.

        Idempotent. Waits (bounded) for the capture thread to finish its
        current block and close the device recorder.
        """
        was_active = self._capturing or self._microphone is not None

        self._capturing = False
        if self._stop_event is not None:
            self._stop_event.set()
        thread = self._thread
        self._stop_event = None
        self._thread = None
        self._microphone = None

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=CAPTURE_STOP_JOIN_TIMEOUT_S)
            if thread.is_alive():
                log_event({
                    "event_type": "CAPTURE_THREAD_STILL_RUNNING",
                    "timeout_s": CAPTURE_STOP_JOIN_TIMEOUT_S,
                })

        if was_active:
            log_event({
                "event_type": "CAPTURE_STOPPED",
                "packets_captured": self.packets_captured,
            })

    def is_active(self) -> bool:
        return self._capturing and self._microphone is not None

    # ------------------------------------------------------------------
    # Capture thread
    # ------------------------------------------------------------------

    def _capture_loop(
        self,
        microphone: Any,
        stop_event: threading.Event,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        fmt = self._audio_format
        try:
            with microphone.recorder(
                samplerate=fmt.sample_rate,
                channels=fmt.channels,
                blocksize=self._block_frames,
            ) as recorder:
                while not stop_event.is_set():
                    block = recorder.record(numframes=self._block_frames)
                    # (frames, channels) -> interleaved
                    samples = np.asarray(block, dtype=np.float32).reshape(-1)
                    packet = build_audio_packet(
                        samples,
                        sample_rate=fmt.sample_rate,
                        channels=fmt.channels,
                    )
                    if not _post(loop, self._forward, packet, stop_event):
                        return
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "CAPTURE_DEVICE_ERROR",
                "exception": type(e).__name__,
                "message": str(e),
            })
            _post(loop, self._on_device_error, stop_event)

    # ------------------------------------------------------------------
    # Loop-side callbacks
    # ------------------------------------------------------------------

    def _forward(self, packet: AudioPacket, stop_event: threading.Event) -> None:
        if stop_event.is_set():
            return
        self.packets_captured += 1
        self._send(packet.to_dict())

    def _on_device_error(self, stop_event: threading.Event) -> None:
        # Only tear down if this thread's session is still the current one
        if stop_event is self._stop_event:
            self.stop_capture()


def _post(loop: asyncio.AbstractEventLoop, callback: Callable[..., None], *args: Any) -> bool:
    """Schedule `callback` on `loop`; False once the loop is closed."""
    try:
        loop.call_soon_threadsafe(callback, *args)
    except RuntimeError:
        return False
    return True
