# backend/audio/recorder.py
"""
Streaming WAV recorder.

Responsibilities:
- Own the lifecycle of a single recording session (process-wide)
- Write a placeholder header, then append PCM16 as packets arrive
- Apply backpressure: report saturation, expose an awaitable drain signal
- Finalize the header once every byte has been flushed

Single-writer discipline:
- One writer task per session owns the file handle
- write_packet() only enqueues bytes; the writer task performs one write at a time
- stop() hands the writer a sentinel, waits for flush/close, then finalizes

Session state is cleared on every exit path of stop() so a new session
can always be started afterwards.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Optional

from audio.pcm import samples_to_pcm16le
from audio.wav import WavHeaderError, build_wav_header, parse_wav_header
from config import AudioFormatConfig
from constants import (
    RECORDER_HIGH_WATER_MARK_BYTES,
    RECORDING_FILE_PREFIX,
    RECORDING_FILE_SUFFIX,
    WAV_HEADER_BYTES,
)
from observability.logger import log_event
from protocol.audio_event import DecodedAudio


# -------------------------
# Exceptions
# -------------------------

class RecorderError(Exception):
    """Base class for recorder errors."""


class RecordingFinalizeError(RecorderError):
    """
    Raised by stop() when flushing or patching the WAV file fails.

    The in-memory session is already cleared when this propagates.
    """


# -------------------------
# Data containers
# -------------------------

@dataclass
class RecordingSession:
    """Mutable state of the active recording."""
    file_path: Path
    audio_format: AudioFormatConfig
    started_at: float = field(default_factory=time.time)
    started_monotonic: float = field(default_factory=time.monotonic)
    is_active: bool = True
    stopping: bool = False
    header_written: bool = False
    format_fixed: bool = False
    packets_written: int = 0
    bytes_written: int = 0
    write_error: Optional[OSError] = None


@dataclass(frozen=True)
class RecordingStatus:
    """Read-only snapshot returned by status()."""
    is_recording: bool
    file_path: Optional[str]
    packets_written: int
    bytes_written: int

    def to_dict(self) -> dict[str, object]:
        return {
            "is_recording": self.is_recording,
            "file_path": self.file_path,
            "packets_written": self.packets_written,
            "bytes_written": self.bytes_written,
        }


@dataclass(frozen=True)
class RecordingSummary:
    """Result of a completed stop()."""
    file_path: str
    duration_s: float
    packets_written: int
    bytes_written: int
    file_size_bytes: int
    empty: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "file_path": self.file_path,
            "duration_s": round(self.duration_s, 2),
            "packets_written": self.packets_written,
            "bytes_written": self.bytes_written,
            "file_size_bytes": self.file_size_bytes,
            "empty": self.empty,
        }


def recording_file_name(now: datetime | None = None) -> str:
    """
    recording-<ISO8601 with ':' and '.' replaced by '-'>.wav

    e.g. recording-2024-05-01T12-30-45-123Z.wav
    """
    now = now or datetime.now(timezone.utc)
    iso = now.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    iso = iso.replace("+00:00", "Z")
    stamp = iso.replace(":", "-").replace(".", "-")
    return f"{RECORDING_FILE_PREFIX}{stamp}{RECORDING_FILE_SUFFIX}"


# -------------------------
# Recorder
# -------------------------

class StreamingWavRecorder:
    """
    Process-wide WAV recorder. At most one session exists at a time.

    Must be driven from a single asyncio event loop.
    """

    def __init__(
        self,
        *,
        audio_format: AudioFormatConfig,
        recordings_dir: Path,
        high_water_mark_bytes: int = RECORDER_HIGH_WATER_MARK_BYTES,
    ) -> None:
        if high_water_mark_bytes <= 0:
            raise ValueError("high_water_mark_bytes must be > 0")

        self._default_format = audio_format
        self._recordings_dir = Path(recordings_dir)
        self._high_water_mark = high_water_mark_bytes

        self._session: RecordingSession | None = None
        self._queue: asyncio.Queue[bytes | None] | None = None
        self._writer_task: asyncio.Task[None] | None = None

        self._queued_bytes = 0
        self._drained = asyncio.Event()
        self._drained.set()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def is_recording(self) -> bool:
        return self._session is not None and self._session.is_active

    @property
    def queued_bytes(self) -> int:
        """Bytes accepted by write_packet() but not yet written to the file."""
        return self._queued_bytes

    def status(self) -> RecordingStatus:
        """Snapshot of the current session. No side effects."""
        session = self._session
        if session is None:
            return RecordingStatus(
                is_recording=False,
                file_path=None,
                packets_written=0,
                bytes_written=0,
            )
        return RecordingStatus(
            is_recording=session.is_active,
            file_path=str(session.file_path),
            packets_written=session.packets_written,
            bytes_written=session.bytes_written,
        )

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start(self, server_running: bool = True) -> Path | None:
        """
        Begin a new recording.

        Returns the file path, or None (with a diagnostic) when a session
        is already active or still finalizing, when the server is not
        running, or when the file cannot be created.
        """
        if self._session is not None:
            log_event({
                "event_type": "RECORDING_ALREADY_ACTIVE" if self._session.is_active
                else "RECORDING_STILL_FINALIZING",
                "file_path": str(self._session.file_path),
            })
            return None

        if not server_running:
            log_event({
                "event_type": "RECORDING_REJECTED_SERVER_STOPPED",
            })
            return None

        loop = asyncio.get_running_loop()
        file_path = self._recordings_dir / recording_file_name()

        try:
            self._recordings_dir.mkdir(parents=True, exist_ok=True)
            fh = open(file_path, "wb")  # pylint: disable=consider-using-with
        except OSError as e:
            log_event({
                "event_type": "RECORDING_START_FAILED",
                "file_path": str(file_path),
                "exception": type(e).__name__,
                "message": str(e),
            })
            return None

        session = RecordingSession(
            file_path=file_path,
            audio_format=self._default_format,
        )

        try:
            self._write_header_once(session, fh)
        except OSError as e:
            fh.close()
            log_event({
                "event_type": "RECORDING_START_FAILED",
                "file_path": str(file_path),
                "exception": type(e).__name__,
                "message": str(e),
            })
            return None

        self._session = session
        self._queue = asyncio.Queue()
        self._queued_bytes = 0
        self._drained.set()
        self._writer_task = loop.create_task(
            self._run_writer(session, fh, self._queue),
            name="wav-writer",
        )

        log_event({
            "event_type": "RECORDING_STARTED",
            "file_path": str(file_path),
            "audio_format": self._default_format.to_dict(),
        })
        return file_path

    def _write_header_once(self, session: RecordingSession, fh: BinaryIO) -> None:
        """Placeholder header (data_size = 0) using the configured default format."""
        if session.header_written:
            return
        fmt = session.audio_format
        fh.write(build_wav_header(
            sample_rate=fmt.sample_rate,
            channels=fmt.channels,
            bit_depth=fmt.bit_depth,
            data_size=0,
        ))
        session.header_written = True

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def write_packet(self, decoded: DecodedAudio) -> bool:
        """
        Queue one packet of samples for the writer task.

        Returns:
            True if more packets can be written right away.
            False if the queue is above the high-water mark; the packet is
            still accepted and callers should `await drain()` before the
            next write.
        """
        session = self._session
        if session is None or not session.is_active or self._queue is None:
            return True

        if not session.format_fixed:
            session.audio_format = AudioFormatConfig(
                sample_rate=decoded.sample_rate or self._default_format.sample_rate,
                channels=decoded.channels or self._default_format.channels,
                bit_depth=decoded.bit_depth or self._default_format.bit_depth,
            )
            session.format_fixed = True

        if decoded.samples.size == 0:
            if session.packets_written == 0:
                log_event({
                    "event_type": "EMPTY_AUDIO_PACKET",
                    "file_path": str(session.file_path),
                })
            return self._queued_bytes < self._high_water_mark

        chunk = samples_to_pcm16le(decoded.samples)
        self._queue.put_nowait(chunk)
        self._queued_bytes += len(chunk)

        session.packets_written += 1
        session.bytes_written += len(chunk)

        if self._queued_bytes >= self._high_water_mark:
            if self._drained.is_set():
                log_event({
                    "event_type": "RECORDER_BACKPRESSURE",
                    "queued_bytes": self._queued_bytes,
                    "high_water_mark": self._high_water_mark,
                })
            self._drained.clear()
            return False

        return True

    async def drain(self) -> None:
        """Wait until queued bytes fall below the high-water mark."""
        await self._drained.wait()

    async def _run_writer(
        self,
        session: RecordingSession,
        fh: BinaryIO,
        queue: asyncio.Queue[bytes | None],
    ) -> None:
        """
        Sole owner of the file handle for one session.

        Exits on the None sentinel after flushing, fsyncing and closing.
        A write error ends the session; if stop() is already waiting on
        this task it reports the error, otherwise the session is dropped.
        """
        try:
            while True:
                chunk = await queue.get()
                if chunk is None:
                    break

                await asyncio.to_thread(fh.write, chunk)

                self._queued_bytes = max(self._queued_bytes - len(chunk), 0)
                if self._queued_bytes < self._high_water_mark:
                    self._drained.set()

            await asyncio.to_thread(_flush_and_close, fh)

        except OSError as e:
            session.write_error = e
            session.is_active = False
            self._drained.set()
            log_event({
                "event_type": "RECORDING_WRITE_ERROR",
                "file_path": str(session.file_path),
                "exception": type(e).__name__,
                "message": str(e),
            })
            if not session.stopping and self._session is session:
                self._reset()

        finally:
            # Also reached when the task is cancelled mid-write
            if not fh.closed:
                with contextlib.suppress(OSError):
                    fh.close()

    # ------------------------------------------------------------------
    # Stop / finalize
    # ------------------------------------------------------------------

    async def stop(self) -> RecordingSummary | None:
        """
        Stop the active session and finalize the WAV header.

        New writes are rejected immediately; completion waits until all
        queued bytes are flushed to disk.

        Returns:
            RecordingSummary, or None if no recording is active.

        Raises:
            RecordingFinalizeError on any flush / finalize I/O failure.
        """
        session = self._session
        if session is None or self._writer_task is None:
            log_event({"event_type": "NO_RECORDING_IN_PROGRESS"})
            return None

        if session.stopping:
            log_event({
                "event_type": "RECORDING_ALREADY_STOPPING",
                "file_path": str(session.file_path),
            })
            return None

        session.is_active = False
        session.stopping = True
        writer_task = self._writer_task
        if self._queue is not None:
            self._queue.put_nowait(None)

        try:
            # A cancelled caller must not cancel the flush
            await asyncio.shield(writer_task)

            if session.write_error is not None:
                raise RecordingFinalizeError(
                    f"Write failed for {session.file_path}: {session.write_error}"
                ) from session.write_error

            summary = await asyncio.to_thread(_finalize_file, session)

        except (OSError, WavHeaderError) as e:
            log_event({
                "event_type": "RECORDING_FINALIZE_ERROR",
                "file_path": str(session.file_path),
                "exception": type(e).__name__,
                "message": str(e),
            })
            raise RecordingFinalizeError(
                f"Could not finalize {session.file_path}: {e}"
            ) from e

        finally:
            self._reset()

        if summary.empty:
            log_event({
                "event_type": "RECORDING_EMPTY",
                "file_path": summary.file_path,
                "expected_bytes": session.bytes_written,
                "file_size_bytes": summary.file_size_bytes,
            })
        else:
            log_event({
                "event_type": "RECORDING_STOPPED",
                **summary.to_dict(),
            })
        return summary

    def _reset(self) -> None:
        self._session = None
        self._queue = None
        self._writer_task = None
        self._queued_bytes = 0
        self._drained.set()


# ------------------------------------------------------------------
# Blocking helpers (run via asyncio.to_thread)
# ------------------------------------------------------------------

def _flush_and_close(fh: BinaryIO) -> None:
    fh.flush()
    os.fsync(fh.fileno())
    fh.close()


def _finalize_file(session: RecordingSession) -> RecordingSummary:
    """
    Rewrite the header with the real sizes.

    The header is rebuilt from the session format (fixed by the first
    packet), so offsets 4 and 40 carry 36 + data_size and data_size.
    A file holding only the placeholder header is left untouched.
    """
    path = session.file_path
    duration_s = time.monotonic() - session.started_monotonic

    with open(path, "r+b") as fh:
        file_size = os.fstat(fh.fileno()).st_size
        data_size = file_size - WAV_HEADER_BYTES

        if data_size <= 0:
            return RecordingSummary(
                file_path=str(path),
                duration_s=duration_s,
                packets_written=session.packets_written,
                bytes_written=session.bytes_written,
                file_size_bytes=file_size,
                empty=True,
            )

        parse_wav_header(fh.read(WAV_HEADER_BYTES))

        fmt = session.audio_format
        fh.seek(0)
        fh.write(build_wav_header(
            sample_rate=fmt.sample_rate,
            channels=fmt.channels,
            bit_depth=fmt.bit_depth,
            data_size=data_size,
        ))
        fh.flush()
        os.fsync(fh.fileno())

    return RecordingSummary(
        file_path=str(path),
        duration_s=duration_s,
        packets_written=session.packets_written,
        bytes_written=session.bytes_written,
        file_size_bytes=file_size,
        empty=False,
    )
