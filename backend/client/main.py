"""
Streaming client entry point.

Wires microphone capture to the connection state machine:
- microphone access is requested before any connection attempt
- capture starts whenever the connection reports CONNECTED
- capture stops whenever the connection reports DISCONNECTED
- Ctrl+C disconnects with a normal-closure code

Run with `python -m client.main [--url ws://localhost:5000]`.
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import replace

from dotenv import load_dotenv

from client.capture import (
    AudioCapture,
    MicrophonePermissionDenied,
    MicrophoneProvider,
    default_microphone,
)
from client.connection import ConnectionStateMachine
from client.connection_status import ConnectionState
from client.transport import Connector
from config import AppConfig
from observability.logger import configure_logging, log_event


class StreamingClient:
    """One connection plus one microphone stream."""

    def __init__(
        self,
        *,
        config: AppConfig,
        connector: Connector | None = None,
        microphone_provider: MicrophoneProvider = default_microphone,
    ) -> None:
        self.connection = ConnectionStateMachine(url=config.server_url, connector=connector)
        self.capture = AudioCapture(
            send=self.connection.send_json,
            audio_format=config.audio_format,
            microphone_provider=microphone_provider,
        )
        self._started = False
        self._finished = asyncio.Event()
        self._unsubscribe = self.connection.status.subscribe(self._on_status)

    def _on_status(self, state: ConnectionState) -> None:
        log_event({"event_type": "CLIENT_STATUS", "state": state.value})

        if state is ConnectionState.CONNECTED:
            try:
                self.capture.request_access()
            except MicrophonePermissionDenied as e:
                log_event({"event_type": "MICROPHONE_ACCESS_DENIED", "message": str(e)})
                self.connection.disconnect()
                return
            self.capture.start_capture()

        elif state is ConnectionState.DISCONNECTED:
            self.capture.stop_capture()
            if self._started:
                self._finished.set()

    def start(self) -> None:
        """
        Acquire the microphone, then connect.

        Raises:
            MicrophonePermissionDenied; no connection is attempted then.
        """
        self.capture.request_access()
        self._started = True
        self._finished.clear()
        self.connection.connect()

    async def wait_finished(self) -> None:
        """Resolve once the connection settles in DISCONNECTED after start()."""
        await self._finished.wait()

    async def stop(self) -> None:
        self.capture.stop_capture()
        await self.connection.aclose()
        self._unsubscribe()


async def run_client(config: AppConfig) -> int:
    client = StreamingClient(config=config)
    try:
        client.start()
    except MicrophonePermissionDenied as e:
        log_event({"event_type": "MICROPHONE_ACCESS_DENIED", "message": str(e)})
        return 1

    try:
        await client.wait_finished()
    finally:
        await client.stop()
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv()

    ap = argparse.ArgumentParser(description="Stream microphone audio to the server")
    ap.add_argument("--url", help="websocket endpoint (default: SERVER_URL or ws://localhost:5000)")
    args = ap.parse_args(argv)

    config = AppConfig.load_from_env()
    if args.url:
        config = replace(config, server_url=args.url)
    configure_logging(log_level=config.log_level, json_output=config.enable_json_logs)

    try:
        return asyncio.run(run_client(config))
    except KeyboardInterrupt:
        # asyncio.run cancelled the client task; stop() ran in its finally
        log_event({"event_type": "CLIENT_INTERRUPTED"})
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
