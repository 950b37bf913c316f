"""
Operator console for the audio streaming server.

Responsibilities:
- Run the FastAPI app under an in-process uvicorn server
- Start / stop / restart that server without losing process state
- Drive the recorder (startrecording / stoprecording)
- Report status

Commands are read line by line from stdin on a daemon thread and
executed on the event loop, one at a time.
"""

from __future__ import annotations

import argparse
import asyncio
import socket
import sys
import threading
from typing import Awaitable, Callable

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI

from audio.recorder import RecordingFinalizeError, StreamingWavRecorder
from config import AppConfig
from constants import SERVER_RESTART_DELAY_S
from observability.logger import configure_logging, log_event
from session.server_session import ServerSession

from server.app import create_app
from server.routes import close_all_clients

HELP_TEXT = """
=== Available Commands ===
start          - Start the WebSocket server
stop           - Stop the WebSocket server
restart        - Restart the WebSocket server
status         - Show server status and statistics
startrecording - Start recording incoming audio to a WAV file
stoprecording  - Stop recording and finalize the WAV file
help           - Show this help message
exit/quit      - Exit the application
==========================
"""


class ServerConsole:
    """
    Owns the uvicorn server instance for one FastAPI app.

    The app (and therefore ServerSession and recorder) survives restarts;
    only the listening socket and uvicorn server are recreated.
    """

    def __init__(self, *, config: AppConfig, app: FastAPI) -> None:
        self._config = config
        self._app = app
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None

        self._commands: dict[str, Callable[[], Awaitable[None]]] = {
            "start": self.start_server,
            "stop": self.stop_server,
            "restart": self.restart_server,
            "status": self.show_status,
            "startrecording": self.start_recording,
            "stoprecording": self.stop_recording,
            "help": self.show_help,
        }

    @property
    def server_session(self) -> ServerSession:
        return self._app.state.server_session

    @property
    def recorder(self) -> StreamingWavRecorder:
        return self._app.state.recorder

    @property
    def is_running(self) -> bool:
        return self._serve_task is not None and not self._serve_task.done()

    # ------------------------------------------------------------------
    # Server lifecycle
    # ------------------------------------------------------------------

    async def start_server(self) -> None:
        if self.is_running:
            log_event({"event_type": "SERVER_ALREADY_RUNNING"})
            return

        try:
            sock = _bind_socket(self._config.server_host, self._config.server_port)
        except OSError as e:
            log_event({
                "event_type": "SERVER_START_FAILED",
                "host": self._config.server_host,
                "port": self._config.server_port,
                "message": str(e),
            })
            return

        server = uvicorn.Server(uvicorn.Config(
            self._app,
            lifespan="on",
            log_level=self._config.log_level.lower(),
        ))
        self._server = server
        self._serve_task = asyncio.create_task(server.serve(sockets=[sock]), name="uvicorn")

        # Wait for the lifespan startup (or an early failure)
        while not server.started and not self._serve_task.done():
            await asyncio.sleep(0.05)

        if self._serve_task.done():
            sock.close()
            log_event({"event_type": "SERVER_START_FAILED", "message": "uvicorn exited"})
            self._server = None
            self._serve_task = None

    async def stop_server(self) -> None:
        if not self.is_running or self._server is None or self._serve_task is None:
            log_event({"event_type": "SERVER_NOT_RUNNING"})
            return

        closed = await close_all_clients(self._app)
        log_event({"event_type": "SERVER_STOPPING", "clients_closed": closed})

        self._server.should_exit = True
        await self._serve_task
        self._server = None
        self._serve_task = None

    async def restart_server(self) -> None:
        if self.is_running:
            await self.stop_server()
            await asyncio.sleep(SERVER_RESTART_DELAY_S)
        await self.start_server()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def show_status(self) -> None:
        log_event({
            "event_type": "SERVER_STATUS",
            **self.server_session.snapshot(),
            "recording": self.recorder.status().to_dict(),
        })

    async def show_help(self) -> None:
        print(HELP_TEXT)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def start_recording(self) -> None:
        self.recorder.start(server_running=self.server_session.is_running)

    async def stop_recording(self) -> None:
        try:
            await self.recorder.stop()
        except RecordingFinalizeError as e:
            # Session is already cleared; a new recording can be started
            log_event({
                "event_type": "STOP_RECORDING_FAILED",
                "message": str(e),
            })

    # ------------------------------------------------------------------
    # Command loop
    # ------------------------------------------------------------------

    async def handle_command(self, line: str) -> bool:
        """
        Execute one console line.

        Returns False when the console should exit.
        """
        command = line.strip().lower()
        if not command:
            return True

        if command in ("exit", "quit"):
            await self.shutdown()
            return False

        handler = self._commands.get(command)
        if handler is None:
            print(f'Unknown command: "{command}". Type "help" for available commands.')
            return True

        await handler()
        return True

    async def shutdown(self) -> None:
        """Finalize any recording, then stop the server. Safe to call twice."""
        if self.recorder.is_recording:
            await self.stop_recording()
        if self.is_running:
            await self.stop_server()

    async def run(self) -> None:
        await self.start_server()
        print('Type "help" for available commands\n')

        lines = _stdin_lines()
        try:
            while True:
                print("server> ", end="", flush=True)
                line = await lines.get()
                if line is None or not await self.handle_command(line):
                    return
        finally:
            await self.shutdown()


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _bind_socket(host: str, port: int) -> socket.socket:
    """Bind the listening socket ourselves so failures surface as OSError."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


def _stdin_lines() -> asyncio.Queue[str | None]:
    """
    Feed stdin lines into a queue from a daemon thread.

    None marks end of input. The thread never blocks interpreter exit.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[str | None] = asyncio.Queue()

    def _reader() -> None:
        for line in sys.stdin:
            loop.call_soon_threadsafe(queue.put_nowait, line)
        loop.call_soon_threadsafe(queue.put_nowait, None)

    threading.Thread(target=_reader, daemon=True, name="console-stdin").start()
    return queue


def main(argv: list[str] | None = None) -> int:
    load_dotenv()

    ap = argparse.ArgumentParser(description="Audio streaming websocket server")
    ap.add_argument("--no-console", action="store_true",
                    help="serve until interrupted, without the interactive console")
    args = ap.parse_args(argv)

    config = AppConfig.load_from_env()
    configure_logging(log_level=config.log_level, json_output=config.enable_json_logs)

    print("Audio Streaming WebSocket Server")
    print("==================================\n")

    app = create_app(config)

    if args.no_console:
        uvicorn.run(app, host=config.server_host, port=config.server_port,
                    log_level=config.log_level.lower())
        return 0

    console = ServerConsole(config=config, app=app)
    try:
        asyncio.run(console.run())
    except KeyboardInterrupt:
        log_event({"event_type": "CONSOLE_INTERRUPTED"})
    print("\nGoodbye!")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
