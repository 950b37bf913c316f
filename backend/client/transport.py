"""
Client transport.

The connection state machine only talks to the Transport protocol below;
WebSocketTransport is the production implementation on top of
`websockets`. Tests substitute in-memory fakes.

Contract:
- open (connector) either returns a live transport or raises TransportOpenError
- send_nowait() never blocks; messages are written in order by a sender task
- run() returns the close code once the connection is closed
  (1006 when the peer vanished without a close frame) and raises only for
  transport-level errors
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, Callable, Protocol

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from constants import CLIENT_OPEN_TIMEOUT_S, WS_ABNORMAL_CLOSURE
from observability.logger import log_event


# -------------------------
# Exceptions
# -------------------------

class TransportError(Exception):
    """Base class for client transport errors."""


class TransportOpenError(TransportError):
    """Raised by a connector when the connection cannot be opened."""


# -------------------------
# Protocol
# -------------------------

class Transport(Protocol):
    """What the state machine needs from one open connection."""

    def send_nowait(self, message: str) -> None:
        ...

    async def run(self) -> int:
        ...

    async def close(self, code: int, reason: str) -> None:
        ...


Connector = Callable[[str], Awaitable[Transport]]


# -------------------------
# websockets implementation
# -------------------------

class WebSocketTransport:
    """One open websocket plus its outbound queue."""

    def __init__(self, ws: ClientConnection) -> None:
        self._ws = ws
        self._outbound: asyncio.Queue[str] = asyncio.Queue()

    @classmethod
    async def open(
        cls,
        url: str,
        *,
        open_timeout: float = CLIENT_OPEN_TIMEOUT_S,
    ) -> WebSocketTransport:
        """
        Connect to `url`.

        Raises:
            TransportOpenError on refusal, handshake failure, or timeout.
        """
        try:
            ws = await connect(url, open_timeout=open_timeout)
        except (OSError, TimeoutError, asyncio.TimeoutError, WebSocketException) as e:
            raise TransportOpenError(f"{type(e).__name__}: {e}") from e
        return cls(ws)

    @property
    def close_code(self) -> int:
        code = self._ws.close_code
        return WS_ABNORMAL_CLOSURE if code is None else int(code)

    @property
    def queued_messages(self) -> int:
        return self._outbound.qsize()

    def send_nowait(self, message: str) -> None:
        self._outbound.put_nowait(message)

    async def run(self) -> int:
        """Pump inbound and outbound traffic until the connection closes."""
        sender = asyncio.create_task(self._send_loop(), name="ws-sender")
        try:
            async for message in self._ws:
                _log_inbound(message)
        except ConnectionClosed:
            pass
        finally:
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender
        return self.close_code

    async def close(self, code: int, reason: str) -> None:
        await self._ws.close(code=code, reason=reason)

    async def _send_loop(self) -> None:
        while True:
            message = await self._outbound.get()
            try:
                await self._ws.send(message)
            except ConnectionClosed:
                # run() observes the close and reports the code
                return


def _log_inbound(message: str | bytes) -> None:
    log_event({
        "event_type": "WS_MESSAGE_RECEIVED",
        "message": message if isinstance(message, str) else f"<{len(message)} bytes>",
    })
