"""
Connection state machine for the streaming client.

Owns exactly one logical transport connection and keeps it alive against
transient failures:

- connect() opens a transport (no-op while CONNECTED / CONNECTING)
- abnormal closes and failed opens schedule a retry with exponential
  backoff (1s, 2s, 4s, 8s); after CLIENT_MAX_RETRIES the machine gives up
  and settles in DISCONNECTED with the retry counter reset
- a close with code 1000 is final (no retry)
- disconnect() cancels everything and closes with code 1000
- send() only transmits while CONNECTED; otherwise it is a silent no-op

Concurrency:
- Every transition runs on the asyncio event loop; there are no locks
- At most one retry timer is pending; starting an attempt cancels it
- Each attempt carries a generation number; callbacks from a superseded
  attempt are ignored, so a stale attempt can never change state
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Protocol

from client.connection_status import ConnectionState, StatusBroadcast
from client.transport import (
    Connector,
    Transport,
    TransportError,
    TransportOpenError,
    WebSocketTransport,
)
from constants import (
    CLIENT_DISCONNECT_CLOSE_REASON,
    CLIENT_MAX_RETRIES,
    WS_ABNORMAL_CLOSURE,
    WS_NORMAL_CLOSURE,
    retry_delay_ms,
)
from observability.logger import log_event


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


CallLater = Callable[[float, Callable[[], None]], TimerHandle]


class ConnectionStateMachine:
    """
    Single-connection client with bounded reconnection.

    `connector` opens a transport for a URL; `call_later` schedules the
    retry timer (defaults to the running loop's call_later). Both are
    injectable so tests can drive failures and time deterministically.
    """

    def __init__(
        self,
        *,
        url: str,
        connector: Connector | None = None,
        max_retries: int = CLIENT_MAX_RETRIES,
        call_later: CallLater | None = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        self._url = url
        self._connector: Connector = connector or WebSocketTransport.open
        self._max_retries = max_retries
        self._call_later = call_later

        self.status = StatusBroadcast(ConnectionState.DISCONNECTED)

        self._retry_count = 0
        self._retry_timer: TimerHandle | None = None

        self._transport: Transport | None = None
        self._attempt_task: asyncio.Task[None] | None = None
        self._generation = 0

        # Close tasks spawned by disconnect(); kept so they are not GC'd
        self._background: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ConnectionState:
        return self.status.value

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def has_pending_retry(self) -> bool:
        return self._retry_timer is not None

    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self._transport is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """User-initiated connect. Resets the retry counter."""
        if self.state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            log_event({
                "event_type": "WS_CONNECT_IGNORED",
                "state": self.state.value,
            })
            return

        self._retry_count = 0
        self._attempt_connection()

    def disconnect(self) -> None:
        """
        Close the connection with a normal-closure code and stop retrying.

        Safe to call in any state, any number of times.
        """
        self._cancel_retry_timer()
        self._retry_count = 0
        self._release_transport()
        self._set_state(ConnectionState.DISCONNECTED)

    async def aclose(self) -> None:
        """disconnect(), then wait for pending close handshakes to finish."""
        self.disconnect()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def send(self, message: str) -> bool:
        """
        Transmit `message` if CONNECTED.

        Returns False (and does nothing else) when not connected.
        Never raises, never blocks.
        """
        transport = self._transport
        if self.state is not ConnectionState.CONNECTED or transport is None:
            return False

        try:
            transport.send_nowait(message)
        except TransportError as e:
            log_event({
                "event_type": "WS_SEND_FAILED",
                "exception": type(e).__name__,
                "message": str(e),
            })
            return False
        return True

    def send_json(self, data: Any) -> bool:
        """JSON-serialize `data` and send() it."""
        if not self.is_connected():
            return False
        return self.send(json.dumps(data, separators=(",", ":")))

    # ------------------------------------------------------------------
    # Attempt procedure
    # ------------------------------------------------------------------

    def _attempt_connection(self) -> None:
        self._cancel_retry_timer()
        self._release_transport()

        if self._retry_count > 0:
            self._set_state(ConnectionState.RECONNECTING)
        else:
            self._set_state(ConnectionState.CONNECTING)

        self._generation += 1
        self._attempt_task = asyncio.get_running_loop().create_task(
            self._run_attempt(self._generation),
            name=f"ws-attempt-{self._generation}",
        )

    async def _run_attempt(self, generation: int) -> None:
        try:
            transport = await self._connector(self._url)
        except TransportOpenError as e:
            if generation != self._generation:
                return
            log_event({
                "event_type": "WS_OPEN_FAILED",
                "url": self._url,
                "retry_count": self._retry_count,
                "message": str(e),
            })
            self._attempt_task = None
            self._handle_reconnection()
            return

        if generation != self._generation:
            # Superseded while the handshake was in flight
            await _close_quietly(transport, WS_NORMAL_CLOSURE, CLIENT_DISCONNECT_CLOSE_REASON)
            return

        self._transport = transport
        self._on_open()

        try:
            code = await transport.run()
        except Exception as e:  # pylint: disable=broad-exception-caught
            if generation != self._generation:
                return
            self._on_error(e)
            code = WS_ABNORMAL_CLOSURE

        if generation != self._generation:
            return
        self._on_close(code)

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    def _on_open(self) -> None:
        log_event({"event_type": "WS_CONNECTED", "url": self._url})
        self._retry_count = 0
        self._set_state(ConnectionState.CONNECTED)
        self._cancel_retry_timer()

    def _on_error(self, exc: BaseException) -> None:
        log_event({
            "event_type": "WS_TRANSPORT_ERROR",
            "url": self._url,
            "exception": type(exc).__name__,
            "message": str(exc),
        })
        self._set_state(ConnectionState.ERROR)

    def _on_close(self, code: int) -> None:
        log_event({"event_type": "WS_CLOSED", "url": self._url, "code": code})
        self._transport = None
        self._attempt_task = None

        if code == WS_NORMAL_CLOSURE:
            self._set_state(ConnectionState.DISCONNECTED)
            return

        # A live connection just dropped; don't keep reporting CONNECTED
        # while the retry timer runs
        if self._retry_count < self._max_retries:
            self._set_state(ConnectionState.RECONNECTING)
        self._handle_reconnection()

    # ------------------------------------------------------------------
    # Reconnection procedure
    # ------------------------------------------------------------------

    def _handle_reconnection(self) -> None:
        if self._retry_count < self._max_retries:
            self._retry_count += 1
            delay_ms = retry_delay_ms(self._retry_count)

            log_event({
                "event_type": "WS_RECONNECT_SCHEDULED",
                "retry_count": self._retry_count,
                "max_retries": self._max_retries,
                "delay_ms": delay_ms,
            })

            self._cancel_retry_timer()
            schedule = self._call_later or asyncio.get_running_loop().call_later
            self._retry_timer = schedule(delay_ms / 1000.0, self._on_retry_timer)
            return

        log_event({
            "event_type": "WS_MAX_RETRIES_REACHED",
            "max_retries": self._max_retries,
        })
        self._retry_count = 0
        self._set_state(ConnectionState.DISCONNECTED)

    def _on_retry_timer(self) -> None:
        self._retry_timer = None
        self._attempt_connection()

    def _cancel_retry_timer(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _release_transport(self) -> None:
        """
        Invalidate the current attempt and drop its transport.

        An open transport gets a normal-closure close frame; an attempt
        still opening is cancelled.
        """
        self._generation += 1

        transport, self._transport = self._transport, None
        task, self._attempt_task = self._attempt_task, None

        if transport is not None:
            close_task = asyncio.get_running_loop().create_task(
                _close_quietly(transport, WS_NORMAL_CLOSURE, CLIENT_DISCONNECT_CLOSE_REASON)
            )
            self._background.add(close_task)
            close_task.add_done_callback(self._background.discard)
        elif task is not None and not task.done():
            task.cancel()

    def _set_state(self, state: ConnectionState) -> None:
        previous = self.status.value
        log_event({
            "event_type": "WS_STATE_CHANGED",
            "from": previous.value,
            "to": state.value,
            "retry_count": self._retry_count,
        })
        self.status.publish(state)


async def _close_quietly(transport: Transport, code: int, reason: str) -> None:
    try:
        await transport.close(code, reason)
    except (TransportError, OSError) as e:
        log_event({
            "event_type": "WS_CLOSE_FAILED",
            "exception": type(e).__name__,
            "message": str(e),
        })
