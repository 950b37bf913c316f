"""
Connection status for the streaming client.

ConnectionState is owned by ConnectionStateMachine and published through a
StatusBroadcast: a current value plus a subscriber list. New subscribers
receive the current value immediately, then every later change.
"""
from __future__ import annotations

from enum import Enum
from typing import Callable, List

from observability.logger import log_event

StatusListener = Callable[["ConnectionState"], None]


class ConnectionState(str, Enum):
    """
    Client transport lifecycle.

    ERROR is informational: a close event always follows it and decides
    whether the machine retries or settles in DISCONNECTED.
    """
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


class StatusBroadcast:
    """
    Publish-with-replay cell.

    Must be used from the event loop thread only. A listener that raises
    is logged and does not prevent delivery to the others.
    """

    def __init__(self, initial: ConnectionState = ConnectionState.DISCONNECTED) -> None:
        self._value = initial
        self._listeners: List[StatusListener] = []

    @property
    def value(self) -> ConnectionState:
        return self._value

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """
        Register a listener and deliver the current value to it right away.

        Returns a callable that unsubscribes the listener.
        """
        self._listeners.append(listener)
        self._deliver(listener, self._value)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, state: ConnectionState) -> None:
        """Store and fan out a new value. Repeated values are delivered too."""
        self._value = state
        for listener in list(self._listeners):
            self._deliver(listener, state)

    @staticmethod
    def _deliver(listener: StatusListener, state: ConnectionState) -> None:
        try:
            listener(state)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "STATUS_LISTENER_ERROR",
                "state": state.value,
                "exception": type(e).__name__,
                "message": str(e),
            })
