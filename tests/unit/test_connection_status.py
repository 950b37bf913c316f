# pylint: disable=missing-module-docstring,missing-function-docstring

from typing import Any

import pytest

import client.connection_status as status_mod
from client.connection_status import ConnectionState, StatusBroadcast


def test_new_subscriber_receives_current_value() -> None:
    broadcast = StatusBroadcast()
    broadcast.publish(ConnectionState.CONNECTED)

    seen: list[ConnectionState] = []
    broadcast.subscribe(seen.append)

    assert seen == [ConnectionState.CONNECTED]


def test_every_publish_is_delivered_until_unsubscribed() -> None:
    broadcast = StatusBroadcast()
    seen: list[ConnectionState] = []
    unsubscribe = broadcast.subscribe(seen.append)

    broadcast.publish(ConnectionState.CONNECTING)
    broadcast.publish(ConnectionState.CONNECTING)
    unsubscribe()
    unsubscribe()
    broadcast.publish(ConnectionState.CONNECTED)

    assert seen == [
        ConnectionState.DISCONNECTED,
        ConnectionState.CONNECTING,
        ConnectionState.CONNECTING,
    ]
    assert broadcast.value is ConnectionState.CONNECTED


def test_failing_listener_does_not_block_others(monkeypatch: pytest.MonkeyPatch) -> None:
    emitted: list[dict[str, Any]] = []
    monkeypatch.setattr(status_mod, "log_event", emitted.append)

    def broken(_state: ConnectionState) -> None:
        raise RuntimeError("listener bug")

    broadcast = StatusBroadcast()
    seen: list[ConnectionState] = []
    broadcast.subscribe(broken)
    broadcast.subscribe(seen.append)

    broadcast.publish(ConnectionState.ERROR)

    assert seen == [ConnectionState.DISCONNECTED, ConnectionState.ERROR]
    assert [e["event_type"] for e in emitted] == ["STATUS_LISTENER_ERROR"] * 2
