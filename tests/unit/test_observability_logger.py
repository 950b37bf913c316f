# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger


def test_log_event_emits_valid_jsonl(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """
    Contract:
    - log_event emits exactly one JSONL line
    - payload is serialized as-is
    - output sink is patchable
    """
    captured: list[str] = []

    def fake_print(line: str) -> None:
        captured.append(line)

    # Patch the explicit output sink used by logger
    monkeypatch.setattr(logger, "_print", fake_print)
    monkeypatch.setattr(logger, "_json_output", True)

    payload: dict[str, Any] = {
        "ts_ms": 1,
        "event_type": "TEST",
        "value": 123,
    }

    logger.log_event(payload)

    # Exactly one line emitted
    assert len(captured) == 1

    # Payload must be preserved exactly
    assert json.loads(captured[0]) == payload


def test_log_event_fills_timestamp(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)
    monkeypatch.setattr(logger, "_json_output", True)

    logger.log_event({"event_type": "TEST"})

    decoded = json.loads(captured[0])
    assert isinstance(decoded["ts_ms"], int)
    assert decoded["event_type"] == "TEST"


def test_unserializable_payload_falls_back(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)
    monkeypatch.setattr(logger, "_json_output", True)

    logger.log_event({"event_type": "TEST", "value": object()})

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "LOGGER_SERIALIZATION_ERROR"


def test_text_mode_renders_key_values(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)
    monkeypatch.setattr(logger, "_json_output", False)

    logger.log_event({"event_type": "CLIENT_CONNECTED", "client_id": 3})

    assert captured == ["CLIENT_CONNECTED client_id=3"]


def test_closed_sink_never_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    def closed(_line: str) -> None:
        raise ValueError("I/O operation on closed file")

    monkeypatch.setattr(logger, "_print", closed)

    logger.log_event({"event_type": "TEST"})
