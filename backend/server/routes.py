"""
Route registration for the audio streaming server.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Wire a ConnectionGateway to each WebSocket lifecycle
- Pull dependencies from app.state
- Close every client on server shutdown
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketState

from audio.recorder import RecordingFinalizeError, StreamingWavRecorder
from constants import SERVER_SHUTDOWN_CLOSE_REASON, WS_NORMAL_CLOSURE
from observability.logger import log_event
from session.gateway import ConnectionGateway, GatewayResult
from session.server_session import ServerSession

# Internal error close code (RFC 6455 §7.4.1)
_WS_INTERNAL_ERROR = 1011


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    app.state.active_sockets = set()

    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/stats")
    async def stats() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        server_session: ServerSession = app.state.server_session
        recorder: StreamingWavRecorder = app.state.recorder
        return {
            **server_session.snapshot(),
            "recording": recorder.status().to_dict(),
        }

    @app.get("/recording")
    async def recording_status() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        recorder: StreamingWavRecorder = app.state.recorder
        return recorder.status().to_dict()

    @app.post("/recording/start")
    async def recording_start() -> JSONResponse: # pyright: ignore[reportUnusedFunction]
        recorder: StreamingWavRecorder = app.state.recorder
        server_session: ServerSession = app.state.server_session

        file_path = recorder.start(server_running=server_session.is_running)
        if file_path is None:
            return JSONResponse(
                status_code=409,
                content={"started": False, **recorder.status().to_dict()},
            )
        return JSONResponse(content={"started": True, "file_path": str(file_path)})

    @app.post("/recording/stop")
    async def recording_stop() -> JSONResponse: # pyright: ignore[reportUnusedFunction]
        recorder: StreamingWavRecorder = app.state.recorder
        try:
            summary = await recorder.stop()
        except RecordingFinalizeError as exc:
            return JSONResponse(
                status_code=500,
                content={"stopped": True, "error": str(exc)},
            )

        if summary is None:
            return JSONResponse(status_code=409, content={"stopped": False})
        return JSONResponse(content={"stopped": True, **summary.to_dict()})

    async def websocket_endpoint(ws: WebSocket) -> None:
        """
        Audio streaming endpoint.

        One connection = one gateway. Failures are contained to this
        connection; the recorder and other clients are unaffected.
        """
        await ws.accept()

        gateway = ConnectionGateway(
            server_session=app.state.server_session,
            recorder=app.state.recorder,
            audio_format=app.state.config.audio_format,
        )
        remote = f"{ws.client.host}:{ws.client.port}" if ws.client else None
        close_code: int | None = None
        close_reason: str | None = None

        app.state.active_sockets.add(ws)
        try:
            result = gateway.on_ws_connect(remote)
            await _flush_gateway_result(ws, result)

            while True:
                msg = await ws.receive()

                if msg["type"] == "websocket.disconnect":
                    close_code = msg.get("code")
                    close_reason = msg.get("reason")
                    break

                if msg.get("text") is not None:
                    result = await gateway.on_text_message(msg["text"])
                    await _flush_gateway_result(ws, result)

                elif msg.get("bytes") is not None:
                    result = gateway.on_binary_message(msg["bytes"])
                    await _flush_gateway_result(ws, result)

        except WebSocketDisconnect as exc:
            close_code = exc.code
            close_reason = exc.reason

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "WS_FATAL_ERROR",
                **(gateway.client.log_context() if gateway.client else {}),
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            close_code = _WS_INTERNAL_ERROR
            close_reason = "server_error"
            if ws.application_state != WebSocketState.DISCONNECTED:
                await ws.close(code=_WS_INTERNAL_ERROR)

        finally:
            app.state.active_sockets.discard(ws)
            gateway.on_ws_disconnect(code=close_code, reason=close_reason)

    # Browser clients connect to the bare host:port
    app.add_api_websocket_route("/", websocket_endpoint)
    app.add_api_websocket_route("/ws", websocket_endpoint)


async def close_all_clients(
    app: FastAPI,
    *,
    code: int = WS_NORMAL_CLOSURE,
    reason: str = SERVER_SHUTDOWN_CLOSE_REASON,
) -> int:
    """
    Close every open client websocket.

    Returns the number of sockets a close frame was sent to.
    """
    closed = 0
    for ws in list(app.state.active_sockets):
        if ws.application_state != WebSocketState.CONNECTED:
            continue
        try:
            await ws.close(code=code, reason=reason)
            closed += 1
        except RuntimeError as exc:
            # Peer went away between the state check and the close frame
            log_event({
                "event_type": "WS_CLOSE_FAILED",
                "message": str(exc),
            })
    return closed


async def _flush_gateway_result(
    ws: WebSocket,
    result: GatewayResult,
) -> None:
    """Send all outbound messages produced by the gateway."""
    for msg in result.outbound_json:
        await ws.send_text(json.dumps(msg))
