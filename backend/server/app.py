"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Initialize shared resources (ServerSession, StreamingWavRecorder)
- Track server lifecycle through the lifespan hook
- Register routes
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from audio.recorder import RecordingFinalizeError, StreamingWavRecorder
from config import AppConfig
from observability.logger import log_event
from session.server_session import ServerSession

from server.routes import register_routes


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    server_session: ServerSession = app.state.server_session
    server_session.mark_started()
    log_event({
        "event_type": "SERVER_STARTED",
        "address": server_session.url,
    })

    try:
        yield
    finally:
        # A recording cannot outlive the server feeding it
        recorder: StreamingWavRecorder = app.state.recorder
        if recorder.is_recording:
            try:
                await recorder.stop()
            except RecordingFinalizeError as e:
                log_event({
                    "event_type": "RECORDING_FINALIZE_ON_SHUTDOWN_FAILED",
                    "message": str(e),
                })

        server_session.mark_stopped()
        log_event({
            "event_type": "SERVER_STOPPED",
            "address": server_session.url,
        })


def create_app(config: AppConfig | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with different configurations
    - Restarting the server from the console without rebuilding state
    - ASGI server compatibility
    """
    config = config or AppConfig.load_from_env()

    app = FastAPI(title="Audio Streaming Server", lifespan=_lifespan)

    app.state.config = config
    app.state.server_session = ServerSession(
        host=config.server_host,
        port=config.server_port,
    )
    # Process-wide: one recorder shared by every connection
    app.state.recorder = StreamingWavRecorder(
        audio_format=config.audio_format,
        recordings_dir=config.recordings_dir,
    )

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten if exposed beyond localhost
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app
