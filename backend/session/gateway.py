"""
Connection gateway.

Responsibilities:
- One gateway per websocket connection
- Register / unregister the client in the ServerSession
- Decode inbound text frames into audio packets
- Hand packets to the shared recorder, honoring its backpressure
- Produce outbound messages (welcome) for the route to send

NOT responsible for:
- Websocket I/O (routes.py flushes GatewayResult)
- Recording lifecycle (console / HTTP routes call start/stop)
- Anything that could affect another connection
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from audio.recorder import StreamingWavRecorder
from config import AudioFormatConfig
from observability.logger import log_event
from protocol.audio_event import decode_audio_message
from session.server_session import ClientStats, ServerSession

# Sample previews are logged for the first few packets of each client
_PREVIEW_PACKETS = 3
_PREVIEW_SAMPLES = 10


# ------------------------------------------------------------------
# Gateway result
# ------------------------------------------------------------------

@dataclass(frozen=True)
class GatewayResult:
    """
    Return value for gateway boundary methods.

    outbound_json:
        JSON messages to send to the client
    """
    outbound_json: tuple[dict[str, Any], ...] = ()


# ------------------------------------------------------------------
# ConnectionGateway
# ------------------------------------------------------------------

class ConnectionGateway:
    """One gateway == one websocket client."""

    def __init__(
        self,
        *,
        server_session: ServerSession,
        recorder: StreamingWavRecorder,
        audio_format: AudioFormatConfig,
    ) -> None:
        self._server = server_session
        self._recorder = recorder
        self._audio_format = audio_format
        self.client: ClientStats | None = None

    def on_ws_connect(self, remote: str | None = None) -> GatewayResult:
        """Called once the websocket handshake is accepted."""
        self.client = self._server.register_client(remote)

        log_event({
            "event_type": "CLIENT_CONNECTED",
            **self.client.log_context(),
        })

        welcome: dict[str, Any] = {
            "type": "welcome",
            "message": "Connected to audio streaming server",
            "clientId": self.client.client_id,
        }
        return GatewayResult(outbound_json=(welcome,))

    def on_ws_disconnect(self, code: int | None = None, reason: str | None = None) -> None:
        """Called when the websocket closes, whatever the cause."""
        if self.client is None:
            log_event({
                "event_type": "WS_DISCONNECT_WITHOUT_CLIENT",
                "code": code,
                "reason": reason,
            })
            return

        client = self.client
        self._server.unregister_client(client.client_id)
        self.client = None

        log_event({
            "event_type": "CLIENT_DISCONNECTED",
            **client.log_context(),
            "code": code,
            "reason": reason,
            "total_packets": client.packets,
            "total_bytes": client.bytes,
            "duration_s": round(client.streaming_duration_s(), 2),
        })

    async def on_text_message(self, payload: str) -> GatewayResult:
        """
        Decode one text frame and record it if it is an audio event.

        Malformed frames are logged by the decoder and dropped; the
        connection stays open.
        """
        if self.client is None:
            log_event({
                "event_type": "MESSAGE_WITHOUT_CLIENT",
                "payload_preview": payload[:100],
            })
            return GatewayResult()

        decoded = decode_audio_message(payload, defaults=self._audio_format)
        if decoded is None:
            return GatewayResult()

        self._server.record_packet(self.client, decoded.byte_length)

        event: dict[str, Any] = {
            "event_type": "AUDIO_PACKET_RECEIVED",
            **self.client.log_context(),
            "packet_num": self.client.packets,
            "sample_rate": decoded.sample_rate,
            "channels": decoded.channels,
            "samples": int(decoded.samples.size),
            "total_bytes": self.client.bytes,
        }
        if self.client.packets <= _PREVIEW_PACKETS:
            event["first_samples"] = decoded.samples[:_PREVIEW_SAMPLES].tolist()
        log_event(event)

        if not self._recorder.write_packet(decoded):
            # Recorder queue is saturated: stop reading from this socket
            # until the writer catches up.
            await self._recorder.drain()

        return GatewayResult()

    def on_binary_message(self, payload: bytes) -> GatewayResult:
        """Binary frames are not part of the protocol; log and ignore."""
        log_event({
            "event_type": "BINARY_MESSAGE_IGNORED",
            **(self.client.log_context() if self.client else {}),
            "payload_len": len(payload),
        })
        return GatewayResult()
