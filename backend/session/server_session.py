"""
Server session container.

- Owns process-wide server statistics (uptime, client and traffic totals)
- Owns per-client statistics for connected clients
- Passed explicitly to connection gateways (no module-level globals)
- NOT a state machine
- Contains no transport or recording logic
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any


# ---------------------------------------------------------------------
# ClientStats
# ---------------------------------------------------------------------

@dataclass
class ClientStats:
    """Traffic counters for a single websocket client."""

    client_id: int
    remote: str | None = None
    connected_at: float = field(default_factory=time.time)

    packets: int = 0
    bytes: int = 0
    first_packet_at: float | None = None
    last_packet_at: float | None = None

    def record_packet(self, nbytes: int, *, ts: float | None = None) -> None:
        now = time.time() if ts is None else ts
        if self.first_packet_at is None:
            self.first_packet_at = now
        self.last_packet_at = now
        self.packets += 1
        self.bytes += nbytes

    def streaming_duration_s(self) -> float:
        """Time between the first and last audio packet (0 if fewer than two)."""
        if self.first_packet_at is None or self.last_packet_at is None:
            return 0.0
        return self.last_packet_at - self.first_packet_at

    def log_context(self) -> dict[str, Any]:
        return {
            "client_id": self.client_id,
            "remote": self.remote,
        }


# ---------------------------------------------------------------------
# ServerSession
# ---------------------------------------------------------------------

@dataclass
class ServerSession:
    """Mutable runtime container for one server process."""

    host: str
    port: int

    is_running: bool = False
    started_at: float | None = None

    total_clients: int = 0
    total_packets: int = 0
    total_bytes: int = 0

    clients: dict[int, ClientStats] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def mark_started(self) -> None:
        self.is_running = True
        self.started_at = time.time()

    def mark_stopped(self) -> None:
        self.is_running = False
        self.started_at = None
        self.clients.clear()

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    def register_client(self, remote: str | None = None) -> ClientStats:
        """Assign the next client id (ids are never reused within a process)."""
        self.total_clients += 1
        stats = ClientStats(client_id=self.total_clients, remote=remote)
        self.clients[stats.client_id] = stats
        return stats

    def unregister_client(self, client_id: int) -> ClientStats | None:
        return self.clients.pop(client_id, None)

    def record_packet(self, client: ClientStats, nbytes: int) -> None:
        client.record_packet(nbytes)
        self.total_packets += 1
        self.total_bytes += nbytes

    # ------------------------------------------------------------------
    # Observability helpers (read-only)
    # ------------------------------------------------------------------

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"

    def uptime_s(self) -> float:
        if not self.is_running or self.started_at is None:
            return 0.0
        return time.time() - self.started_at

    def snapshot(self) -> dict[str, Any]:
        """Status report used by the console and GET /stats."""
        return {
            "status": "RUNNING" if self.is_running else "STOPPED",
            "address": self.url,
            "uptime_s": round(self.uptime_s(), 2),
            "connected_clients": len(self.clients),
            "total_clients": self.total_clients,
            "total_packets": self.total_packets,
            "total_bytes": self.total_bytes,
        }
