"""Backend service enumerations.

These enums describe how a backend is reached and where its connection
currently sits in the broker's lifecycle.
"""

from enum import Enum


class TransportKind(str, Enum):
    """Transport used to reach an MCP backend."""

    STDIO = "stdio"  # Spawned subprocess, JSON-RPC over stdin/stdout
    SSE = "sse"  # HTTP Server-Sent Events stream
    WEBSOCKET = "websocket"  # Persistent WebSocket stream

    @property
    def is_remote(self) -> bool:
        """Whether the backend is reached over the network (url-based)."""
        return self != TransportKind.STDIO


class ConnectionStatus(str, Enum):
    """Lifecycle status of a backend connection.

    Allowed transitions:
        DISCONNECTED -> CONNECTING
        CONNECTING -> CONNECTED | ERROR | DISCONNECTED (manual disconnect)
        CONNECTED -> DISCONNECTED (manual disconnect or lost session)
        ERROR -> CONNECTING (scheduled retry or manual connect)
    """

    DISCONNECTED = "disconnected"  # Initial state, no session
    CONNECTING = "connecting"  # Connect attempt in flight
    CONNECTED = "connected"  # Live session, capability caches populated
    ERROR = "error"  # Last attempt failed, retry scheduled

    @property
    def is_active(self) -> bool:
        """Whether a session is open or being opened."""
        return self in (ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED)
