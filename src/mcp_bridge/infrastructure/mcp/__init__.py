"""MCP (Model Context Protocol) infrastructure layer.

This package provides the transport layer for communicating with MCP
backend servers. It includes:

- Transport abstractions and implementations (stdio, SSE, WebSocket)
- MCP payload models
- Environment variable resolution for services
- Transport creation from service definitions
"""

from .env_resolver import McpEnvironmentResolver, ResolutionResult
from .models import (
    McpContent,
    McpContentType,
    McpPromptDefinition,
    McpPromptResult,
    McpResourceContents,
    McpResourceDefinition,
    McpResourceResult,
    McpServerInfo,
    McpToolDefinition,
    McpToolResult,
)
from .session_transport import SessionTransport
from .sse_transport import SseTransport
from .stdio_transport import StdioTransport
from .transport import IMcpTransport, McpConnectionError, McpProtocolError, McpRemoteError, McpTimeoutError, McpTransportError
from .transport_factory import TransportFactory
from .websocket_transport import WebSocketTransport

__all__ = [
    # Transport interface
    "IMcpTransport",
    "McpTransportError",
    "McpConnectionError",
    "McpProtocolError",
    "McpTimeoutError",
    "McpRemoteError",
    # Transport implementations
    "SessionTransport",
    "StdioTransport",
    "SseTransport",
    "WebSocketTransport",
    # Factory
    "TransportFactory",
    # Payload models
    "McpContent",
    "McpContentType",
    "McpServerInfo",
    "McpToolDefinition",
    "McpToolResult",
    "McpResourceDefinition",
    "McpResourceContents",
    "McpResourceResult",
    "McpPromptDefinition",
    "McpPromptResult",
    # Environment
    "McpEnvironmentResolver",
    "ResolutionResult",
]
