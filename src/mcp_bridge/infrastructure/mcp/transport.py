"""MCP transport interface.

Defines the abstract base class for all MCP transport implementations.
The connection broker only ever talks to this interface; the concrete
class is chosen once, from the service definition's transport kind.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import McpPromptDefinition, McpPromptResult, McpResourceDefinition, McpResourceResult, McpServerInfo, McpToolDefinition, McpToolResult

logger = logging.getLogger(__name__)


class McpTransportError(Exception):
    """Base exception for MCP transport errors.

    Raised when transport-level operations fail (connection, send, receive).
    """

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class McpConnectionError(McpTransportError):
    """Error establishing or maintaining connection to MCP server."""

    pass


class McpProtocolError(McpTransportError):
    """Error in MCP protocol communication (invalid messages, etc.)."""

    pass


class McpTimeoutError(McpTransportError):
    """Timeout waiting for MCP server response."""

    pass


class McpRemoteError(McpTransportError):
    """The backend delivered a JSON-RPC error for the request.

    The message is the backend's own error message, unmodified.
    """

    def __init__(self, message: str, code: int | None = None, cause: BaseException | None = None):
        super().__init__(message, cause)
        self.code = code


class IMcpTransport(ABC):
    """Abstract base class for MCP transport implementations.

    A transport owns the channel to one MCP server (subprocess, SSE stream or
    WebSocket) and the protocol session running over it.

    Implementations:
        - StdioTransport: Subprocess with stdin/stdout communication
        - SseTransport: Server-Sent Events over HTTP
        - WebSocketTransport: Persistent WebSocket stream

    Usage:
        transport = StdioTransport(command="uvx", args=["my-mcp-server"])
        await transport.connect()
        try:
            tools = await transport.list_tools()
            result = await transport.call_tool("my_tool", {"arg": "value"})
        finally:
            await transport.disconnect()

    A transport can be connected again after ``disconnect()``; the broker
    reuses one instance per registered service for the service's lifetime.
    """

    _session_lost_handler: Callable[[], None] | None = None

    @abstractmethod
    async def connect(self) -> "McpServerInfo":
        """Establish the session and perform the MCP initialization handshake.

        Returns:
            McpServerInfo with server name, version, and protocol version

        Raises:
            McpConnectionError: If the channel cannot be opened
            McpProtocolError: If the initialization handshake fails
            McpTimeoutError: If the server does not respond in time
        """
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the session and release the subprocess or socket.

        Idempotent, and never raises: teardown failures are logged.
        """
        ...

    @abstractmethod
    async def list_tools(self) -> list["McpToolDefinition"]:
        """Discover available tools (``tools/list``).

        Raises:
            McpConnectionError: If not connected
        """
        ...

    @abstractmethod
    async def list_resources(self) -> list["McpResourceDefinition"]:
        """Discover available resources (``resources/list``).

        Raises:
            McpConnectionError: If not connected
        """
        ...

    @abstractmethod
    async def list_prompts(self) -> list["McpPromptDefinition"]:
        """Discover available prompts (``prompts/list``).

        Raises:
            McpConnectionError: If not connected
        """
        ...

    @abstractmethod
    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> "McpToolResult":
        """Execute a tool call on the MCP server.

        A result the tool itself flags as an error is returned with
        ``is_error=True`` rather than raised.

        Raises:
            McpConnectionError: If not connected or the session is lost
            McpRemoteError: If the server answers with a JSON-RPC error
            McpTimeoutError: If the server does not respond in time
        """
        ...

    @abstractmethod
    async def read_resource(self, uri: str) -> "McpResourceResult":
        """Read a resource's contents (``resources/read``).

        Raises:
            McpConnectionError: If not connected or the session is lost
            McpRemoteError: If the server answers with a JSON-RPC error
        """
        ...

    @abstractmethod
    async def get_prompt(self, prompt_name: str, arguments: dict[str, str] | None = None) -> "McpPromptResult":
        """Render a prompt (``prompts/get``).

        Raises:
            McpConnectionError: If not connected or the session is lost
            McpRemoteError: If the server answers with a JSON-RPC error
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """True if connected and ready to send/receive messages."""
        ...

    @property
    @abstractmethod
    def server_info(self) -> "McpServerInfo | None":
        """Server info from the handshake if connected, None otherwise."""
        ...

    def set_session_lost_handler(self, handler: Callable[[], None] | None) -> None:
        """Register a callback fired when an established session ends without disconnect().

        The callback runs synchronously inside the transport and must not block;
        schedule any async work it needs.
        """
        self._session_lost_handler = handler

    def _notify_session_lost(self) -> None:
        handler = self._session_lost_handler
        if handler is None:
            return
        try:
            handler()
        except Exception as e:
            logger.error(f"Session lost handler failed: {e}")

    async def __aenter__(self) -> "IMcpTransport":
        """Async context manager entry - connects to server."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit - disconnects from server."""
        await self.disconnect()
