"""WebSocketTransport - MCP transport over a persistent WebSocket stream.

Uses the SDK's ``websocket_client`` (``mcp`` subprotocol). The SDK client
does not accept custom handshake headers, so headers configured for a
WebSocket service are not sent.
"""

import logging
from contextlib import AbstractAsyncContextManager
from typing import Any

from mcp.client.websocket import websocket_client
from websockets.exceptions import InvalidHandshake, InvalidURI, WebSocketException

from .session_transport import DEFAULT_DISCONNECT_TIMEOUT, DEFAULT_TIMEOUT, SessionTransport
from .transport import McpConnectionError, McpTransportError

logger = logging.getLogger(__name__)


class WebSocketTransport(SessionTransport):
    """MCP transport for servers reachable at a ws:// or wss:// URL."""

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        disconnect_timeout: float = DEFAULT_DISCONNECT_TIMEOUT,
    ):
        if not url:
            raise ValueError("URL cannot be empty")

        super().__init__(timeout=timeout, disconnect_timeout=disconnect_timeout)
        self._url = url
        self._headers = headers or {}
        if self._headers:
            logger.debug(f"Ignoring handshake headers for WebSocket server {url}: {list(self._headers.keys())}")

    @property
    def url(self) -> str:
        return self._url

    def describe(self) -> str:
        return self._url

    def _open_streams(self) -> AbstractAsyncContextManager[Any]:
        logger.info(f"Connecting to WebSocket MCP server: {self._url}")
        return websocket_client(self._url)

    def _translate_error(self, error: BaseException) -> McpTransportError | None:
        if isinstance(error, InvalidURI):
            return McpConnectionError(f"Invalid WebSocket URL: {self._url}", error)
        if isinstance(error, InvalidHandshake):
            return McpConnectionError(f"WebSocket handshake with {self._url} failed: {error}", error)
        if isinstance(error, WebSocketException):
            return McpConnectionError(f"WebSocket error from {self._url}: {error}", error)
        return None
