"""SseTransport - MCP transport over HTTP Server-Sent Events.

The client opens a long-lived GET stream for server-to-client messages and
POSTs requests to the endpoint the server announces on that stream. Both
halves are handled by the SDK's ``sse_client``; this class only supplies the
connection parameters and maps HTTP failures onto transport errors.
"""

import logging
from contextlib import AbstractAsyncContextManager
from typing import Any

import httpx
from mcp.client.sse import sse_client

from .session_transport import DEFAULT_DISCONNECT_TIMEOUT, DEFAULT_TIMEOUT, SessionTransport
from .transport import McpConnectionError, McpTimeoutError, McpTransportError

logger = logging.getLogger(__name__)

# How long the event stream may stay silent before it is considered dead
DEFAULT_SSE_READ_TIMEOUT = 300.0


class SseTransport(SessionTransport):
    """MCP transport for remote servers exposing an SSE endpoint.

    Attributes:
        url: Full URL of the server's SSE endpoint (e.g., http://localhost:8000/sse)
        headers: HTTP headers sent with every request (e.g., Authorization)
        timeout: HTTP and MCP request timeout (seconds)
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        sse_read_timeout: float = DEFAULT_SSE_READ_TIMEOUT,
        disconnect_timeout: float = DEFAULT_DISCONNECT_TIMEOUT,
    ):
        if not url:
            raise ValueError("URL cannot be empty")

        super().__init__(timeout=timeout, disconnect_timeout=disconnect_timeout)
        self._url = url
        self._headers = headers or {}
        self._sse_read_timeout = sse_read_timeout

    @property
    def url(self) -> str:
        return self._url

    def describe(self) -> str:
        return self._url

    def _open_streams(self) -> AbstractAsyncContextManager[Any]:
        logger.info(f"Connecting to remote MCP server: {self._url}")
        logger.debug(f"SSE request headers: {list(self._headers.keys())}")
        return sse_client(
            self._url,
            headers=self._headers or None,
            timeout=self._timeout,
            sse_read_timeout=self._sse_read_timeout,
        )

    def _translate_error(self, error: BaseException) -> McpTransportError | None:
        if isinstance(error, httpx.HTTPStatusError):
            return McpConnectionError(f"HTTP error {error.response.status_code} from {self._url}", error)
        if isinstance(error, httpx.TimeoutException):
            return McpTimeoutError(f"Connection to {self._url} timed out after {self._timeout}s", error)
        if isinstance(error, httpx.RequestError):
            return McpConnectionError(f"Cannot connect to MCP server at {self._url}: {error}", error)
        return None
