"""SessionTransport - shared base for transports driven by the MCP SDK.

The SDK's stream contexts (``stdio_client``, ``sse_client``,
``websocket_client``) and ``ClientSession`` are anyio task groups: they must
be entered and exited by the same task. Each connection therefore runs in a
dedicated runner task that opens the streams, performs the initialization
handshake, signals readiness through a future and then parks until asked to
stop. ``connect()`` waits on the readiness future; cancelling it (e.g. on a
connection timeout) cancels the runner, and leaving the contexts tears down
the subprocess or socket.

The runner also relays the backend read stream. When it ends while the
session is established, the registered session-lost handler is notified so
an idle backend crash is noticed without waiting for the next request.
"""

import asyncio
import logging
from abc import abstractmethod
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from datetime import timedelta
from typing import Any, TypeVar

import anyio
from mcp import ClientSession
from mcp.shared.exceptions import McpError
from mcp.types import CONNECTION_CLOSED
from pydantic import AnyUrl, ValidationError

from .models import McpPromptDefinition, McpPromptResult, McpResourceDefinition, McpResourceResult, McpServerInfo, McpToolDefinition, McpToolResult
from .transport import IMcpTransport, McpConnectionError, McpProtocolError, McpRemoteError, McpTimeoutError, McpTransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default timeout for MCP requests (seconds)
DEFAULT_TIMEOUT = 30.0
# How long disconnect() waits for the runner to release the session
DEFAULT_DISCONNECT_TIMEOUT = 5.0

# Error code the SDK uses when a request outlives its read timeout
REQUEST_TIMEOUT_CODE = 408

_CLOSED_STREAM_ERRORS = (anyio.ClosedResourceError, anyio.BrokenResourceError, anyio.EndOfStream)


def _dump(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def unwrap_exception(error: BaseException) -> BaseException:
    """Return the first leaf of nested exception groups raised by anyio task groups."""
    while isinstance(error, BaseExceptionGroup) and error.exceptions:
        error = error.exceptions[0]
    return error


def describe_exception(error: BaseException) -> str:
    """Readable message for exceptions whose ``str()`` is empty (EndOfStream, ClosedResourceError)."""
    return str(error) or f"{type(error).__name__}: connection closed"


class SessionTransport(IMcpTransport):
    """Base class running an SDK ``ClientSession`` inside a runner task.

    Subclasses provide ``_open_streams()`` (the SDK stream context for their
    channel) and may refine ``_translate_error()`` for channel-specific
    failures (HTTP status, WebSocket handshake, missing executable).
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, disconnect_timeout: float = DEFAULT_DISCONNECT_TIMEOUT):
        self._timeout = timeout
        self._disconnect_timeout = disconnect_timeout

        # Runtime state
        self._session: ClientSession | None = None
        self._server_info: McpServerInfo | None = None
        self._runner: asyncio.Task[None] | None = None
        self._ready: asyncio.Future[McpServerInfo] | None = None
        self._stop: asyncio.Event | None = None

    @abstractmethod
    def _open_streams(self) -> AbstractAsyncContextManager[Any]:
        """Return the SDK context yielding ``(read_stream, write_stream, ...)``."""
        ...

    @abstractmethod
    def describe(self) -> str:
        """Short human-readable target (command line or URL) for log and error messages."""
        ...

    def _translate_error(self, error: BaseException) -> McpTransportError | None:
        """Map a channel-specific failure onto the transport error hierarchy.

        Returns None when the subclass has nothing specific to say.
        """
        return None

    @property
    def is_connected(self) -> bool:
        return self._session is not None and self._runner is not None and not self._runner.done()

    @property
    def server_info(self) -> McpServerInfo | None:
        return self._server_info if self.is_connected else None

    async def connect(self) -> McpServerInfo:
        """Start the runner task and wait for the initialization handshake.

        Raises:
            McpConnectionError: If the channel cannot be opened or is closed during the handshake
            McpProtocolError: If the server rejects the handshake
            McpTimeoutError: If the server does not answer in time
        """
        if self._runner is not None and not self._runner.done():
            raise McpConnectionError("Transport already connected")

        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self._stop = asyncio.Event()
        self._runner = asyncio.create_task(self._run_session(self._ready, self._stop), name=f"mcp-session {self.describe()}")

        logger.debug(f"Opening MCP session: {self.describe()}")
        try:
            self._server_info = await self._ready
        except BaseException:
            # Covers cancellation by a caller-side timeout: the runner must not outlive connect()
            await self.disconnect()
            raise

        logger.info(f"MCP transport connected to {self._server_info.name} v{self._server_info.version}")
        return self._server_info

    async def _run_session(self, ready: "asyncio.Future[McpServerInfo]", stop: asyncio.Event) -> None:
        lost = False
        established = False
        try:
            async with self._open_streams() as streams:
                read_stream, write_stream = streams[0], streams[1]
                forward_send, forward_receive = anyio.create_memory_object_stream(0)

                async def watch_read_stream() -> None:
                    # Relays backend messages; the end of the stream means the backend went away
                    nonlocal lost
                    try:
                        async with forward_send:
                            async for message in read_stream:
                                await forward_send.send(message)
                    except _CLOSED_STREAM_ERRORS:
                        logger.debug(f"Read stream from {self.describe()} closed")
                    if not stop.is_set():
                        lost = True
                        stop.set()

                async with anyio.create_task_group() as task_group:
                    task_group.start_soon(watch_read_stream)
                    async with ClientSession(forward_receive, write_stream, read_timeout_seconds=timedelta(seconds=self._timeout)) as session:
                        init_result = await session.initialize()
                        self._session = session
                        established = True
                        if not ready.done():
                            ready.set_result(McpServerInfo.from_dict(_dump(init_result)))
                        await stop.wait()
                    task_group.cancel_scope.cancel()
        except asyncio.CancelledError:
            # A pending connect() sees a connection error, not a stray cancellation
            if not ready.done():
                ready.set_exception(McpConnectionError(f"Connection to {self.describe()} closed before initialization completed"))
            raise
        except Exception as e:
            error = self._to_transport_error(e, "initialize")
            if not ready.done():
                ready.set_exception(error)
            else:
                logger.warning(f"MCP session with {self.describe()} ended unexpectedly: {error}")
                if not stop.is_set():
                    lost = True
        finally:
            self._session = None

        if lost and established:
            logger.warning(f"MCP server {self.describe()} closed the session")
            self._notify_session_lost()

    async def disconnect(self) -> None:
        """Stop the runner and wait for the subprocess or socket to be released.

        This method is idempotent - safe to call multiple times.
        """
        runner, self._runner = self._runner, None
        ready, stop = self._ready, self._stop
        self._session = None
        self._server_info = None

        if runner is None or runner.done():
            return

        # A connect() cancelled mid-handshake leaves ``ready`` cancelled and the runner still opening
        if ready is not None and ready.done() and not ready.cancelled() and stop is not None:
            stop.set()
        else:
            runner.cancel()

        done, _ = await asyncio.wait({runner}, timeout=self._disconnect_timeout)
        if not done:
            logger.warning(f"MCP session with {self.describe()} did not close within {self._disconnect_timeout}s, cancelling")
            runner.cancel()
            await asyncio.wait({runner}, timeout=self._disconnect_timeout)
        logger.debug(f"MCP transport disconnected: {self.describe()}")

    def _mark_lost(self) -> None:
        self._session = None
        if self._stop is not None:
            self._stop.set()

    def _require_session(self) -> ClientSession:
        if self._session is None or not self.is_connected:
            raise McpConnectionError("Transport not connected")
        return self._session

    async def _request(self, operation: str, call: Callable[[ClientSession], Awaitable[T]]) -> T:
        """Run one request on the live session, translating SDK failures."""
        session = self._require_session()
        logger.debug(f"Sending MCP request: {operation}")
        try:
            return await call(session)
        except McpError as e:
            if e.error.code == CONNECTION_CLOSED:
                self._mark_lost()
                raise McpConnectionError(f"Connection to {self.describe()} closed during {operation}", e) from e
            if e.error.code == REQUEST_TIMEOUT_CODE:
                raise McpTimeoutError(f"{operation} timed out after {self._timeout}s", e) from e
            raise McpRemoteError(e.error.message, code=e.error.code, cause=e) from e
        except _CLOSED_STREAM_ERRORS as e:
            self._mark_lost()
            raise McpConnectionError(f"Connection to {self.describe()} lost during {operation}: {describe_exception(e)}", e) from e

    def _to_transport_error(self, error: BaseException, operation: str) -> McpTransportError:
        leaf = unwrap_exception(error)
        if isinstance(leaf, McpTransportError):
            return leaf

        translated = self._translate_error(leaf)
        if translated is not None:
            return translated

        if isinstance(leaf, McpError):
            if leaf.error.code == CONNECTION_CLOSED:
                return McpConnectionError(f"{self.describe()} closed the connection during {operation}", leaf)
            if leaf.error.code == REQUEST_TIMEOUT_CODE:
                return McpTimeoutError(f"{operation} timed out after {self._timeout}s", leaf)
            return McpProtocolError(f"MCP error {leaf.error.code}: {leaf.error.message}", leaf)
        if isinstance(leaf, _CLOSED_STREAM_ERRORS):
            return McpConnectionError(f"{self.describe()} closed the connection during {operation}", leaf)
        if isinstance(leaf, TimeoutError):
            return McpTimeoutError(f"{operation} timed out", leaf)
        if isinstance(leaf, OSError):
            return McpConnectionError(f"Failed to reach MCP server {self.describe()}: {leaf}", leaf)
        return McpProtocolError(f"MCP {operation} failed: {describe_exception(leaf)}", leaf)

    async def list_tools(self) -> list[McpToolDefinition]:
        result = await self._request("tools/list", lambda session: session.list_tools())
        tools = [McpToolDefinition.from_dict(_dump(tool)) for tool in result.tools]
        logger.debug(f"Discovered {len(tools)} tools from {self.describe()}")
        return tools

    async def list_resources(self) -> list[McpResourceDefinition]:
        result = await self._request("resources/list", lambda session: session.list_resources())
        return [McpResourceDefinition.from_dict(_dump(resource)) for resource in result.resources]

    async def list_prompts(self) -> list[McpPromptDefinition]:
        result = await self._request("prompts/list", lambda session: session.list_prompts())
        return [McpPromptDefinition.from_dict(_dump(prompt)) for prompt in result.prompts]

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> McpToolResult:
        logger.debug(f"Calling MCP tool '{tool_name}' on {self.describe()}")
        result = await self._request(f"tools/call {tool_name}", lambda session: session.call_tool(tool_name, arguments))
        return McpToolResult.from_dict(_dump(result))

    async def read_resource(self, uri: str) -> McpResourceResult:
        try:
            resource_uri = AnyUrl(uri)
        except ValidationError as e:
            raise McpProtocolError(f"Invalid resource URI: {uri}", e) from e
        result = await self._request(f"resources/read {uri}", lambda session: session.read_resource(resource_uri))
        return McpResourceResult.from_dict(_dump(result))

    async def get_prompt(self, prompt_name: str, arguments: dict[str, str] | None = None) -> McpPromptResult:
        result = await self._request(f"prompts/get {prompt_name}", lambda session: session.get_prompt(prompt_name, arguments))
        return McpPromptResult.from_dict(_dump(result))
