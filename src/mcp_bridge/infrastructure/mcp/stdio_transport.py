"""StdioTransport - MCP transport using subprocess with stdin/stdout.

This transport spawns an MCP server as a subprocess and exchanges JSON-RPC
messages over its stdin/stdout pipes through the SDK's ``stdio_client``.

This is the most common transport for local MCP servers like uvx-based
or npx-based packages.
"""

import logging
import os
from contextlib import AbstractAsyncContextManager
from typing import Any

from mcp import StdioServerParameters
from mcp.client.stdio import stdio_client

from .session_transport import DEFAULT_DISCONNECT_TIMEOUT, DEFAULT_TIMEOUT, SessionTransport
from .transport import McpConnectionError, McpTransportError

logger = logging.getLogger(__name__)


class StdioTransport(SessionTransport):
    """MCP transport using subprocess with stdin/stdout communication.

    The transport manages the subprocess lifecycle:
    - connect(): Spawns process and performs MCP initialization
    - disconnect(): Closes stdin, terminates the process and cleans up

    Attributes:
        command: Executable to spawn
        args: Arguments passed to the executable
        environment: Environment variables merged over the current process environment
        cwd: Working directory for the subprocess
        timeout: Read timeout for MCP requests (seconds)
    """

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        environment: dict[str, str] | None = None,
        cwd: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        disconnect_timeout: float = DEFAULT_DISCONNECT_TIMEOUT,
    ):
        """Initialize the StdioTransport.

        Args:
            command: Executable to spawn the MCP server (e.g., "uvx")
            args: Arguments for the executable (e.g., ["mcp-server-fetch"])
            environment: Additional environment variables to set.
                        These are merged with the current process environment.
            cwd: Working directory for the subprocess.
                 Defaults to current directory.
            timeout: Read timeout for requests in seconds.
            disconnect_timeout: How long to wait for the process to exit on disconnect.
        """
        if not command:
            raise ValueError("Command cannot be empty")

        super().__init__(timeout=timeout, disconnect_timeout=disconnect_timeout)
        self._command = command
        self._args = list(args or [])
        self._environment = environment or {}
        self._cwd = cwd

    @property
    def command_line(self) -> list[str]:
        return [self._command, *self._args]

    def describe(self) -> str:
        return " ".join(self.command_line)

    def _open_streams(self) -> AbstractAsyncContextManager[Any]:
        # Build environment: current env + custom env
        env = {**os.environ, **self._environment}
        logger.debug(f"Spawning MCP server: {self.describe()}")
        params = StdioServerParameters(command=self._command, args=self._args, env=env, cwd=self._cwd)
        return stdio_client(params)

    def _translate_error(self, error: BaseException) -> McpTransportError | None:
        if isinstance(error, FileNotFoundError):
            return McpConnectionError(f"MCP server command not found: {self._command}", error)
        if isinstance(error, PermissionError):
            return McpConnectionError(f"MCP server command is not executable: {self._command}", error)
        return None
