"""MCP Bridge: connection broker for Model Context Protocol backends.

Owns the lifecycle of every configured MCP backend (stdio subprocess, SSE
stream or WebSocket), recovers failed connections in the background, and
routes tool calls, resource reads and prompt fetches to live sessions.
"""

__version__ = "1.0.0"
