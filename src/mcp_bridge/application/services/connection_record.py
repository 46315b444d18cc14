"""Per-backend connection state held by the broker.

A ``ConnectionRecord`` is private to the broker. Callers only ever see
``ServiceSummary`` and ``ServiceTool`` snapshots, which are immutable and
detached from the live record.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from mcp_bridge.domain.enums import ConnectionStatus, TransportKind
from mcp_bridge.domain.models import ServiceDefinition
from mcp_bridge.infrastructure.mcp import IMcpTransport, McpPromptDefinition, McpResourceDefinition, McpServerInfo, McpToolDefinition


@dataclass(frozen=True)
class ServiceTool:
    """A tool advertised by a connected backend, tagged with its service."""

    service_id: str
    service_name: str
    name: str
    description: str
    input_schema: dict[str, Any]
    command: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "service_id": self.service_id,
            "service_name": self.service_name,
            "name": self.name,
            "description": self.description,
            "input_schema": dict(self.input_schema),
        }
        if self.command is not None:
            result["command"] = self.command
        return result


@dataclass(frozen=True)
class ServiceSummary:
    """Snapshot of a backend's registration and connection state."""

    id: str
    name: str
    description: str
    transport: TransportKind
    enabled: bool
    status: ConnectionStatus
    tool_count: int
    resource_count: int
    prompt_count: int
    last_error: str | None = None
    connected_at: datetime | None = None
    server_name: str | None = None
    server_version: str | None = None
    tools: tuple[McpToolDefinition, ...] = ()
    resources: tuple[McpResourceDefinition, ...] = ()
    prompts: tuple[McpPromptDefinition, ...] = ()

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the shape exposed to HTTP callers."""
        result: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.transport.value,
            "enabled": self.enabled,
            "status": self.status.value,
            "tool_count": self.tool_count,
            "resource_count": self.resource_count,
            "prompt_count": self.prompt_count,
            "last_error": self.last_error,
            "connected_at": self.connected_at.isoformat() if self.connected_at else None,
        }
        if self.server_name is not None:
            result["server"] = {"name": self.server_name, "version": self.server_version}
        if self.tools or self.resources or self.prompts:
            result["tools"] = [tool.to_dict() for tool in self.tools]
            result["resources"] = [resource.to_dict() for resource in self.resources]
            result["prompts"] = [prompt.to_dict() for prompt in self.prompts]
        return result


@dataclass
class ConnectionRecord:
    """Live state of one registered backend.

    The capability caches are only populated while ``status`` is connected.
    They are replaced wholesale on every successful connect and cleared
    whenever the record leaves the connected state.
    """

    definition: ServiceDefinition
    transport: IMcpTransport
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    tools: list[McpToolDefinition] = field(default_factory=list)
    resources: list[McpResourceDefinition] = field(default_factory=list)
    prompts: list[McpPromptDefinition] = field(default_factory=list)
    last_error: str | None = None
    connected_at: datetime | None = None
    server_info: McpServerInfo | None = None
    # Incremented by every connect attempt; an attempt that finds a newer one has started backs off
    attempt: int = 0

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    def clear_capabilities(self) -> None:
        self.tools = []
        self.resources = []
        self.prompts = []
        self.server_info = None

    def service_tools(self) -> list[ServiceTool]:
        """Cached tools tagged with this service, with any configured command mapping."""
        tools = []
        for tool in self.tools:
            declared = self.definition.find_tool(tool.name)
            tools.append(
                ServiceTool(
                    service_id=self.id,
                    service_name=self.definition.name,
                    name=tool.name,
                    description=tool.description,
                    input_schema=dict(tool.input_schema),
                    command=declared.command if declared else None,
                )
            )
        return tools

    def summary(self, include_capabilities: bool = False) -> ServiceSummary:
        return ServiceSummary(
            id=self.id,
            name=self.definition.name,
            description=self.definition.description,
            transport=self.definition.transport,
            enabled=self.definition.enabled,
            status=self.status,
            tool_count=len(self.tools),
            resource_count=len(self.resources),
            prompt_count=len(self.prompts),
            last_error=self.last_error,
            connected_at=self.connected_at,
            server_name=self.server_info.name if self.server_info else None,
            server_version=self.server_info.version if self.server_info else None,
            tools=tuple(self.tools) if include_capabilities else (),
            resources=tuple(self.resources) if include_capabilities else (),
            prompts=tuple(self.prompts) if include_capabilities else (),
        )
