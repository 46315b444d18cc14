"""ServiceDefinition value object.

Describes one configured MCP backend: how to reach it (transport kind and
its parameters), whether it should be connected automatically, and the
tool/resource/prompt metadata declared for it in configuration.

A definition is immutable. Reconfiguring a backend means registering a new
definition under the same id, which replaces the previous connection record.
"""

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from mcp_bridge.domain.enums import TransportKind


class ServiceConfigurationError(ValueError):
    """Raised when a service definition is missing a required parameter."""

    def __init__(self, message: str, service_id: str | None = None):
        super().__init__(message)
        self.service_id = service_id


@dataclass(frozen=True)
class ToolMetadata:
    """Tool declared for a service in configuration.

    ``command`` optionally maps the tool onto a named command of the calling
    application (e.g. a slash command) so callers can route to it by name.
    """

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)
    command: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        result: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "input_schema": dict(self.input_schema),
        }
        if self.command is not None:
            result["command"] = self.command
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolMetadata":
        """Deserialize from dictionary."""
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            input_schema=data.get("input_schema", data.get("inputSchema", {})) or {},
            command=data.get("command"),
        )


@dataclass(frozen=True)
class ResourceMetadata:
    """Resource declared for a service in configuration."""

    uri: str
    name: str
    description: str = ""
    mime_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "mime_type": self.mime_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResourceMetadata":
        """Deserialize from dictionary."""
        return cls(
            uri=data["uri"],
            name=data["name"],
            description=data.get("description", ""),
            mime_type=data.get("mime_type", data.get("mimeType")),
        )


@dataclass(frozen=True)
class PromptMetadata:
    """Prompt declared for a service in configuration."""

    name: str
    description: str = ""
    arguments: tuple[dict[str, Any], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.name,
            "description": self.description,
            "arguments": [dict(arg) for arg in self.arguments],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PromptMetadata":
        """Deserialize from dictionary."""
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            arguments=tuple(data.get("arguments") or ()),
        )


@dataclass(frozen=True)
class ServiceDefinition:
    """Configuration of one MCP backend service.

    Transport parameters:
        - stdio: ``command`` (required), ``args``, ``env``
        - sse / websocket: ``url`` (required), ``headers``

    This is an immutable value object.
    """

    id: str
    name: str
    transport: TransportKind
    enabled: bool = True
    description: str = ""

    # stdio transport
    command: str | None = None
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)

    # sse / websocket transports
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    # Declared capabilities (informational, the backend's own lists win once connected)
    tools: tuple[ToolMetadata, ...] = ()
    resources: tuple[ResourceMetadata, ...] = ()
    prompts: tuple[PromptMetadata, ...] = ()

    def validate(self) -> None:
        """Check that the definition carries everything its transport needs.

        Raises:
            ServiceConfigurationError: If a required parameter is missing or malformed
        """
        if not self.id or not self.id.strip():
            raise ServiceConfigurationError("Service id is required")
        if not self.name or not self.name.strip():
            raise ServiceConfigurationError(f"Service {self.id} requires a name", self.id)

        if self.transport == TransportKind.STDIO:
            if not self.command:
                raise ServiceConfigurationError(f"Service {self.id}: stdio transport requires 'command'", self.id)
            return

        if not self.url:
            raise ServiceConfigurationError(f"Service {self.id}: {self.transport.value} transport requires 'url'", self.id)

        scheme = urlparse(self.url).scheme
        allowed = ("http", "https") if self.transport == TransportKind.SSE else ("ws", "wss")
        if scheme not in allowed:
            raise ServiceConfigurationError(
                f"Service {self.id}: {self.transport.value} url must use one of {', '.join(allowed)} (got '{self.url}')",
                self.id,
            )

    def find_tool(self, name: str) -> ToolMetadata | None:
        """Look up a declared tool by name or by its mapped command."""
        for tool in self.tools:
            if tool.name == name or (tool.command is not None and tool.command == name):
                return tool
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for configuration documents."""
        result: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.transport.value,
            "enabled": self.enabled,
        }
        if self.transport == TransportKind.STDIO:
            result["command"] = self.command
            result["args"] = list(self.args)
            result["env"] = dict(self.env)
        else:
            result["url"] = self.url
            result["headers"] = dict(self.headers)
        if self.tools:
            result["tools"] = [tool.to_dict() for tool in self.tools]
        if self.resources:
            result["resources"] = [resource.to_dict() for resource in self.resources]
        if self.prompts:
            result["prompts"] = [prompt.to_dict() for prompt in self.prompts]
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServiceDefinition":
        """Deserialize from a configuration document entry.

        Raises:
            ServiceConfigurationError: If required keys are missing or the transport is unknown
        """
        service_id = data.get("id")
        if not service_id:
            raise ServiceConfigurationError("Service entry is missing 'id'")

        raw_transport = data.get("type", data.get("transport"))
        try:
            transport = TransportKind(raw_transport)
        except ValueError as e:
            supported = ", ".join(kind.value for kind in TransportKind)
            raise ServiceConfigurationError(f"Service {service_id}: unsupported transport '{raw_transport}' (supported: {supported})", service_id) from e

        return cls(
            id=service_id,
            name=data.get("name", ""),
            transport=transport,
            enabled=bool(data.get("enabled", True)),
            description=data.get("description", "") or "",
            command=data.get("command"),
            args=tuple(data.get("args") or ()),
            env=dict(data.get("env") or {}),
            url=data.get("url"),
            headers=dict(data.get("headers") or {}),
            tools=tuple(ToolMetadata.from_dict(tool) for tool in data.get("tools") or ()),
            resources=tuple(ResourceMetadata.from_dict(resource) for resource in data.get("resources") or ()),
            prompts=tuple(PromptMetadata.from_dict(prompt) for prompt in data.get("prompts") or ()),
        )
