"""MCP protocol data models.

Plain dataclasses for the MCP payloads the bridge works with: server info
from the handshake, tool/resource/prompt definitions from the list calls,
and the results of tool calls, resource reads and prompt fetches.

The protocol client returns pydantic models; transports convert them with
``from_dict(model.model_dump(by_alias=True))`` so the rest of the bridge
never depends on the client library's types.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

DEFAULT_PROTOCOL_VERSION = "2024-11-05"


class McpContentType(str, Enum):
    """Types of content in MCP tool results."""

    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    RESOURCE = "resource"
    RESOURCE_LINK = "resource_link"


@dataclass
class McpContent:
    """Content block within an MCP tool result or prompt message.

    Attributes:
        type: Content type (text, image, audio, resource, resource_link)
        text: Text content (for type="text" and embedded text resources)
        data: Binary data as base64 (for type="image"/"audio")
        mime_type: MIME type for binary or embedded content
        uri: Resource URI (for type="resource"/"resource_link")
    """

    type: McpContentType | str
    text: str | None = None
    data: str | None = None  # Base64 encoded for images/audio
    mime_type: str | None = None
    uri: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        result: dict[str, Any] = {"type": self.type if isinstance(self.type, str) else self.type.value}
        if self.text is not None:
            result["text"] = self.text
        if self.data is not None:
            result["data"] = self.data
        if self.mime_type is not None:
            result["mimeType"] = self.mime_type
        if self.uri is not None:
            result["uri"] = self.uri
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "McpContent":
        """Create from dictionary.

        Embedded resources carry their payload in a nested ``resource`` object.
        """
        content_type = data.get("type", "text")
        embedded = data.get("resource") or {}
        return cls(
            type=content_type,
            text=data.get("text", embedded.get("text")),
            data=data.get("data", embedded.get("blob")),
            mime_type=data.get("mimeType", embedded.get("mimeType")),
            uri=_as_str(data.get("uri", embedded.get("uri"))),
        )

    @staticmethod
    def text_content(text: str) -> "McpContent":
        """Create a text content block."""
        return McpContent(type=McpContentType.TEXT, text=text)


@dataclass
class McpToolResult:
    """Result from an MCP tool call.

    Attributes:
        content: List of content blocks returned by the tool
        is_error: Whether the tool execution resulted in an error
        structured_content: Optional structured output declared by the tool
    """

    content: list[McpContent] = field(default_factory=list)
    is_error: bool = False
    structured_content: dict[str, Any] | None = None

    def get_text(self) -> str:
        """Get combined text from all text content blocks."""
        return "\n".join(c.text or "" for c in self.content if c.type == McpContentType.TEXT or c.type == "text")

    def to_payload(self) -> list[dict[str, Any]]:
        """Content blocks as plain dictionaries (the routed call result)."""
        return [c.to_dict() for c in self.content]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "McpToolResult":
        """Create from tools/call response."""
        return cls(
            content=[McpContent.from_dict(c) for c in data.get("content") or []],
            is_error=bool(data.get("isError", False)),
            structured_content=data.get("structuredContent"),
        )


@dataclass
class McpToolDefinition:
    """Definition of an MCP tool from tools/list.

    Attributes:
        name: Unique tool name
        description: Human-readable description
        input_schema: JSON Schema for input parameters
    """

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "McpToolDefinition":
        """Create from tools/list response item."""
        return cls(
            name=data.get("name", ""),
            description=data.get("description") or "",
            input_schema=data.get("inputSchema") or {},
        )

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema}

    def get_required_params(self) -> list[str]:
        """Get list of required parameter names."""
        return self.input_schema.get("required", [])

    def get_properties(self) -> dict[str, Any]:
        """Get parameter properties from schema."""
        return self.input_schema.get("properties", {})


@dataclass
class McpResourceDefinition:
    """Definition of an MCP resource from resources/list."""

    uri: str
    name: str
    description: str = ""
    mime_type: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "McpResourceDefinition":
        """Create from resources/list response item."""
        return cls(
            uri=_as_str(data.get("uri")) or "",
            name=data.get("name", ""),
            description=data.get("description") or "",
            mime_type=data.get("mimeType"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"uri": self.uri, "name": self.name, "description": self.description, "mimeType": self.mime_type}


@dataclass
class McpPromptArgument:
    """Argument accepted by an MCP prompt."""

    name: str
    description: str = ""
    required: bool = False


@dataclass
class McpPromptDefinition:
    """Definition of an MCP prompt from prompts/list."""

    name: str
    description: str = ""
    arguments: list[McpPromptArgument] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "McpPromptDefinition":
        """Create from prompts/list response item."""
        return cls(
            name=data.get("name", ""),
            description=data.get("description") or "",
            arguments=[
                McpPromptArgument(
                    name=arg.get("name", ""),
                    description=arg.get("description") or "",
                    required=bool(arg.get("required", False)),
                )
                for arg in data.get("arguments") or []
            ],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "arguments": [{"name": a.name, "description": a.description, "required": a.required} for a in self.arguments],
        }


@dataclass
class McpResourceContents:
    """One content item returned by resources/read (text or base64 blob)."""

    uri: str
    mime_type: str | None = None
    text: str | None = None
    blob: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "McpResourceContents":
        return cls(
            uri=_as_str(data.get("uri")) or "",
            mime_type=data.get("mimeType"),
            text=data.get("text"),
            blob=data.get("blob"),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"uri": self.uri}
        if self.mime_type is not None:
            result["mimeType"] = self.mime_type
        if self.text is not None:
            result["text"] = self.text
        if self.blob is not None:
            result["blob"] = self.blob
        return result


@dataclass
class McpResourceResult:
    """Result of a resources/read call."""

    contents: list[McpResourceContents] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "McpResourceResult":
        return cls(contents=[McpResourceContents.from_dict(c) for c in data.get("contents") or []])

    def to_payload(self) -> tuple[str, str]:
        """Flatten the contents into a ``(content, mime_type)`` pair.

        A single text item is returned as-is with its own MIME type
        (``text/plain`` if the server gave none); a single blob is returned
        as its base64 string. Anything else is serialized as a JSON array.
        """
        if len(self.contents) == 1:
            item = self.contents[0]
            if item.text is not None:
                return item.text, item.mime_type or "text/plain"
            if item.blob is not None:
                return item.blob, item.mime_type or "application/octet-stream"
        return json.dumps([c.to_dict() for c in self.contents]), "application/json"


@dataclass
class McpPromptResult:
    """Result of a prompts/get call."""

    description: str | None = None
    messages: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "McpPromptResult":
        messages = [
            {
                "role": message.get("role", "user"),
                "content": McpContent.from_dict(message.get("content") or {}).to_dict(),
            }
            for message in data.get("messages") or []
        ]
        return cls(description=data.get("description"), messages=messages)

    def to_dict(self) -> dict[str, Any]:
        return {"description": self.description, "messages": list(self.messages)}


@dataclass
class McpServerInfo:
    """Information about an MCP server.

    Returned during initialization handshake.

    Attributes:
        name: Server name
        version: Server version
        protocol_version: MCP protocol version supported
    """

    name: str
    version: str
    protocol_version: str = DEFAULT_PROTOCOL_VERSION

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "McpServerInfo":
        """Create from initialize response."""
        server_info = data.get("serverInfo", {})
        return cls(
            name=server_info.get("name", "unknown"),
            version=server_info.get("version", "unknown"),
            protocol_version=str(data.get("protocolVersion", DEFAULT_PROTOCOL_VERSION)),
        )


def _as_str(value: Any) -> str | None:
    # pydantic AnyUrl values dump as objects unless mode="json"
    return None if value is None else str(value)
