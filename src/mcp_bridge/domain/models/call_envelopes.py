"""Request/response envelopes for routed calls.

Every routed call returns one of these envelopes instead of raising. A
response carries ``result`` (or ``content``) only when ``success`` is True and
``error`` only when it is False; ``metadata`` is always present and always
names the backend and the operation target.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ToolCallRequest:
    """Invoke ``tool_name`` on backend ``service_id``."""

    service_id: str
    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResourceRequest:
    """Read resource ``uri`` from backend ``service_id``."""

    service_id: str
    uri: str


@dataclass(frozen=True)
class PromptRequest:
    """Render prompt ``prompt_name`` from backend ``service_id``."""

    service_id: str
    prompt_name: str
    arguments: dict[str, str] = field(default_factory=dict)


@dataclass
class ToolCallResponse:
    """Outcome of a tool call.

    Attributes:
        success: Whether the backend executed the tool without error
        result: Content blocks returned by the tool (success only)
        error: Error message (failure only)
        metadata: execution_time (ms), service_id, tool_name
    """

    success: bool
    result: Any = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, request: ToolCallRequest, result: Any, execution_time: float) -> "ToolCallResponse":
        return cls(success=True, result=result, metadata=cls._metadata(request, execution_time))

    @classmethod
    def failed(cls, request: ToolCallRequest, error: str, execution_time: float) -> "ToolCallResponse":
        return cls(success=False, error=error, metadata=cls._metadata(request, execution_time))

    @staticmethod
    def _metadata(request: ToolCallRequest, execution_time: float) -> dict[str, Any]:
        return {
            "execution_time": round(execution_time, 3),
            "service_id": request.service_id,
            "tool_name": request.tool_name,
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the response shape exposed to HTTP callers."""
        data: dict[str, Any] = {"success": self.success}
        if self.success:
            data["result"] = self.result
        else:
            data["error"] = self.error
        data["metadata"] = dict(self.metadata)
        return data


@dataclass
class ResourceResponse:
    """Outcome of a resource read.

    Attributes:
        success: Whether the resource was read
        content: Resource content as text (success only)
        mime_type: MIME type of ``content`` (success only)
        error: Error message (failure only)
        metadata: service_id, uri, execution_time (ms) and, on success, size in bytes
    """

    success: bool
    content: str | None = None
    mime_type: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, request: ResourceRequest, content: str, mime_type: str, execution_time: float) -> "ResourceResponse":
        metadata = cls._metadata(request, execution_time)
        metadata["size"] = len(content.encode("utf-8"))
        return cls(success=True, content=content, mime_type=mime_type, metadata=metadata)

    @classmethod
    def failed(cls, request: ResourceRequest, error: str, execution_time: float) -> "ResourceResponse":
        return cls(success=False, error=error, metadata=cls._metadata(request, execution_time))

    @staticmethod
    def _metadata(request: ResourceRequest, execution_time: float) -> dict[str, Any]:
        return {
            "execution_time": round(execution_time, 3),
            "service_id": request.service_id,
            "uri": request.uri,
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the response shape exposed to HTTP callers."""
        data: dict[str, Any] = {"success": self.success}
        if self.success:
            data["content"] = self.content
            data["mime_type"] = self.mime_type
        else:
            data["error"] = self.error
        data["metadata"] = dict(self.metadata)
        return data


@dataclass
class PromptResponse:
    """Outcome of a prompt fetch."""

    success: bool
    result: dict[str, Any] | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, request: PromptRequest, result: dict[str, Any], execution_time: float) -> "PromptResponse":
        return cls(success=True, result=result, metadata=cls._metadata(request, execution_time))

    @classmethod
    def failed(cls, request: PromptRequest, error: str, execution_time: float) -> "PromptResponse":
        return cls(success=False, error=error, metadata=cls._metadata(request, execution_time))

    @staticmethod
    def _metadata(request: PromptRequest, execution_time: float) -> dict[str, Any]:
        return {
            "execution_time": round(execution_time, 3),
            "service_id": request.service_id,
            "prompt_name": request.prompt_name,
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the response shape exposed to HTTP callers."""
        data: dict[str, Any] = {"success": self.success}
        if self.success:
            data["result"] = self.result
        else:
            data["error"] = self.error
        data["metadata"] = dict(self.metadata)
        return data
