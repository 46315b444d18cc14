"""Domain value objects for the MCP bridge.

Service definitions are immutable (@dataclass(frozen=True)); call responses
are plain dataclasses built through their ``ok``/``failed`` constructors.
"""

from .call_envelopes import PromptRequest, PromptResponse, ResourceRequest, ResourceResponse, ToolCallRequest, ToolCallResponse
from .service_definition import PromptMetadata, ResourceMetadata, ServiceConfigurationError, ServiceDefinition, ToolMetadata

__all__ = [
    "PromptMetadata",
    "PromptRequest",
    "PromptResponse",
    "ResourceMetadata",
    "ResourceRequest",
    "ResourceResponse",
    "ServiceConfigurationError",
    "ServiceDefinition",
    "ToolCallRequest",
    "ToolCallResponse",
    "ToolMetadata",
]
