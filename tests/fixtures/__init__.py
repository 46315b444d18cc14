"""Test fixtures package."""

from .factories import McpPayloadFactory, ServiceDefinitionFactory
from .fake_transport import FakeTransport

__all__ = [
    "FakeTransport",
    "McpPayloadFactory",
    "ServiceDefinitionFactory",
]
