"""Pytest configuration and shared fixtures for all tests.

This module provides:
- Test configuration and markers
- A transport factory double handing out FakeTransport instances
- Lifecycle event capture
- A connection broker wired with short timeouts
"""

from collections.abc import AsyncGenerator
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from _pytest.config import Config
from neuroglia.data.abstractions import DomainEvent

from mcp_bridge.application.services import ConnectionBroker, LifecycleEventPublisher, LoggingCallAuditSink
from mcp_bridge.domain.models import ServiceDefinition
from mcp_bridge.infrastructure.mcp import TransportFactory
from tests.fixtures import FakeTransport

# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================


def pytest_configure(config: Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (may spawn real MCP servers)")
    config.addinivalue_line("markers", "slow: Slow tests (may take several seconds)")
    config.addinivalue_line("markers", "asyncio: Async tests")


# ============================================================================
# TRANSPORT FIXTURES
# ============================================================================


@pytest.fixture
def planned_transports() -> dict[str, FakeTransport]:
    """Transports to hand out per service id; tests fill this before registering."""
    return {}


@pytest.fixture
def created_transports() -> list[FakeTransport]:
    """Every transport the factory created, in creation order."""
    return []


@pytest.fixture
def transport_factory(planned_transports: dict[str, FakeTransport], created_transports: list[FakeTransport]) -> MagicMock:
    """TransportFactory double returning planned (or fresh) FakeTransports."""

    def create(definition: ServiceDefinition) -> FakeTransport:
        transport = planned_transports.pop(definition.id, None) or FakeTransport()
        created_transports.append(transport)
        return transport

    factory = MagicMock(spec=TransportFactory)
    factory.create.side_effect = create
    return factory


# ============================================================================
# BROKER FIXTURES
# ============================================================================


@pytest.fixture
def events() -> list[DomainEvent]:
    """Lifecycle events published during the test, in order."""
    return []


@pytest.fixture
def event_publisher(events: list[DomainEvent]) -> LifecycleEventPublisher:
    publisher = LifecycleEventPublisher()
    publisher.subscribe(events.append)
    return publisher


@pytest.fixture
def audit_sink() -> LoggingCallAuditSink:
    return LoggingCallAuditSink(max_entries=100)


@pytest_asyncio.fixture
async def broker(transport_factory: MagicMock, event_publisher: LifecycleEventPublisher, audit_sink: LoggingCallAuditSink) -> AsyncGenerator[ConnectionBroker, None]:
    """Broker with a short connection timeout and retry delay."""
    broker = ConnectionBroker(
        transport_factory=transport_factory,
        event_publisher=event_publisher,
        audit_sink=audit_sink,
        connection_timeout=0.5,
        retry_delay=0.2,
    )
    yield broker
    await broker.shutdown()
