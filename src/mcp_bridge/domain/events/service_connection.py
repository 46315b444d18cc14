"""Domain events for backend service lifecycle.

These events are emitted by the connection broker whenever a backend is
registered, removed, or changes connection status. They are not aggregate
events: the broker publishes them directly to its lifecycle event publisher
so subscribers (notification channels, dashboards, audit) can react.

For a single service id, events are published in the order the transitions
occur: a status change to ``connecting`` always precedes ``connected`` or
``error``.
"""

from dataclasses import dataclass
from datetime import datetime

from neuroglia.data.abstractions import DomainEvent
from neuroglia.eventing.cloud_events.decorators import cloudevent

from mcp_bridge.domain.enums import ConnectionStatus, TransportKind


@cloudevent("mcp_service.registered.v1")
@dataclass
class ServiceRegisteredDomainEvent(DomainEvent):
    """Event raised when a service definition is registered with the broker."""

    service_id: str
    """Identifier of the registered service."""

    name: str
    """Display name of the service."""

    transport: TransportKind
    """Transport used to reach the service."""

    enabled: bool
    """Whether the service is connected automatically."""

    def __init__(self, service_id: str, name: str, transport: TransportKind, enabled: bool) -> None:
        super().__init__(service_id)
        self.service_id = service_id
        self.name = name
        self.transport = transport
        self.enabled = enabled


@cloudevent("mcp_service.removed.v1")
@dataclass
class ServiceRemovedDomainEvent(DomainEvent):
    """Event raised when a service is removed from the broker."""

    service_id: str
    """Identifier of the removed service."""

    def __init__(self, service_id: str) -> None:
        super().__init__(service_id)
        self.service_id = service_id


@cloudevent("mcp_service.status_changed.v1")
@dataclass
class ServiceStatusChangedDomainEvent(DomainEvent):
    """Event raised on every connection status transition."""

    service_id: str
    """Identifier of the service."""

    status: ConnectionStatus
    """Status after the transition."""

    previous_status: ConnectionStatus
    """Status before the transition."""

    def __init__(self, service_id: str, status: ConnectionStatus, previous_status: ConnectionStatus) -> None:
        super().__init__(service_id)
        self.service_id = service_id
        self.status = status
        self.previous_status = previous_status


@cloudevent("mcp_service.connected.v1")
@dataclass
class ServiceConnectedDomainEvent(DomainEvent):
    """Event raised when a service session is established and its capabilities cached."""

    service_id: str
    """Identifier of the service."""

    connected_at: datetime
    """Timestamp when the connection completed."""

    tool_count: int
    """Number of tools advertised by the backend."""

    resource_count: int
    """Number of resources advertised by the backend."""

    prompt_count: int
    """Number of prompts advertised by the backend."""

    def __init__(self, service_id: str, connected_at: datetime, tool_count: int, resource_count: int, prompt_count: int) -> None:
        super().__init__(service_id)
        self.service_id = service_id
        self.connected_at = connected_at
        self.tool_count = tool_count
        self.resource_count = resource_count
        self.prompt_count = prompt_count


@cloudevent("mcp_service.disconnected.v1")
@dataclass
class ServiceDisconnectedDomainEvent(DomainEvent):
    """Event raised when a service session is closed or lost."""

    service_id: str
    """Identifier of the service."""

    reason: str
    """Why the session ended ('requested' or 'session_lost')."""

    def __init__(self, service_id: str, reason: str = "requested") -> None:
        super().__init__(service_id)
        self.service_id = service_id
        self.reason = reason


@cloudevent("mcp_service.connection_failed.v1")
@dataclass
class ServiceConnectionFailedDomainEvent(DomainEvent):
    """Event raised when a connection attempt fails (including timeouts)."""

    service_id: str
    """Identifier of the service."""

    error: str
    """Error message recorded on the connection."""

    retry_in: float
    """Seconds until the scheduled reconnect attempt."""

    def __init__(self, service_id: str, error: str, retry_in: float) -> None:
        super().__init__(service_id)
        self.service_id = service_id
        self.error = error
        self.retry_in = retry_in
