"""Domain events emitted by the connection broker."""

from .service_connection import (
    ServiceConnectedDomainEvent,
    ServiceConnectionFailedDomainEvent,
    ServiceDisconnectedDomainEvent,
    ServiceRegisteredDomainEvent,
    ServiceRemovedDomainEvent,
    ServiceStatusChangedDomainEvent,
)

__all__ = [
    "ServiceRegisteredDomainEvent",
    "ServiceRemovedDomainEvent",
    "ServiceStatusChangedDomainEvent",
    "ServiceConnectedDomainEvent",
    "ServiceDisconnectedDomainEvent",
    "ServiceConnectionFailedDomainEvent",
]
