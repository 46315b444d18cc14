"""Domain enumerations package."""

from .service import ConnectionStatus, TransportKind

__all__ = [
    "ConnectionStatus",
    "TransportKind",
]
