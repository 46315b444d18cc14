"""Observability utilities and metrics."""

from .metrics import call_duration, call_failures, calls_routed, connection_attempts, connection_failures, connection_time, reconnects_scheduled

__all__ = [
    # Connection metrics
    "connection_attempts",
    "connection_failures",
    "reconnects_scheduled",
    "connection_time",
    # Call metrics
    "calls_routed",
    "call_failures",
    "call_duration",
]
