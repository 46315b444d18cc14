"""Application services: the connection broker and its collaborators."""

from .call_audit import CallAuditRecord, ICallAuditSink, LoggingCallAuditSink, TransitionAuditRecord
from .connection_broker import ConnectionBroker
from .connection_record import ConnectionRecord, ServiceSummary, ServiceTool
from .lifecycle_event_publisher import LifecycleEventPublisher

__all__ = [
    "ConnectionBroker",
    "ConnectionRecord",
    "ServiceSummary",
    "ServiceTool",
    "LifecycleEventPublisher",
    "ICallAuditSink",
    "LoggingCallAuditSink",
    "CallAuditRecord",
    "TransitionAuditRecord",
]
