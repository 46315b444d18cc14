"""Call audit sink.

The broker reports every routed call (tool, resource or prompt) and every
connection status transition to an ``ICallAuditSink``. Reports are
fire-and-forget: the broker never waits on, or fails because of, the sink.

``LoggingCallAuditSink`` is the default implementation: it logs each entry
and keeps a bounded, newest-first queryable history in memory.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from mcp_bridge.domain.enums import ConnectionStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class CallAuditRecord:
    """One completed routed call.

    Attributes:
        service_id: Backend the call targeted
        operation: "tool", "resource" or "prompt"
        target: Tool name, resource URI or prompt name
        arguments: Call arguments (empty for resource reads)
        success: Whether the response envelope reported success
        error: Error message for failed calls
        duration: Execution time in milliseconds
        result: Payload returned to the caller for successful calls
    """

    service_id: str
    operation: str
    target: str
    arguments: dict[str, Any]
    success: bool
    duration: float
    error: str | None = None
    result: Any = None
    id: str = field(default_factory=_new_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "service_id": self.service_id,
            "operation": self.operation,
            "target": self.target,
            "arguments": dict(self.arguments),
            "success": self.success,
            "error": self.error,
            "duration": self.duration,
            "result": self.result,
        }


@dataclass(frozen=True)
class TransitionAuditRecord:
    """One connection status transition of a backend."""

    service_id: str
    previous_status: ConnectionStatus
    status: ConnectionStatus
    error: str | None = None
    id: str = field(default_factory=_new_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "service_id": self.service_id,
            "previous_status": self.previous_status.value,
            "status": self.status.value,
            "error": self.error,
        }


class ICallAuditSink(ABC):
    """Destination for call and transition audit records."""

    @abstractmethod
    async def record_call(self, record: CallAuditRecord) -> None:
        """Store a completed call."""
        ...

    @abstractmethod
    async def record_transition(self, record: TransitionAuditRecord) -> None:
        """Store a status transition."""
        ...


class LoggingCallAuditSink(ICallAuditSink):
    """In-memory audit sink with bounded history.

    Only the newest ``max_entries`` calls and transitions are retained.
    Queries return newest entries first.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._calls: deque[CallAuditRecord] = deque(maxlen=max_entries)
        self._transitions: deque[TransitionAuditRecord] = deque(maxlen=max_entries)

    async def record_call(self, record: CallAuditRecord) -> None:
        self._calls.append(record)
        outcome = "ok" if record.success else f"failed: {record.error}"
        logger.info(f"MCP {record.operation} call {record.service_id}/{record.target} {outcome} ({record.duration:.1f}ms)")

    async def record_transition(self, record: TransitionAuditRecord) -> None:
        self._transitions.append(record)
        logger.debug(f"Service {record.service_id}: {record.previous_status.value} -> {record.status.value}")

    def get_calls(
        self,
        service_id: str | None = None,
        target: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[CallAuditRecord]:
        """Query call history, newest first.

        Args:
            service_id: Only calls to this backend
            target: Only calls to this tool name / URI / prompt name
            limit: Maximum number of entries to return (all if None)
            offset: Number of matching entries to skip
        """
        calls = [
            record
            for record in reversed(self._calls)
            if (service_id is None or record.service_id == service_id) and (target is None or record.target == target)
        ]
        return self._page(calls, limit, offset)

    def get_transitions(self, service_id: str | None = None, limit: int | None = None, offset: int = 0) -> list[TransitionAuditRecord]:
        """Query transition history, newest first."""
        transitions = [record for record in reversed(self._transitions) if service_id is None or record.service_id == service_id]
        return self._page(transitions, limit, offset)

    def get_statistics(self, service_id: str | None = None) -> dict[str, Any]:
        """Aggregate counts and mean duration over the retained calls."""
        calls = self.get_calls(service_id=service_id)
        failed = sum(1 for record in calls if not record.success)
        average = sum(record.duration for record in calls) / len(calls) if calls else 0.0
        return {
            "total_calls": len(calls),
            "successful_calls": len(calls) - failed,
            "failed_calls": failed,
            "average_duration": round(average, 3),
        }

    def clear(self) -> None:
        self._calls.clear()
        self._transitions.clear()

    @staticmethod
    def _page(records: list, limit: int | None, offset: int) -> list:
        start = max(offset, 0)
        if limit is None:
            return records[start:]
        return records[start : start + limit]
