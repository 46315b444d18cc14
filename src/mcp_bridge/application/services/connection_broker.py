"""MCP Connection Broker.

Owns every registered backend service: drives each one through the
connection state machine, retries failed connections, caches the
capabilities a backend advertises and routes tool calls, resource reads
and prompt fetches to the live session.

State machine (per service)::

    disconnected --connect--> connecting --ok--> connected
                                   |                 |
                                   +--fail--> error  +--disconnect / lost session--> disconnected
                                               |
                                               +--retry after delay--> connecting

The status checks on connect and disconnect are the only serialization
between concurrent operations on one service: a connect while connecting
or connected is a no-op, and the status is switched to connecting before
the first suspension point.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, TypeVar

from opentelemetry import trace

from mcp_bridge.domain.enums import ConnectionStatus
from mcp_bridge.domain.events import (
    ServiceConnectedDomainEvent,
    ServiceConnectionFailedDomainEvent,
    ServiceDisconnectedDomainEvent,
    ServiceRegisteredDomainEvent,
    ServiceRemovedDomainEvent,
    ServiceStatusChangedDomainEvent,
)
from mcp_bridge.domain.models import (
    PromptRequest,
    PromptResponse,
    ResourceRequest,
    ResourceResponse,
    ServiceDefinition,
    ToolCallRequest,
    ToolCallResponse,
)
from mcp_bridge.infrastructure.mcp import IMcpTransport, McpConnectionError, McpRemoteError, McpServerInfo, McpTransportError, TransportFactory
from mcp_bridge.observability import call_duration, call_failures, calls_routed, connection_attempts, connection_failures, connection_time, reconnects_scheduled

from .call_audit import CallAuditRecord, ICallAuditSink, LoggingCallAuditSink, TransitionAuditRecord
from .connection_record import ConnectionRecord, ServiceSummary, ServiceTool
from .lifecycle_event_publisher import LifecycleEventPublisher

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")

DEFAULT_CONNECTION_TIMEOUT = 30.0  # seconds
DEFAULT_RETRY_DELAY = 1.0  # seconds


@dataclass
class _CallOutcome:
    """Value or error of one routed call, with its duration in milliseconds."""

    value: Any = None
    error: str | None = None
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None


class ConnectionBroker:
    """Registry and router for MCP backend services.

    Usage:
        broker = ConnectionBroker(TransportFactory(env_resolver), LifecycleEventPublisher())
        await broker.register_service(definition)  # connects if enabled
        response = await broker.call_tool(ToolCallRequest("github", "search_issues", {"q": "bug"}))
        await broker.shutdown()

    Routed calls never raise: every failure comes back as an unsuccessful
    response envelope. Only ``register_service`` raises, for invalid
    definitions.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        event_publisher: LifecycleEventPublisher,
        audit_sink: ICallAuditSink | None = None,
        connection_timeout: float = DEFAULT_CONNECTION_TIMEOUT,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ):
        """Initialize the broker.

        Args:
            transport_factory: Creates one transport per registered service
            event_publisher: Receives every lifecycle event
            audit_sink: Receives every routed call and status transition.
                        Defaults to an in-memory LoggingCallAuditSink.
            connection_timeout: Seconds allowed for session setup plus capability discovery
            retry_delay: Seconds between a failed connection and the next attempt
        """
        self._transport_factory = transport_factory
        self._event_publisher = event_publisher
        self._audit_sink = audit_sink or LoggingCallAuditSink()
        self._connection_timeout = connection_timeout
        self._retry_delay = retry_delay

        self._records: dict[str, ConnectionRecord] = {}
        self._reconnect_tasks: dict[str, asyncio.Task[None]] = {}
        self._audit_tasks: set[asyncio.Task[None]] = set()
        self._background_tasks: set[asyncio.Task[None]] = set()

    @property
    def audit_sink(self) -> ICallAuditSink:
        return self._audit_sink

    @property
    def connection_timeout(self) -> float:
        return self._connection_timeout

    @property
    def retry_delay(self) -> float:
        return self._retry_delay

    def has_pending_reconnect(self, service_id: str) -> bool:
        task = self._reconnect_tasks.get(service_id)
        return task is not None and not task.done()

    # =========================================================================
    # Registration
    # =========================================================================

    async def register_service(self, definition: ServiceDefinition) -> ServiceSummary:
        """Register a service, replacing any service with the same id.

        The service is connected immediately when its definition is enabled;
        a failed connection is recorded on the service, not raised.

        Raises:
            ServiceConfigurationError: If the definition is invalid (nothing is registered)
        """
        definition.validate()

        if definition.id in self._records:
            logger.info(f"Service {definition.id} is already registered, replacing it")
            await self.remove_service(definition.id)

        transport = self._transport_factory.create(definition)
        record = ConnectionRecord(definition=definition, transport=transport)
        transport.set_session_lost_handler(lambda: self._on_session_lost(record))
        self._records[definition.id] = record
        logger.info(f"Registered MCP service {definition.id} ({definition.transport.value})")

        if definition.enabled:
            await self.connect_service(definition.id)

        await self._publish(ServiceRegisteredDomainEvent(definition.id, definition.name, definition.transport, definition.enabled))
        return record.summary()

    async def remove_service(self, service_id: str) -> bool:
        """Disconnect and forget a service.

        Returns:
            False if the id was unknown (nothing happens), True otherwise
        """
        record = self._records.get(service_id)
        if record is None:
            return False

        self._cancel_reconnect(service_id)
        await self.disconnect_service(service_id)
        if self._records.get(service_id) is record:
            del self._records[service_id]

        logger.info(f"Removed MCP service {service_id}")
        await self._publish(ServiceRemovedDomainEvent(service_id))
        return True

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect_service(self, service_id: str) -> ConnectionStatus | None:
        """Connect a service and cache its capabilities.

        No-op while the service is connecting or connected. Failures and
        timeouts leave the service in ``error`` and schedule a reconnect.

        Returns:
            The service status after the attempt, or None if the id is unknown
        """
        record = self._records.get(service_id)
        if record is None:
            logger.warning(f"Cannot connect unknown service {service_id}")
            return None
        if record.status.is_active:
            logger.debug(f"Service {service_id} is already {record.status.value}, ignoring connect")
            return record.status

        record.attempt += 1
        attempt = record.attempt
        await self._set_status(record, ConnectionStatus.CONNECTING)

        with tracer.start_as_current_span("mcp_connect_service") as span:
            span.set_attribute("mcp.service_id", service_id)
            span.set_attribute("mcp.transport", record.definition.transport.value)
            connection_attempts.add(1, {"service_id": service_id})
            start_time = time.perf_counter()

            try:
                server_info, tools, resources, prompts = await asyncio.wait_for(self._open_session(record), timeout=self._connection_timeout)
            except (TimeoutError, asyncio.TimeoutError):
                error_msg = f"Connection timeout after {self._connection_timeout:g}s"
            except McpTransportError as e:
                error_msg = str(e)
            except Exception as e:
                logger.exception(f"Unexpected error connecting to service {service_id}")
                error_msg = str(e) or type(e).__name__
            else:
                if self._is_superseded(record, attempt):
                    logger.info(f"Connection attempt for service {service_id} was superseded, discarding session")
                    await self._discard_attempt(record, attempt)
                    return self._current_status(service_id)

                record.server_info = server_info
                record.tools = tools
                record.resources = resources
                record.prompts = prompts
                record.connected_at = datetime.now(UTC)
                record.last_error = None
                await self._set_status(record, ConnectionStatus.CONNECTED)

                elapsed_ms = (time.perf_counter() - start_time) * 1000
                connection_time.record(elapsed_ms, {"service_id": service_id})
                span.set_attribute("mcp.tool_count", len(tools))
                logger.info(f"Successfully connected to service {service_id}: {len(tools)} tools, {len(resources)} resources, {len(prompts)} prompts ({elapsed_ms:.2f}ms)")
                await self._publish(ServiceConnectedDomainEvent(service_id, record.connected_at, len(tools), len(resources), len(prompts)))
                return record.status

            # Failure path
            span.set_attribute("mcp.error", error_msg)
            if self._is_superseded(record, attempt):
                logger.info(f"Connection attempt for service {service_id} ended after it was superseded: {error_msg}")
                await self._discard_attempt(record, attempt)
                return self._current_status(service_id)

            await self._safe_disconnect(record)
            connection_failures.add(1, {"service_id": service_id})
            logger.error(f"Failed to connect to service {service_id}: {error_msg}")

            record.clear_capabilities()
            record.connected_at = None
            record.last_error = error_msg
            await self._set_status(record, ConnectionStatus.ERROR)
            await self._publish(ServiceConnectionFailedDomainEvent(service_id, error_msg, self._retry_delay))
            self._schedule_reconnect(service_id)
            return record.status

    async def disconnect_service(self, service_id: str, reason: str = "requested") -> ConnectionStatus | None:
        """Close a service's session.

        No-op unless the service is connecting or connected. Teardown errors
        are logged and swallowed.

        Returns:
            The service status afterwards, or None if the id is unknown
        """
        record = self._records.get(service_id)
        if record is None:
            return None
        if not record.status.is_active:
            return record.status

        record.clear_capabilities()
        record.connected_at = None
        await self._set_status(record, ConnectionStatus.DISCONNECTED)
        await self._safe_disconnect(record)

        logger.info(f"Disconnected from service {service_id} ({reason})")
        await self._publish(ServiceDisconnectedDomainEvent(service_id, reason))
        return record.status

    async def connect_all(self) -> dict[str, str]:
        """Connect every registered service concurrently.

        Returns:
            Error message per service that did not end up connected
        """
        return await self._fan_out(self.connect_service, "connect")

    async def disconnect_all(self) -> dict[str, str]:
        """Disconnect every registered service concurrently.

        Returns:
            Error message per service whose disconnect raised
        """
        return await self._fan_out(self.disconnect_service, "disconnect")

    async def shutdown(self) -> dict[str, str]:
        """Release every backend and detach all subscribers.

        Safe to call more than once.

        Returns:
            Error message per service whose disconnect raised
        """
        logger.info("Shutting down MCP connection broker")

        current = asyncio.current_task()
        tasks = [task for task in self._reconnect_tasks.values() if task is not current]
        self._reconnect_tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

        errors = await self.disconnect_all()
        self._records.clear()
        self._event_publisher.clear()
        await self.drain_audit()
        return errors

    async def drain_audit(self) -> None:
        """Wait for audit reports still in flight."""
        while self._audit_tasks:
            await asyncio.gather(*list(self._audit_tasks), return_exceptions=True)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_services(self, include_capabilities: bool = False) -> list[ServiceSummary]:
        return [record.summary(include_capabilities) for record in self._records.values()]

    def get_service(self, service_id: str) -> ServiceSummary | None:
        record = self._records.get(service_id)
        return record.summary(include_capabilities=True) if record else None

    def get_connected_services(self) -> list[ServiceSummary]:
        return [record.summary() for record in self._records.values() if record.is_connected]

    def get_all_tools(self) -> list[ServiceTool]:
        """Tools of every connected service, tagged with the service id."""
        tools: list[ServiceTool] = []
        for record in self._records.values():
            if record.is_connected:
                tools.extend(record.service_tools())
        return tools

    # =========================================================================
    # Call routing
    # =========================================================================

    async def call_tool(self, request: ToolCallRequest) -> ToolCallResponse:
        """Invoke a tool on a connected service.

        A result the tool flags as an error is returned as a failed call
        carrying the tool's own text.
        """

        async def invoke(transport: IMcpTransport) -> list[dict[str, Any]]:
            result = await transport.call_tool(request.tool_name, dict(request.arguments))
            if result.is_error:
                raise McpRemoteError(result.get_text() or "Tool reported an error")
            return result.to_payload()

        outcome = await self._route(request.service_id, "tool", request.tool_name, dict(request.arguments), invoke)
        if outcome.success:
            return ToolCallResponse.ok(request, outcome.value, outcome.duration)
        return ToolCallResponse.failed(request, outcome.error or "Unknown error", outcome.duration)

    async def read_resource(self, request: ResourceRequest) -> ResourceResponse:
        """Read a resource from a connected service."""

        async def invoke(transport: IMcpTransport) -> dict[str, str]:
            result = await transport.read_resource(request.uri)
            content, mime_type = result.to_payload()
            return {"content": content, "mime_type": mime_type}

        outcome = await self._route(request.service_id, "resource", request.uri, {}, invoke)
        if outcome.success:
            return ResourceResponse.ok(request, outcome.value["content"], outcome.value["mime_type"], outcome.duration)
        return ResourceResponse.failed(request, outcome.error or "Unknown error", outcome.duration)

    async def get_prompt(self, request: PromptRequest) -> PromptResponse:
        """Render a prompt from a connected service."""

        async def invoke(transport: IMcpTransport) -> dict[str, Any]:
            result = await transport.get_prompt(request.prompt_name, dict(request.arguments) or None)
            return result.to_dict()

        outcome = await self._route(request.service_id, "prompt", request.prompt_name, dict(request.arguments), invoke)
        if outcome.success:
            return PromptResponse.ok(request, outcome.value, outcome.duration)
        return PromptResponse.failed(request, outcome.error or "Unknown error", outcome.duration)

    async def _route(
        self,
        service_id: str,
        operation: str,
        target: str,
        arguments: dict[str, Any],
        invoke: Callable[[IMcpTransport], Awaitable[T]],
    ) -> _CallOutcome:
        with tracer.start_as_current_span(f"mcp_route_{operation}") as span:
            span.set_attribute("mcp.service_id", service_id)
            span.set_attribute("mcp.target", target)
            start_time = time.perf_counter()
            outcome = await self._invoke(service_id, invoke)
            outcome.duration = (time.perf_counter() - start_time) * 1000

            attributes = {"service_id": service_id, "operation": operation}
            calls_routed.add(1, attributes)
            call_duration.record(outcome.duration, attributes)
            if not outcome.success:
                call_failures.add(1, attributes)
                span.set_attribute("mcp.error", outcome.error or "")
                logger.warning(f"MCP {operation} call {service_id}/{target} failed: {outcome.error}")
            else:
                logger.debug(f"MCP {operation} call {service_id}/{target} succeeded ({outcome.duration:.2f}ms)")

            self._report(
                self._audit_sink.record_call(
                    CallAuditRecord(
                        service_id=service_id,
                        operation=operation,
                        target=target,
                        arguments=arguments,
                        success=outcome.success,
                        error=outcome.error,
                        result=outcome.value if outcome.success else None,
                        duration=round(outcome.duration, 3),
                    )
                )
            )
            return outcome

    async def _invoke(self, service_id: str, invoke: Callable[[IMcpTransport], Awaitable[T]]) -> _CallOutcome:
        record = self._records.get(service_id)
        if record is None:
            return _CallOutcome(error=f"Service {service_id} not found")
        if record.status != ConnectionStatus.CONNECTED:
            return _CallOutcome(error=f"Service {service_id} is not connected (status: {record.status.value})")

        try:
            return _CallOutcome(value=await invoke(record.transport))
        except McpConnectionError as e:
            if not record.transport.is_connected:
                await self._handle_lost_session(record)
            return _CallOutcome(error=str(e))
        except McpTransportError as e:
            return _CallOutcome(error=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error routing call to service {service_id}")
            return _CallOutcome(error=str(e) or type(e).__name__)

    def _on_session_lost(self, record: ConnectionRecord) -> None:
        """Called by a transport whose established session ended on its own."""
        task = asyncio.create_task(self._handle_lost_session(record), name=f"mcp-session-lost {record.id}")
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: "asyncio.Task[None]") -> None:
        self._background_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Handling lost session failed: {task.exception()}")

    async def _handle_lost_session(self, record: ConnectionRecord) -> None:
        if self._records.get(record.id) is not record or record.status != ConnectionStatus.CONNECTED:
            return
        logger.warning(f"Session with service {record.id} was lost")
        await self.disconnect_service(record.id, reason="session_lost")

    # =========================================================================
    # Internals
    # =========================================================================

    async def _open_session(self, record: ConnectionRecord) -> tuple[McpServerInfo, list, list, list]:
        transport = record.transport
        server_info = await transport.connect()
        tools, resources, prompts = await asyncio.gather(
            self._fetch_capability(record, "tools", transport.list_tools),
            self._fetch_capability(record, "resources", transport.list_resources),
            self._fetch_capability(record, "prompts", transport.list_prompts),
        )
        return server_info, tools, resources, prompts

    async def _fetch_capability(self, record: ConnectionRecord, kind: str, fetch: Callable[[], Awaitable[list]]) -> list:
        try:
            return await fetch()
        except Exception as e:
            # Servers without a capability answer "method not found"
            logger.debug(f"Service {record.id} did not list {kind}: {e}")
            return []

    def _is_superseded(self, record: ConnectionRecord, attempt: int) -> bool:
        return self._records.get(record.id) is not record or record.attempt != attempt or record.status != ConnectionStatus.CONNECTING

    async def _discard_attempt(self, record: ConnectionRecord, attempt: int) -> None:
        # A newer attempt owns the transport now
        if record.attempt == attempt:
            await self._safe_disconnect(record)

    def _current_status(self, service_id: str) -> ConnectionStatus | None:
        record = self._records.get(service_id)
        return record.status if record else None

    async def _safe_disconnect(self, record: ConnectionRecord) -> None:
        try:
            await record.transport.disconnect()
        except Exception as e:
            logger.warning(f"Error disconnecting from service {record.id}: {e}")

    async def _set_status(self, record: ConnectionRecord, status: ConnectionStatus) -> None:
        previous = record.status
        record.status = status
        self._report(self._audit_sink.record_transition(TransitionAuditRecord(record.id, previous, status, record.last_error)))
        await self._publish(ServiceStatusChangedDomainEvent(record.id, status, previous))

    async def _publish(self, event: Any) -> None:
        try:
            await self._event_publisher.publish(event)
        except Exception as e:
            logger.error(f"Failed to publish lifecycle event {type(event).__name__}: {e}")

    def _report(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._audit_tasks.add(task)
        task.add_done_callback(self._on_report_done)

    def _on_report_done(self, task: "asyncio.Task[None]") -> None:
        self._audit_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Call audit sink failed: {task.exception()}")

    def _schedule_reconnect(self, service_id: str) -> None:
        """Schedule a reconnect, replacing any pending one for the service."""
        self._cancel_reconnect(service_id)
        self._reconnect_tasks[service_id] = asyncio.create_task(self._reconnect_after_delay(service_id), name=f"mcp-reconnect {service_id}")
        reconnects_scheduled.add(1, {"service_id": service_id})
        logger.info(f"Reconnect to service {service_id} scheduled in {self._retry_delay:g}s")

    def _cancel_reconnect(self, service_id: str) -> None:
        task = self._reconnect_tasks.pop(service_id, None)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _reconnect_after_delay(self, service_id: str) -> None:
        try:
            await asyncio.sleep(self._retry_delay)
            record = self._records.get(service_id)
            if record is None or not record.definition.enabled or record.status != ConnectionStatus.ERROR:
                logger.debug(f"Skipping reconnect to service {service_id}")
                return
            logger.info(f"Attempting to reconnect to service: {service_id}")
            await self.connect_service(service_id)
        finally:
            if self._reconnect_tasks.get(service_id) is asyncio.current_task():
                del self._reconnect_tasks[service_id]

    async def _fan_out(self, operation: Callable[[str], Awaitable[ConnectionStatus | None]], label: str) -> dict[str, str]:
        service_ids = list(self._records.keys())
        results = await asyncio.gather(*(operation(service_id) for service_id in service_ids), return_exceptions=True)

        errors: dict[str, str] = {}
        for service_id, result in zip(service_ids, results):
            if isinstance(result, BaseException):
                logger.error(f"Failed to {label} service {service_id}: {result}")
                errors[service_id] = str(result) or type(result).__name__
            elif label == "connect" and result == ConnectionStatus.ERROR:
                record = self._records.get(service_id)
                errors[service_id] = (record.last_error if record else None) or "Connection failed"
        return errors
