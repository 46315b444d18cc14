"""Tests for ConnectionBroker.

Tests cover:
- Registration, replacement and removal of services
- Connection state machine (idempotent connect, timeouts, capability discovery)
- Reconnect scheduling (single pending retry per service, replacement, cancellation)
- Call routing envelopes (tools, resources, prompts) and lost sessions
- Bulk operations and shutdown
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from mcp_bridge.application.services import ConnectionBroker, LoggingCallAuditSink
from mcp_bridge.domain.enums import ConnectionStatus, TransportKind
from mcp_bridge.domain.events import (
    ServiceConnectedDomainEvent,
    ServiceConnectionFailedDomainEvent,
    ServiceDisconnectedDomainEvent,
    ServiceRegisteredDomainEvent,
    ServiceRemovedDomainEvent,
    ServiceStatusChangedDomainEvent,
)
from mcp_bridge.domain.models import PromptRequest, ResourceRequest, ServiceConfigurationError, ServiceDefinition, ToolCallRequest
from mcp_bridge.infrastructure.mcp import McpConnectionError, McpRemoteError, McpResourceContents, McpResourceResult
from tests.fixtures import FakeTransport, McpPayloadFactory, ServiceDefinitionFactory

# ============================================================================
# HELPERS
# ============================================================================


def status_changes(events: list, service_id: str) -> list[ConnectionStatus]:
    """Statuses reported by status-changed events for one service, in order."""
    return [e.status for e in events if isinstance(e, ServiceStatusChangedDomainEvent) and e.service_id == service_id]


# ============================================================================
# REGISTRATION
# ============================================================================


class TestRegisterService:
    """Test register_service and remove_service."""

    @pytest.mark.asyncio
    async def test_register_enabled_service_connects(
        self,
        broker: ConnectionBroker,
        planned_transports: dict[str, FakeTransport],
        events: list,
    ) -> None:
        """An enabled service reaches connected and its tools are cached."""
        planned_transports["filesystem"] = FakeTransport(
            tools=[McpPayloadFactory.create_tool("read_file"), McpPayloadFactory.create_tool("write_file")],
            resources=[McpPayloadFactory.create_resource()],
        )

        summary = await broker.register_service(ServiceDefinitionFactory.create_stdio())

        assert summary.status == ConnectionStatus.CONNECTED
        assert summary.tool_count == 2
        assert summary.resource_count == 1
        assert summary.connected_at is not None
        assert summary.last_error is None
        assert [type(e) for e in events] == [
            ServiceStatusChangedDomainEvent,
            ServiceStatusChangedDomainEvent,
            ServiceConnectedDomainEvent,
            ServiceRegisteredDomainEvent,
        ]
        assert status_changes(events, "filesystem") == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]

    @pytest.mark.asyncio
    async def test_register_disabled_service_stays_disconnected(
        self,
        broker: ConnectionBroker,
        created_transports: list[FakeTransport],
        events: list,
    ) -> None:
        """A disabled service is registered without a connection attempt."""
        summary = await broker.register_service(ServiceDefinitionFactory.create_stdio(enabled=False))

        assert summary.status == ConnectionStatus.DISCONNECTED
        assert created_transports[0].connect_calls == 0
        assert [type(e) for e in events] == [ServiceRegisteredDomainEvent]

    @pytest.mark.asyncio
    async def test_register_invalid_definition_raises(self, broker: ConnectionBroker, transport_factory: MagicMock, events: list) -> None:
        """A definition missing its transport parameters is rejected and nothing is registered."""
        definition = ServiceDefinition(id="broken", name="Broken", transport=TransportKind.STDIO)

        with pytest.raises(ServiceConfigurationError):
            await broker.register_service(definition)

        assert broker.get_service("broken") is None
        transport_factory.create.assert_not_called()
        assert events == []

    @pytest.mark.asyncio
    async def test_reregister_replaces_previous_record(
        self,
        broker: ConnectionBroker,
        planned_transports: dict[str, FakeTransport],
        created_transports: list[FakeTransport],
        events: list,
    ) -> None:
        """Registering an existing id tears down the old record first."""
        planned_transports["filesystem"] = FakeTransport(connect_error=McpConnectionError("spawn failed"))
        await broker.register_service(ServiceDefinitionFactory.create_stdio())
        assert broker.get_service("filesystem").last_error == "spawn failed"

        summary = await broker.register_service(ServiceDefinitionFactory.create_stdio())

        assert len(created_transports) == 2
        assert summary.status == ConnectionStatus.CONNECTED
        assert summary.last_error is None
        assert any(isinstance(e, ServiceRemovedDomainEvent) for e in events)
        assert not broker.has_pending_reconnect("filesystem")

    @pytest.mark.asyncio
    async def test_remove_then_register_yields_fresh_record(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport]) -> None:
        """Remove followed by register starts from empty caches and no error."""
        planned_transports["filesystem"] = FakeTransport(tools=[McpPayloadFactory.create_tool(f"tool_{i}") for i in range(3)])
        await broker.register_service(ServiceDefinitionFactory.create_stdio())
        await broker.remove_service("filesystem")

        planned_transports["filesystem"] = FakeTransport(tools=[])
        summary = await broker.register_service(ServiceDefinitionFactory.create_stdio(enabled=False))

        assert summary.tool_count == 0
        assert summary.last_error is None
        assert summary.connected_at is None
        assert summary.status == ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_remove_disconnects_and_emits_event(
        self,
        broker: ConnectionBroker,
        created_transports: list[FakeTransport],
        events: list,
    ) -> None:
        """Removing a connected service disconnects its transport."""
        await broker.register_service(ServiceDefinitionFactory.create_stdio())

        removed = await broker.remove_service("filesystem")

        assert removed is True
        assert created_transports[0].disconnect_calls == 1
        assert broker.get_services() == []
        assert isinstance(events[-1], ServiceRemovedDomainEvent)

    @pytest.mark.asyncio
    async def test_remove_unknown_service_is_noop(self, broker: ConnectionBroker, events: list) -> None:
        """Removing an unknown id does nothing."""
        assert await broker.remove_service("ghost") is False
        assert events == []


# ============================================================================
# CONNECTION STATE MACHINE
# ============================================================================


class TestConnectService:
    """Test connect_service and disconnect_service."""

    @pytest.mark.asyncio
    async def test_concurrent_connects_reach_transport_once(
        self,
        broker: ConnectionBroker,
        planned_transports: dict[str, FakeTransport],
    ) -> None:
        """Connect is idempotent while an attempt is in flight."""
        transport = FakeTransport(connect_delay=0.05)
        planned_transports["filesystem"] = transport
        await broker.register_service(ServiceDefinitionFactory.create_stdio(enabled=False))

        results = await asyncio.gather(*(broker.connect_service("filesystem") for _ in range(3)))

        assert transport.connect_calls == 1
        assert ConnectionStatus.CONNECTED in results
        assert broker.get_service("filesystem").status == ConnectionStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_connect_when_connected_is_noop(self, broker: ConnectionBroker, created_transports: list[FakeTransport], events: list) -> None:
        """Connecting an already connected service changes nothing."""
        await broker.register_service(ServiceDefinitionFactory.create_stdio())
        events.clear()

        status = await broker.connect_service("filesystem")

        assert status == ConnectionStatus.CONNECTED
        assert created_transports[0].connect_calls == 1
        assert events == []

    @pytest.mark.asyncio
    async def test_connect_unknown_service_returns_none(self, broker: ConnectionBroker) -> None:
        """Connecting an unknown id reports None."""
        assert await broker.connect_service("ghost") is None

    @pytest.mark.asyncio
    async def test_failed_capability_list_degrades_to_empty(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport]) -> None:
        """A backend that cannot list one capability still connects."""
        transport = FakeTransport(prompts=[McpPayloadFactory.create_prompt()])
        transport.list_errors["resources"] = McpRemoteError("Method not found", code=-32601)
        planned_transports["filesystem"] = transport

        summary = await broker.register_service(ServiceDefinitionFactory.create_stdio())

        assert summary.status == ConnectionStatus.CONNECTED
        assert summary.tool_count == 1
        assert summary.resource_count == 0
        assert summary.prompt_count == 1

    @pytest.mark.asyncio
    async def test_connect_timeout_moves_to_error(
        self,
        broker: ConnectionBroker,
        planned_transports: dict[str, FakeTransport],
        events: list,
    ) -> None:
        """A connect that outlives the connection timeout fails and is torn down."""
        transport = FakeTransport(connect_delay=5.0)
        planned_transports["filesystem"] = transport

        summary = await broker.register_service(ServiceDefinitionFactory.create_stdio())

        assert summary.status == ConnectionStatus.ERROR
        assert summary.last_error == "Connection timeout after 0.5s"
        assert transport.disconnect_calls >= 1
        assert broker.has_pending_reconnect("filesystem")
        failures = [e for e in events if isinstance(e, ServiceConnectionFailedDomainEvent)]
        assert len(failures) == 1
        assert failures[0].retry_in == 0.2

    @pytest.mark.asyncio
    async def test_connect_failure_records_error(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport], events: list) -> None:
        """Transport errors are recorded on the service, not raised."""
        planned_transports["filesystem"] = FakeTransport(connect_error=McpConnectionError("MCP server command not found: npx"))

        summary = await broker.register_service(ServiceDefinitionFactory.create_stdio())

        assert summary.status == ConnectionStatus.ERROR
        assert summary.last_error == "MCP server command not found: npx"
        assert summary.tool_count == 0
        assert status_changes(events, "filesystem") == [ConnectionStatus.CONNECTING, ConnectionStatus.ERROR]

    @pytest.mark.asyncio
    async def test_disconnect_clears_caches(
        self,
        broker: ConnectionBroker,
        created_transports: list[FakeTransport],
        events: list,
    ) -> None:
        """Disconnect tears down the transport and forgets capabilities."""
        await broker.register_service(ServiceDefinitionFactory.create_stdio())

        status = await broker.disconnect_service("filesystem")

        summary = broker.get_service("filesystem")
        assert status == ConnectionStatus.DISCONNECTED
        assert summary.tool_count == 0
        assert summary.connected_at is None
        assert created_transports[0].disconnect_calls == 1
        assert isinstance(events[-1], ServiceDisconnectedDomainEvent)
        assert events[-1].reason == "requested"

    @pytest.mark.asyncio
    async def test_disconnect_when_disconnected_is_noop(self, broker: ConnectionBroker, created_transports: list[FakeTransport], events: list) -> None:
        """Disconnect only acts on connecting or connected services."""
        await broker.register_service(ServiceDefinitionFactory.create_stdio(enabled=False))
        events.clear()

        status = await broker.disconnect_service("filesystem")

        assert status == ConnectionStatus.DISCONNECTED
        assert created_transports[0].disconnect_calls == 0
        assert events == []

    @pytest.mark.asyncio
    async def test_disconnect_during_connect_discards_attempt(
        self,
        broker: ConnectionBroker,
        planned_transports: dict[str, FakeTransport],
    ) -> None:
        """A connect that completes after a disconnect does not resurrect the service."""
        transport = FakeTransport(connect_delay=0.1)
        planned_transports["filesystem"] = transport
        await broker.register_service(ServiceDefinitionFactory.create_stdio(enabled=False))

        connecting = asyncio.create_task(broker.connect_service("filesystem"))
        await asyncio.sleep(0.02)
        await broker.disconnect_service("filesystem")
        await connecting

        assert broker.get_service("filesystem").status == ConnectionStatus.DISCONNECTED
        assert not transport.is_connected
        assert not broker.has_pending_reconnect("filesystem")


# ============================================================================
# RECONNECT SCHEDULING
# ============================================================================


class TestReconnectScheduling:
    """Test the reconnect loop after failed connections."""

    @pytest.mark.asyncio
    async def test_failing_backend_retries_once_per_delay(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport]) -> None:
        """After one retry delay exactly one retry has happened and the latest error is kept."""
        transport = FakeTransport(connect_error=McpConnectionError("connection refused"))
        planned_transports["search"] = transport
        await broker.register_service(ServiceDefinitionFactory.create_sse())

        transport.connect_error = McpConnectionError("connection refused again")
        await asyncio.sleep(0.3)

        summary = broker.get_service("search")
        assert transport.connect_calls == 2
        assert summary.status == ConnectionStatus.ERROR
        assert summary.last_error == "connection refused again"

    @pytest.mark.asyncio
    async def test_retry_recovers_when_backend_comes_back(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport]) -> None:
        """A backend that starts working is connected by the scheduled retry."""
        transport = FakeTransport(connect_error=McpConnectionError("connection refused"))
        planned_transports["search"] = transport
        await broker.register_service(ServiceDefinitionFactory.create_sse())

        transport.connect_error = None
        await asyncio.sleep(0.3)

        summary = broker.get_service("search")
        assert summary.status == ConnectionStatus.CONNECTED
        assert summary.last_error is None

    @pytest.mark.asyncio
    async def test_second_failure_replaces_pending_retry(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport]) -> None:
        """A failure before the timer fires cancels and replaces it."""
        transport = FakeTransport(connect_error=McpConnectionError("down"))
        planned_transports["search"] = transport
        await broker.register_service(ServiceDefinitionFactory.create_sse())

        await asyncio.sleep(0.1)
        await broker.connect_service("search")
        await asyncio.sleep(0.15)

        # The first timer (due at 0.2s) was replaced by one due at 0.3s
        assert transport.connect_calls == 2
        assert broker.has_pending_reconnect("search")

        await asyncio.sleep(0.1)
        assert transport.connect_calls == 3

    @pytest.mark.asyncio
    async def test_disabled_service_is_not_retried(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport]) -> None:
        """A retry only reconnects enabled services."""
        transport = FakeTransport(connect_error=McpConnectionError("down"))
        planned_transports["search"] = transport
        await broker.register_service(ServiceDefinitionFactory.create_sse(enabled=False))

        await broker.connect_service("search")
        await asyncio.sleep(0.3)

        assert transport.connect_calls == 1
        assert broker.get_service("search").status == ConnectionStatus.ERROR

    @pytest.mark.asyncio
    async def test_manual_connect_preempts_retry(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport]) -> None:
        """A retry finding the service no longer in error does nothing."""
        transport = FakeTransport(connect_error=McpConnectionError("down"))
        planned_transports["search"] = transport
        await broker.register_service(ServiceDefinitionFactory.create_sse())

        transport.connect_error = None
        await broker.connect_service("search")
        await asyncio.sleep(0.3)

        assert transport.connect_calls == 2
        assert broker.get_service("search").status == ConnectionStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_remove_cancels_pending_retry(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport]) -> None:
        """Removing a service in error cancels its reconnect."""
        transport = FakeTransport(connect_error=McpConnectionError("down"))
        planned_transports["search"] = transport
        await broker.register_service(ServiceDefinitionFactory.create_sse())

        await broker.remove_service("search")
        await asyncio.sleep(0.3)

        assert transport.connect_calls == 1
        assert not broker.has_pending_reconnect("search")


# ============================================================================
# CALL ROUTING
# ============================================================================


class TestCallRouting:
    """Test call_tool, read_resource and get_prompt envelopes."""

    @pytest.mark.asyncio
    async def test_call_tool_success(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport]) -> None:
        """A known tool on a connected service returns the transport's payload."""
        transport = FakeTransport()
        transport.tool_results["read_file"] = McpPayloadFactory.create_tool_result("# Readme")
        planned_transports["filesystem"] = transport
        await broker.register_service(ServiceDefinitionFactory.create_stdio())

        response = await broker.call_tool(ToolCallRequest("filesystem", "read_file", {"path": "/data/readme.md"}))

        assert response.success is True
        assert response.result == [{"type": "text", "text": "# Readme"}]
        assert response.error is None
        assert response.metadata["service_id"] == "filesystem"
        assert response.metadata["tool_name"] == "read_file"
        assert response.metadata["execution_time"] >= 0
        assert transport.tool_calls == [("read_file", {"path": "/data/readme.md"})]

    @pytest.mark.asyncio
    async def test_call_tool_unknown_service(self, broker: ConnectionBroker, transport_factory: MagicMock, events: list) -> None:
        """An unknown service id fails without side effects."""
        response = await broker.call_tool(ToolCallRequest("ghost", "anything", {}))

        assert response.to_dict()["success"] is False
        assert response.error == "Service ghost not found"
        assert response.metadata["service_id"] == "ghost"
        assert response.metadata["tool_name"] == "anything"
        transport_factory.create.assert_not_called()
        assert events == []

    @pytest.mark.asyncio
    async def test_call_tool_names_current_status(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport]) -> None:
        """A service in error rejects calls with its status."""
        transport = FakeTransport(connect_error=McpConnectionError("down"))
        planned_transports["filesystem"] = transport
        await broker.register_service(ServiceDefinitionFactory.create_stdio())

        response = await broker.call_tool(ToolCallRequest("filesystem", "read_file", {}))

        assert response.success is False
        assert response.error == "Service filesystem is not connected (status: error)"
        assert transport.tool_calls == []

    @pytest.mark.asyncio
    async def test_call_tool_while_connecting_does_not_wait(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport]) -> None:
        """Calls during a connect attempt fail immediately."""
        planned_transports["filesystem"] = FakeTransport(connect_delay=0.2)
        await broker.register_service(ServiceDefinitionFactory.create_stdio(enabled=False))
        connecting = asyncio.create_task(broker.connect_service("filesystem"))
        await asyncio.sleep(0.01)

        response = await broker.call_tool(ToolCallRequest("filesystem", "read_file", {}))
        await connecting

        assert response.error == "Service filesystem is not connected (status: connecting)"
        assert response.metadata["execution_time"] < 100

    @pytest.mark.asyncio
    async def test_backend_error_message_is_verbatim(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport]) -> None:
        """A JSON-RPC error from the backend is returned unchanged."""
        transport = FakeTransport()
        transport.tool_errors["read_file"] = McpRemoteError("File not found: /nope", code=-32602)
        planned_transports["filesystem"] = transport
        await broker.register_service(ServiceDefinitionFactory.create_stdio())

        response = await broker.call_tool(ToolCallRequest("filesystem", "read_file", {"path": "/nope"}))

        assert response.success is False
        assert response.error == "File not found: /nope"
        assert broker.get_service("filesystem").status == ConnectionStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_tool_flagged_error_fails_call(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport]) -> None:
        """A tool result with isError is reported as a failed call with the tool's text."""
        transport = FakeTransport()
        transport.tool_results["read_file"] = McpPayloadFactory.create_tool_result("permission denied", is_error=True)
        planned_transports["filesystem"] = transport
        await broker.register_service(ServiceDefinitionFactory.create_stdio())

        response = await broker.call_tool(ToolCallRequest("filesystem", "read_file", {}))

        assert response.success is False
        assert response.error == "permission denied"

    @pytest.mark.asyncio
    async def test_lost_session_moves_to_disconnected(
        self,
        broker: ConnectionBroker,
        planned_transports: dict[str, FakeTransport],
        events: list,
    ) -> None:
        """A call that finds the session gone marks the service disconnected."""
        transport = FakeTransport()
        planned_transports["filesystem"] = transport
        await broker.register_service(ServiceDefinitionFactory.create_stdio())
        transport.drop_session()

        response = await broker.call_tool(ToolCallRequest("filesystem", "read_file", {}))

        summary = broker.get_service("filesystem")
        assert response.success is False
        assert summary.status == ConnectionStatus.DISCONNECTED
        assert summary.tool_count == 0
        disconnected = [e for e in events if isinstance(e, ServiceDisconnectedDomainEvent)]
        assert disconnected[-1].reason == "session_lost"

    @pytest.mark.asyncio
    async def test_idle_backend_exit_moves_to_disconnected(
        self,
        broker: ConnectionBroker,
        planned_transports: dict[str, FakeTransport],
        events: list,
    ) -> None:
        """A backend exiting between calls is noticed without routing a call."""
        transport = FakeTransport()
        planned_transports["filesystem"] = transport
        await broker.register_service(ServiceDefinitionFactory.create_stdio())

        transport.crash()
        await asyncio.sleep(0.05)

        summary = broker.get_service("filesystem")
        assert summary.status == ConnectionStatus.DISCONNECTED
        assert broker.get_all_tools() == []
        assert transport.disconnect_calls == 1
        disconnected = [e for e in events if isinstance(e, ServiceDisconnectedDomainEvent)]
        assert disconnected[-1].reason == "session_lost"
        assert not broker.has_pending_reconnect("filesystem")

    @pytest.mark.asyncio
    async def test_session_lost_after_removal_is_ignored(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport], events: list) -> None:
        """A late notification from a removed service's transport changes nothing."""
        transport = FakeTransport()
        planned_transports["filesystem"] = transport
        await broker.register_service(ServiceDefinitionFactory.create_stdio())
        await broker.remove_service("filesystem")
        events.clear()

        transport.crash()
        await asyncio.sleep(0.05)

        assert broker.get_service("filesystem") is None
        assert events == []

    @pytest.mark.asyncio
    async def test_read_text_resource(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport]) -> None:
        """A single text content is returned with its MIME type and byte size."""
        transport = FakeTransport()
        transport.resource_results["notes://today"] = McpPayloadFactory.create_text_resource("notes://today", "héllo", mime_type="text/markdown")
        planned_transports["notes"] = transport
        await broker.register_service(ServiceDefinitionFactory.create_stdio(service_id="notes", name="Notes"))

        response = await broker.read_resource(ResourceRequest("notes", "notes://today"))

        assert response.success is True
        assert response.content == "héllo"
        assert response.mime_type == "text/markdown"
        assert response.metadata["size"] == 6
        assert response.metadata["uri"] == "notes://today"

    @pytest.mark.asyncio
    async def test_read_multi_part_resource_as_json(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport]) -> None:
        """Several content items are serialized as a JSON array."""
        transport = FakeTransport()
        transport.resource_results["notes://all"] = McpResourceResult(
            contents=[
                McpResourceContents(uri="notes://a", text="a"),
                McpResourceContents(uri="notes://b", text="b"),
            ]
        )
        planned_transports["notes"] = transport
        await broker.register_service(ServiceDefinitionFactory.create_stdio(service_id="notes", name="Notes"))

        response = await broker.read_resource(ResourceRequest("notes", "notes://all"))

        assert response.mime_type == "application/json"
        assert '"uri": "notes://a"' in response.content

    @pytest.mark.asyncio
    async def test_read_resource_unknown_service(self, broker: ConnectionBroker) -> None:
        """Unknown services fail resource reads too."""
        response = await broker.read_resource(ResourceRequest("ghost", "notes://today"))

        assert response.success is False
        assert response.error == "Service ghost not found"
        assert response.metadata["uri"] == "notes://today"
        assert "size" not in response.metadata

    @pytest.mark.asyncio
    async def test_get_prompt(self, broker: ConnectionBroker) -> None:
        """Prompts are rendered through the transport."""
        await broker.register_service(ServiceDefinitionFactory.create_stdio())

        response = await broker.get_prompt(PromptRequest("filesystem", "review", {"file": "a.md"}))

        assert response.success is True
        assert response.result["description"] == "review prompt"
        assert response.metadata["prompt_name"] == "review"

    @pytest.mark.asyncio
    async def test_every_call_is_audited_once(self, broker: ConnectionBroker, audit_sink: LoggingCallAuditSink) -> None:
        """Successful and failed calls each produce exactly one audit record."""
        await broker.register_service(ServiceDefinitionFactory.create_stdio())

        await broker.call_tool(ToolCallRequest("filesystem", "read_file", {"path": "/a"}))
        await broker.call_tool(ToolCallRequest("ghost", "read_file", {}))
        await broker.read_resource(ResourceRequest("filesystem", "file:///a"))
        await broker.drain_audit()

        calls = audit_sink.get_calls()
        assert len(calls) == 3
        assert [c.operation for c in calls] == ["resource", "tool", "tool"]
        assert calls[1].success is False
        assert calls[1].error == "Service ghost not found"
        assert calls[1].result is None
        assert calls[2].arguments == {"path": "/a"}

    @pytest.mark.asyncio
    async def test_audit_records_carry_result(self, broker: ConnectionBroker, audit_sink: LoggingCallAuditSink) -> None:
        """Successful calls are audited with the payload returned to the caller."""
        await broker.register_service(ServiceDefinitionFactory.create_stdio())

        response = await broker.call_tool(ToolCallRequest("filesystem", "read_file", {"path": "/a"}))
        await broker.read_resource(ResourceRequest("filesystem", "file:///a"))
        await broker.drain_audit()

        resource_call, tool_call = audit_sink.get_calls()
        assert tool_call.result == response.result == [{"type": "text", "text": "read_file done"}]
        assert tool_call.to_dict()["result"] == response.result
        assert resource_call.result == {"content": "contents of file:///a", "mime_type": "text/plain"}

    @pytest.mark.asyncio
    async def test_audit_sink_failure_does_not_affect_call(
        self,
        transport_factory: MagicMock,
        event_publisher,
    ) -> None:
        """A failing audit sink never changes the response."""
        sink = MagicMock(spec=LoggingCallAuditSink)
        sink.record_call.side_effect = RuntimeError("sink down")
        sink.record_transition.side_effect = RuntimeError("sink down")
        broker = ConnectionBroker(transport_factory, event_publisher, audit_sink=sink)

        await broker.register_service(ServiceDefinitionFactory.create_stdio())
        response = await broker.call_tool(ToolCallRequest("filesystem", "read_file", {}))
        await broker.shutdown()

        assert response.success is True


# ============================================================================
# QUERIES
# ============================================================================


class TestQueries:
    """Test the read-only views of the broker."""

    @pytest.mark.asyncio
    async def test_get_all_tools_only_from_connected_services(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport]) -> None:
        """Tools are tagged with their service and disconnected services are skipped."""
        planned_transports["notes"] = FakeTransport(tools=[McpPayloadFactory.create_tool("summarize_page")])
        await broker.register_service(ServiceDefinitionFactory.create_with_declared_capabilities("notes"))
        await broker.register_service(ServiceDefinitionFactory.create_stdio(enabled=False))

        tools = broker.get_all_tools()

        assert len(tools) == 1
        assert tools[0].service_id == "notes"
        assert tools[0].command == "/summarize"
        assert [s.id for s in broker.get_connected_services()] == ["notes"]
        assert len(broker.get_services()) == 2

    @pytest.mark.asyncio
    async def test_get_service_includes_capabilities(self, broker: ConnectionBroker) -> None:
        """The single-service view carries the cached capability lists."""
        await broker.register_service(ServiceDefinitionFactory.create_stdio())

        summary = broker.get_service("filesystem")

        assert [t.name for t in summary.tools] == ["read_file"]
        assert summary.to_dict()["server"] == {"name": "fake-server", "version": "0.1.0"}


# ============================================================================
# BULK OPERATIONS AND SHUTDOWN
# ============================================================================


class TestBulkOperations:
    """Test connect_all, disconnect_all and shutdown."""

    @pytest.mark.asyncio
    async def test_connect_all_collects_failures(self, broker: ConnectionBroker, planned_transports: dict[str, FakeTransport]) -> None:
        """One failing service does not stop the others."""
        planned_transports["service-2"] = FakeTransport(connect_error=McpConnectionError("boom"))
        for definition in ServiceDefinitionFactory.create_many(3, enabled=False):
            await broker.register_service(definition)

        errors = await broker.connect_all()

        assert errors == {"service-2": "boom"}
        assert len(broker.get_connected_services()) == 2

    @pytest.mark.asyncio
    async def test_disconnect_all(self, broker: ConnectionBroker, created_transports: list[FakeTransport]) -> None:
        """Every connected service is disconnected."""
        for definition in ServiceDefinitionFactory.create_many(2):
            await broker.register_service(definition)

        errors = await broker.disconnect_all()

        assert errors == {}
        assert broker.get_connected_services() == []
        assert all(t.disconnect_calls == 1 for t in created_transports)

    @pytest.mark.asyncio
    async def test_shutdown_releases_everything(
        self,
        broker: ConnectionBroker,
        planned_transports: dict[str, FakeTransport],
        created_transports: list[FakeTransport],
        event_publisher,
    ) -> None:
        """Shutdown disconnects connected services, cancels retries and empties the broker."""
        failing = FakeTransport(connect_error=McpConnectionError("down"))
        planned_transports["service-4"] = failing
        for definition in ServiceDefinitionFactory.create_many(4):
            await broker.register_service(definition)
        assert broker.has_pending_reconnect("service-4")

        await broker.shutdown()
        await asyncio.sleep(0.3)

        connected = [t for t in created_transports if t is not failing]
        assert all(t.disconnect_calls == 1 for t in connected)
        assert failing.connect_calls == 1
        assert not broker.has_pending_reconnect("service-4")
        assert broker.get_services() == []
        assert event_publisher.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, broker: ConnectionBroker) -> None:
        """A second shutdown is harmless."""
        await broker.register_service(ServiceDefinitionFactory.create_stdio())

        assert await broker.shutdown() == {}
        assert await broker.shutdown() == {}
