"""Business metrics for the MCP bridge.

Defines OpenTelemetry metrics for the connection broker:
- Connections: attempts, failures and scheduled reconnects per backend
- Calls: routed tool calls, resource reads and prompt fetches
"""

from opentelemetry import metrics

meter = metrics.get_meter(__name__)

# =============================================================================
# CONNECTION METRICS
# =============================================================================

connection_attempts = meter.create_counter(
    name="mcp_bridge.connections.attempts",
    description="Total backend connection attempts",
    unit="1",
)

connection_failures = meter.create_counter(
    name="mcp_bridge.connections.failures",
    description="Total backend connection failures (including timeouts)",
    unit="1",
)

reconnects_scheduled = meter.create_counter(
    name="mcp_bridge.connections.reconnects_scheduled",
    description="Total reconnect attempts scheduled after a failure",
    unit="1",
)

connection_time = meter.create_histogram(
    name="mcp_bridge.connection.time",
    description="Time to establish a backend session and fetch its capabilities",
    unit="ms",
)

# =============================================================================
# CALL METRICS
# =============================================================================

calls_routed = meter.create_counter(
    name="mcp_bridge.calls.routed",
    description="Total calls routed to backends (tools, resources, prompts)",
    unit="1",
)

call_failures = meter.create_counter(
    name="mcp_bridge.calls.failures",
    description="Total routed calls that returned a failure envelope",
    unit="1",
)

call_duration = meter.create_histogram(
    name="mcp_bridge.call.duration",
    description="Time to route a call and receive the backend response",
    unit="ms",
)
