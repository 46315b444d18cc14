"""MCP Transport Factory.

Creates transport instances from service definitions. The concrete class
is chosen from a map keyed on the definition's transport kind.
"""

import logging
from collections.abc import Callable

from mcp_bridge.domain.enums import TransportKind
from mcp_bridge.domain.models import ServiceConfigurationError, ServiceDefinition

from .env_resolver import McpEnvironmentResolver
from .session_transport import DEFAULT_DISCONNECT_TIMEOUT, DEFAULT_TIMEOUT
from .sse_transport import SseTransport
from .stdio_transport import StdioTransport
from .transport import IMcpTransport
from .websocket_transport import WebSocketTransport

logger = logging.getLogger(__name__)


class TransportFactory:
    """Factory for creating MCP transport instances.

    The broker asks for exactly one transport per registered service and
    keeps it for the service's lifetime, so the factory holds no pool.

    Usage:
        factory = TransportFactory(env_resolver)
        transport = factory.create(definition)
        await transport.connect()
    """

    def __init__(
        self,
        env_resolver: McpEnvironmentResolver | None = None,
        default_timeout: float = DEFAULT_TIMEOUT,
        disconnect_timeout: float = DEFAULT_DISCONNECT_TIMEOUT,
    ):
        """Initialize the transport factory.

        Args:
            env_resolver: Resolver for ``${VAR}`` placeholders.
                         If None, environment and headers are used as-is.
            default_timeout: Request timeout for created transports.
            disconnect_timeout: Teardown timeout for created transports.
        """
        self._env_resolver = env_resolver
        self._default_timeout = default_timeout
        self._disconnect_timeout = disconnect_timeout
        self._builders: dict[TransportKind, Callable[[ServiceDefinition, dict[str, str], dict[str, str]], IMcpTransport]] = {
            TransportKind.STDIO: self._create_stdio,
            TransportKind.SSE: self._create_sse,
            TransportKind.WEBSOCKET: self._create_websocket,
        }

    @property
    def supported_transports(self) -> list[TransportKind]:
        return list(self._builders.keys())

    def create(self, definition: ServiceDefinition) -> IMcpTransport:
        """Create a new (not connected) transport for a service definition.

        Raises:
            ServiceConfigurationError: If the definition is invalid or its transport is unsupported
        """
        definition.validate()

        builder = self._builders.get(definition.transport)
        if builder is None:
            raise ServiceConfigurationError(f"Unsupported transport type: {definition.transport}", definition.id)

        environment = dict(definition.env)
        headers = dict(definition.headers)
        if self._env_resolver is not None:
            result = self._env_resolver.resolve(definition)
            environment, headers = result.environment, result.headers
            if result.missing:
                logger.warning(f"Service {definition.id}: missing environment variables: {result.missing}")

        logger.debug(f"Creating {definition.transport.value} transport for service {definition.id}")
        return builder(definition, environment, headers)

    def _create_stdio(self, definition: ServiceDefinition, environment: dict[str, str], headers: dict[str, str]) -> IMcpTransport:
        return StdioTransport(
            command=definition.command or "",
            args=list(definition.args),
            environment=environment,
            timeout=self._default_timeout,
            disconnect_timeout=self._disconnect_timeout,
        )

    def _create_sse(self, definition: ServiceDefinition, environment: dict[str, str], headers: dict[str, str]) -> IMcpTransport:
        return SseTransport(
            url=definition.url or "",
            headers=headers,
            timeout=self._default_timeout,
            disconnect_timeout=self._disconnect_timeout,
        )

    def _create_websocket(self, definition: ServiceDefinition, environment: dict[str, str], headers: dict[str, str]) -> IMcpTransport:
        return WebSocketTransport(
            url=definition.url or "",
            headers=headers,
            timeout=self._default_timeout,
            disconnect_timeout=self._disconnect_timeout,
        )
