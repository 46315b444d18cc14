"""Main entry point: run the connection broker for the configured services."""

import asyncio
import logging
import signal

from mcp_bridge.application.service_config_loader import load_service_definitions
from mcp_bridge.application.services import ConnectionBroker, LifecycleEventPublisher, LoggingCallAuditSink
from mcp_bridge.application.settings import Settings, app_settings, configure_logging
from mcp_bridge.domain.events import ServiceConnectionFailedDomainEvent
from mcp_bridge.domain.models import ServiceConfigurationError, ServiceDefinition
from mcp_bridge.infrastructure.mcp import McpEnvironmentResolver, TransportFactory

log = logging.getLogger(__name__)


def create_broker(settings: Settings) -> ConnectionBroker:
    """Wire the broker and its collaborators from settings."""
    env_resolver = McpEnvironmentResolver(secrets_path=settings.mcp_secrets_path)
    transport_factory = TransportFactory(
        env_resolver=env_resolver,
        default_timeout=settings.request_timeout,
        disconnect_timeout=settings.disconnect_timeout,
    )
    publisher = LifecycleEventPublisher()
    publisher.subscribe(
        lambda event: log.warning(f"Service {event.service_id} unavailable, retrying in {event.retry_in:g}s: {event.error}"),
        ServiceConnectionFailedDomainEvent,
    )
    return ConnectionBroker(
        transport_factory=transport_factory,
        event_publisher=publisher,
        audit_sink=LoggingCallAuditSink(max_entries=settings.audit_max_entries),
        connection_timeout=settings.connection_timeout,
        retry_delay=settings.retry_delay,
    )


async def register_services(broker: ConnectionBroker, definitions: list[ServiceDefinition]) -> int:
    """Register all definitions concurrently so a hanging backend cannot delay the others.

    Returns:
        Number of definitions the broker accepted
    """
    results = await asyncio.gather(*(broker.register_service(definition) for definition in definitions), return_exceptions=True)

    registered = 0
    for definition, result in zip(definitions, results):
        if isinstance(result, ServiceConfigurationError):
            log.error(f"Service {definition.id} rejected: {result}")
        elif isinstance(result, BaseException):
            log.error(f"Failed to register service {definition.id}: {result}")
        else:
            registered += 1
    return registered


async def run(settings: Settings) -> None:
    """Register every configured service and serve until SIGINT/SIGTERM."""
    broker = create_broker(settings)

    try:
        definitions = load_service_definitions(settings.services_config_path)
    except ServiceConfigurationError as e:
        log.error(f"Cannot load services: {e}")
        definitions = []

    await register_services(broker, definitions)

    connected = len(broker.get_connected_services())
    log.info(f"🚀 {settings.app_name} v{settings.app_version} running with {connected}/{len(definitions)} service(s) connected")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; KeyboardInterrupt still stops asyncio.run
            pass

    try:
        await stop.wait()
    finally:
        errors = await broker.shutdown()
        for service_id, error in errors.items():
            log.warning(f"Service {service_id} did not shut down cleanly: {error}")
        log.info("MCP bridge stopped")


def main() -> None:
    configure_logging(log_level=app_settings.log_level)
    asyncio.run(run(app_settings))


if __name__ == "__main__":
    main()
