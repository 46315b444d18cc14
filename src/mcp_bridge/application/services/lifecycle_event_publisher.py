"""Lifecycle Event Publisher Service.

Delivers the broker's service lifecycle events (registered, removed, status
changed, connected, disconnected, connection failed) to in-process
subscribers and, optionally, to a CloudEvent bus.

The publisher is handed to the broker at construction; there is no global
emitter. Subscriber failures are logged and never reach the broker.
"""

import asyncio
import datetime
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import asdict
from typing import Any

from neuroglia.data.abstractions import DomainEvent
from neuroglia.eventing.cloud_events.cloud_event import CloudEvent, CloudEventSpecVersion
from neuroglia.eventing.cloud_events.infrastructure.cloud_event_bus import CloudEventBus
from neuroglia.eventing.cloud_events.infrastructure.cloud_event_publisher import CloudEventPublishingOptions

logger = logging.getLogger(__name__)

LifecycleEventHandler = Callable[[DomainEvent], Awaitable[None] | None]


class LifecycleEventPublisher:
    """Fan-out of lifecycle events to subscribers.

    Handlers may be plain functions or coroutine functions; coroutine
    handlers are awaited in subscription order, so events for one service
    reach every subscriber in the order they were published.

    Example:
        publisher = LifecycleEventPublisher()
        publisher.subscribe(on_connected, ServiceConnectedDomainEvent)
        broker = ConnectionBroker(transport_factory, publisher, audit_sink)
    """

    def __init__(
        self,
        cloud_event_bus: CloudEventBus | None = None,
        cloud_event_publishing_options: CloudEventPublishingOptions | None = None,
    ):
        """Initialize the publisher.

        Args:
            cloud_event_bus: Optional bus that also receives every event as a CloudEvent
            cloud_event_publishing_options: Source and type prefix for emitted CloudEvents
        """
        self._subscriptions: list[tuple[LifecycleEventHandler, type[DomainEvent] | None]] = []
        self._cloud_event_bus = cloud_event_bus
        self._publishing_options = cloud_event_publishing_options

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, handler: LifecycleEventHandler, event_type: type[DomainEvent] | None = None) -> Callable[[], None]:
        """Register a handler, optionally restricted to one event type.

        Returns:
            A callable that removes the subscription
        """
        subscription = (handler, event_type)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    def unsubscribe(self, handler: LifecycleEventHandler) -> None:
        """Remove every subscription of ``handler``."""
        self._subscriptions = [s for s in self._subscriptions if s[0] != handler]

    def clear(self) -> None:
        """Detach all subscribers."""
        self._subscriptions.clear()

    async def publish(self, event: DomainEvent) -> None:
        """Deliver an event to every matching subscriber.

        Args:
            event: A service lifecycle domain event
        """
        event_name = type(event).__name__
        for handler, event_type in list(self._subscriptions):
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                outcome = handler(event)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception as e:
                # Don't let subscriber failures break the broker
                logger.error(f"Lifecycle event handler {getattr(handler, '__name__', handler)} failed for {event_name}: {e}")

        if self._cloud_event_bus is not None:
            self._publish_cloud_event(event)

    def _publish_cloud_event(self, event: DomainEvent) -> None:
        try:
            options = self._publishing_options
            event_type = getattr(event, "__cloudevent__type__", type(event).__name__)
            cloud_event = CloudEvent(
                id=str(uuid.uuid4()).replace("-", ""),
                source=options.source if options else "mcp-bridge",
                type=f"{options.type_prefix}.{event_type}" if options else event_type,
                specversion=CloudEventSpecVersion.v1_0,
                time=datetime.datetime.now(datetime.UTC),
                subject=getattr(event, "service_id", None),
                data=self._event_to_dict(event),
            )
            self._cloud_event_bus.output_stream.on_next(cloud_event)  # type: ignore[union-attr]
            logger.debug(f"Published lifecycle cloud event: {event_type}")
        except Exception as e:
            logger.error(f"Failed to publish lifecycle cloud event {type(event).__name__}: {e}")

    @staticmethod
    def _event_to_dict(event: DomainEvent) -> dict[str, Any]:
        data = asdict(event)
        for key, value in data.items():
            if isinstance(value, datetime.datetime):
                data[key] = value.isoformat()
            elif hasattr(value, "value"):
                data[key] = value.value
        return data
