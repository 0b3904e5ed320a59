"""
NATS JetStream Client for Python Microservices

Provides event-driven communication between the sales order service and
its collaborators (e-signature service, fulfillment, reporting) on top of
the nats-py JetStream API.
"""

import asyncio
import json
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Optional

import nats
from nats.aio.client import Client as NATS
from nats.js import JetStreamContext


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles Decimal types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


logger = logging.getLogger(__name__)


class EventType(Enum):
    """Event types published or consumed by the sales order service"""

    # Sales Order Events
    SALES_ORDER_CREATED = "sales_order.created"
    SALES_ORDER_UPDATED = "sales_order.updated"
    SALES_ORDER_DELETED = "sales_order.deleted"
    SALES_ORDER_TAX_CALCULATED = "sales_order.tax_calculated"
    SALES_ORDER_STATUS_CHANGED = "sales_order.status_changed"

    # Signature Events
    SIGNATURE_REQUEST_STATUS_CHANGED = "signature.request.status_changed"


class ServiceSource(Enum):
    """Service sources"""

    SALES_ORDER_SERVICE = "sales_order_service"
    SIGNATURE_SERVICE = "signature_service"
    GATEWAY = "api_gateway"


class Event:
    """Event model"""

    def __init__(
        self,
        event_type: EventType,
        source: ServiceSource,
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type.value
        self.source = source.value
        self.data = data
        self.subject = subject
        self.timestamp = datetime.utcnow().isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "data": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        event = cls.__new__(cls)
        event.id = data.get("id")
        event.type = data.get("type")
        event.source = data.get("source")
        event.subject = data.get("subject")
        event.timestamp = data.get("timestamp")
        event.data = data.get("data", {})
        event.metadata = data.get("metadata", {})
        event.version = data.get("version", "1.0.0")
        return event


class NATSEventBus:
    """
    NATS JetStream event bus.

    Streams are derived from the first token of the event type
    (e.g. sales_order.created -> sales-order-stream).
    """

    def __init__(self, service_name: str, nats_url: str = "nats://localhost:4222"):
        self.service_name = service_name
        self.nats_url = nats_url

        self._nc: Optional[NATS] = None
        self._js: Optional[JetStreamContext] = None
        self._subscriptions: Dict[str, Any] = {}
        self._ensured_streams: set = set()
        self._is_connected = False

        logger.info(f"NATS EventBus initialized: {self.nats_url}")

    async def connect(self):
        """Connect to NATS and open a JetStream context"""
        try:
            self._nc = await nats.connect(self.nats_url, name=self.service_name)
            self._js = self._nc.jetstream()
            self._is_connected = True
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS at {self.nats_url}: {e}")
            raise

    @staticmethod
    def _get_stream_name_for_event(event_type: str) -> str:
        prefix = event_type.split('.')[0]
        return f"{prefix.replace('_', '-')}-stream"

    async def _ensure_stream(self, event_type: str):
        prefix = event_type.split('.')[0]
        stream_name = self._get_stream_name_for_event(event_type)
        if stream_name in self._ensured_streams:
            return stream_name
        try:
            await self._js.add_stream(name=stream_name, subjects=[f"{prefix}.>"])
        except Exception as e:
            # Stream already exists with a compatible config
            logger.debug(f"Stream creation note: {e}")
        self._ensured_streams.add(stream_name)
        return stream_name

    async def publish_event(self, event: Event) -> bool:
        """Publish an event to NATS JetStream using event.type as subject."""
        if not self._is_connected or not self._js:
            logger.error("Not connected to NATS")
            return False

        try:
            stream_name = await self._ensure_stream(event.type)
            ack = await self._js.publish(
                event.type,
                json.dumps(event.to_dict(), cls=DecimalEncoder).encode(),
                headers={
                    "event_id": event.id,
                    "event_type": event.type,
                    "source": event.source,
                },
            )
            logger.info(f"Published event {event.type} [{event.id}] to stream {stream_name}, seq={ack.seq}")
            return True

        except Exception as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    async def subscribe_to_events(
        self, pattern: str, handler: Callable, durable: Optional[str] = None
    ) -> Optional[str]:
        """
        Subscribe to events with a subject pattern using a durable JetStream consumer.

        Args:
            pattern: Subject pattern (e.g., "signature.request.*")
            handler: Async callback receiving an Event
            durable: Optional durable consumer name
        """
        if not self._is_connected or not self._js:
            logger.error("Not connected to NATS")
            return None

        await self._ensure_stream(pattern)
        consumer_name = durable or f"{self.service_name}-{pattern.split('.')[0]}".replace("_", "-")

        async def _on_message(msg):
            try:
                data = json.loads(msg.data.decode())
                if 'type' in data and 'source' in data and 'data' in data:
                    event = Event.from_dict(data)
                else:
                    # Raw payload without an Event envelope
                    event = Event.__new__(Event)
                    event.id = str(uuid.uuid4())
                    event.type = msg.subject
                    event.source = "unknown"
                    event.subject = msg.subject
                    event.timestamp = data.get("timestamp", datetime.utcnow().isoformat())
                    event.data = data
                    event.metadata = {}
                    event.version = "1.0.0"

                await handler(event)
                await msg.ack()
            except Exception as e:
                logger.error(f"Error processing message on {msg.subject}: {e}")
                await msg.nak()

        try:
            sub = await self._js.subscribe(
                pattern,
                cb=_on_message,
                durable=consumer_name,
                manual_ack=True,
            )
            self._subscriptions[pattern] = sub
            logger.info(f"Subscribed to {pattern} (JetStream consumer {consumer_name})")
            return consumer_name
        except Exception as e:
            logger.error(f"Error subscribing to {pattern}: {e}")
            return None

    async def unsubscribe(self, pattern: str) -> bool:
        sub = self._subscriptions.pop(pattern, None)
        if sub is None:
            return False
        await sub.unsubscribe()
        logger.info(f"Unsubscribed from {pattern}")
        return True

    async def close(self):
        """Drain subscriptions and close the NATS connection"""
        for pattern in list(self._subscriptions.keys()):
            try:
                await self.unsubscribe(pattern)
            except Exception as e:
                logger.warning(f"Error unsubscribing from {pattern}: {e}")

        if self._nc:
            await self._nc.drain()
            self._nc = None
            self._js = None

        self._is_connected = False
        self._ensured_streams.clear()
        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._is_connected


# Singleton instance
_event_bus: Optional[NATSEventBus] = None
_event_bus_lock = asyncio.Lock()


async def get_event_bus(service_name: str, nats_url: Optional[str] = None) -> NATSEventBus:
    """
    Get or create the event bus instance.

    Args:
        service_name: Name of the service using the event bus
        nats_url: NATS server URL (defaults to settings.nats_url)
    """
    global _event_bus

    async with _event_bus_lock:
        if _event_bus is None:
            if nats_url is None:
                from core.config import get_settings
                nats_url = get_settings().nats_url
            bus = NATSEventBus(service_name=service_name, nats_url=nats_url)
            await bus.connect()
            _event_bus = bus

    return _event_bus


def create_event(
    event_type: EventType,
    source: ServiceSource,
    data: Dict[str, Any],
    subject: Optional[str] = None,
    metadata: Optional[Dict[str, str]] = None,
) -> Event:
    """Create an Event instance"""
    return Event(
        event_type=event_type,
        source=source,
        data=data,
        subject=subject,
        metadata=metadata,
    )
