"""
Sales Order Service Event Publishers

Publishing never fails the calling request; errors are logged.
"""

import logging
from typing import Optional

from core.nats_client import Event, EventType, ServiceSource

from ..models import SalesOrder
from .models import (
    SalesOrderEventData,
    SalesOrderStatusChangedEventData,
    SalesOrderTaxCalculatedEventData,
)

logger = logging.getLogger(__name__)


def _order_event_data(order: SalesOrder, actor_id: Optional[str]) -> SalesOrderEventData:
    return SalesOrderEventData(
        order_id=order.order_id,
        so_number=order.so_number,
        tenant_id=order.tenant_id,
        customer_id=order.customer_id,
        status=order.status.value,
        version=order.version,
        total_amount=order.total_amount,
        currency=order.currency,
        actor_id=actor_id,
    )


async def _publish(event_bus, event_type: EventType, data: dict, description: str):
    if event_bus is None:
        return
    try:
        event = Event(
            event_type=event_type,
            source=ServiceSource.SALES_ORDER_SERVICE,
            data=data,
        )
        await event_bus.publish_event(event)
        logger.info(f"Published {event_type.value} for {description}")
    except Exception as e:
        logger.error(f"Failed to publish {event_type.value}: {e}")


async def publish_sales_order_created(event_bus, order: SalesOrder, actor_id: Optional[str] = None):
    """Publish sales_order.created event"""
    data = _order_event_data(order, actor_id).model_dump(mode='json')
    await _publish(event_bus, EventType.SALES_ORDER_CREATED, data, f"order {order.so_number}")


async def publish_sales_order_updated(event_bus, order: SalesOrder, actor_id: Optional[str] = None):
    """Publish sales_order.updated event"""
    data = _order_event_data(order, actor_id).model_dump(mode='json')
    await _publish(event_bus, EventType.SALES_ORDER_UPDATED, data, f"order {order.so_number}")


async def publish_sales_order_deleted(event_bus, order: SalesOrder, actor_id: Optional[str] = None):
    """Publish sales_order.deleted event"""
    data = _order_event_data(order, actor_id).model_dump(mode='json')
    await _publish(event_bus, EventType.SALES_ORDER_DELETED, data, f"order {order.so_number}")


async def publish_tax_calculated(event_bus, order: SalesOrder):
    """Publish sales_order.tax_calculated event"""
    totals = order.tax_breakdown.totals
    data = SalesOrderTaxCalculatedEventData(
        order_id=order.order_id,
        tenant_id=order.tenant_id,
        total_tax=totals.total_tax,
        subtotal=totals.subtotal,
        grand_total=totals.grand_total,
    ).model_dump(mode='json')
    await _publish(event_bus, EventType.SALES_ORDER_TAX_CALCULATED, data, f"order {order.so_number}")


async def publish_status_changed(
    event_bus,
    order: SalesOrder,
    previous_status: str,
    transition: str,
    actor_id: Optional[str] = None,
    reason: Optional[str] = None,
):
    """Publish sales_order.status_changed event"""
    data = SalesOrderStatusChangedEventData(
        order_id=order.order_id,
        so_number=order.so_number,
        tenant_id=order.tenant_id,
        previous_status=previous_status,
        new_status=order.status.value,
        transition=transition,
        actor_id=actor_id,
        reason=reason,
        version=order.version,
    ).model_dump(mode='json')
    await _publish(
        event_bus,
        EventType.SALES_ORDER_STATUS_CHANGED,
        data,
        f"order {order.so_number}: {previous_status} -> {order.status.value}",
    )
