"""
Sales Order Service Event Package

Event-driven architecture for sales order service:
- Publishing: order created/updated/deleted, tax calculated, status changed
- Subscription: e-signature status updates
"""

from .models import (
    SalesOrderEventType,
    SalesOrderEventData,
    SalesOrderStatusChangedEventData,
    SalesOrderTaxCalculatedEventData,
)

from .publishers import (
    publish_sales_order_created,
    publish_sales_order_updated,
    publish_sales_order_deleted,
    publish_tax_calculated,
    publish_status_changed,
)

from .handlers import get_event_handlers, handle_signature_status_changed

__all__ = [
    # Event models
    "SalesOrderEventType",
    "SalesOrderEventData",
    "SalesOrderStatusChangedEventData",
    "SalesOrderTaxCalculatedEventData",
    # Publishers
    "publish_sales_order_created",
    "publish_sales_order_updated",
    "publish_sales_order_deleted",
    "publish_tax_calculated",
    "publish_status_changed",
    # Handlers
    "get_event_handlers",
    "handle_signature_status_changed",
]
