"""
Sales Order Service Event Models

Event data models for sales order lifecycle events.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

# =============================================================================
# Event Type Definitions (Service-Specific)
# =============================================================================

class SalesOrderEventType(str, Enum):
    """
    Events published by sales_order_service.

    Stream: sales-order-stream
    Subjects: sales_order.>
    """
    SALES_ORDER_CREATED = "sales_order.created"
    SALES_ORDER_UPDATED = "sales_order.updated"
    SALES_ORDER_DELETED = "sales_order.deleted"
    SALES_ORDER_TAX_CALCULATED = "sales_order.tax_calculated"
    SALES_ORDER_STATUS_CHANGED = "sales_order.status_changed"


class SalesOrderSubscribedEventType(str, Enum):
    """Events that sales_order_service subscribes to from other services."""
    SIGNATURE_REQUEST_STATUS_CHANGED = "signature.request.status_changed"


class SalesOrderStreamConfig:
    """Stream configuration for sales_order_service"""
    STREAM_NAME = "sales-order-stream"
    SUBJECTS = ["sales_order.>"]
    CONSUMER_PREFIX = "sales-order"


# ============================================================================
# Sales Order Event Models
# ============================================================================


class SalesOrderEventData(BaseModel):
    """
    Event: sales_order.created / sales_order.updated / sales_order.deleted
    """

    order_id: str = Field(..., description="Sales order ID")
    so_number: str = Field(..., description="Human-readable order number")
    tenant_id: str = Field(..., description="Owning tenant")
    customer_id: str = Field(..., description="Customer ID")
    status: str = Field(..., description="Order status after the change")
    version: int = Field(..., description="Order version after the change")
    total_amount: Decimal = Field(..., description="Grand total including tax")
    currency: str = Field(..., description="Order currency")
    actor_id: Optional[str] = Field(None, description="User who made the change")
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class SalesOrderTaxCalculatedEventData(BaseModel):
    """
    Event: sales_order.tax_calculated
    Triggered when a breakdown is attached to a stored order
    """

    order_id: str
    tenant_id: str
    total_tax: Decimal
    subtotal: Decimal
    grand_total: Decimal
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class SalesOrderStatusChangedEventData(BaseModel):
    """
    Event: sales_order.status_changed
    Triggered by every lifecycle transition
    """

    order_id: str
    so_number: str
    tenant_id: str
    previous_status: str
    new_status: str
    transition: str
    actor_id: Optional[str] = None
    reason: Optional[str] = None
    version: int
    timestamp: datetime = Field(default_factory=datetime.utcnow)
