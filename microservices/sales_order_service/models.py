"""
Sales Order Service Data Models

Order header, order lines, the persisted tax breakdown, inventory allocation
results, and the request/response models of the sales order API.
"""

from enum import Enum
from typing import Optional, Dict, Any, List, Union
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field, field_validator


# ====================
# Enumerations
# ====================

class SalesOrderStatus(str, Enum):
    """Sales order lifecycle states (persisted verbatim)"""
    QUOTATION = "QUOTATION"
    DRAFT = "DRAFT"
    PENDING_CUSTOMER_SIGNATURE = "PENDING_CUSTOMER_SIGNATURE"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    NEEDS_UPDATE = "NEEDS_UPDATE"
    APPROVED = "APPROVED"
    RELEASED = "RELEASED"
    PARTIALLY_INVOICED = "PARTIALLY_INVOICED"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class AllocationStatus(str, Enum):
    """Per-line inventory allocation outcome"""
    AVAILABLE = "AVAILABLE"
    BACKORDERED = "BACKORDERED"


class SignatureStatus(str, Enum):
    """Status values reported by the e-signature collaborator"""
    PENDING = "pending"
    VIEWED = "viewed"
    SIGNED = "signed"
    DECLINED = "declined"
    EXPIRED = "expired"


# ====================
# Addresses and Lines
# ====================

class PostalAddress(BaseModel):
    """Bill-to / ship-to postal address"""
    line1: Optional[str] = None
    line2: Optional[str] = None
    line3: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = Field(None, description="Province or state code")
    postal_code: Optional[str] = None
    country: Optional[str] = Field(None, description="ISO country code")
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None


class SalesOrderLineInput(BaseModel):
    """Order line as submitted by the caller"""
    line_id: Optional[str] = Field(None, description="Existing line identity; empty for new lines")
    product_id: Optional[str] = None

    # SKU snapshot
    sku: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    sub_category: Optional[str] = None
    product_type: Optional[str] = None
    tax_category: Optional[str] = Field(None, description="Taxability category; tangible_goods when empty")
    external_tax_code: Optional[str] = Field(None, description="Product tax code forwarded to the external calculator")

    quantity_ordered: Decimal = Field(default=Decimal("0"), ge=0)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    uom: Optional[str] = None


class SalesOrderLine(SalesOrderLineInput):
    """Persisted order line"""
    line_id: str
    order_id: str
    line_number: int

    # Money snapshot copied from the tax breakdown
    line_subtotal: Decimal = Decimal("0.00")
    line_tax_amount: Decimal = Decimal("0.00")
    line_total: Decimal = Decimal("0.00")

    # Populated only after allocation
    quantity_allocated: Optional[Decimal] = None
    quantity_backordered: Optional[Decimal] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ====================
# Tax Breakdown
# ====================

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TaxComponent(_CamelModel):
    name: str
    rate: Decimal
    amount: Decimal


class LineTaxBreakdown(_CamelModel):
    line_id: Optional[str] = Field(None, alias="lineId")
    sku: Optional[str] = None
    basis: Decimal
    taxes: List[TaxComponent] = Field(default_factory=list)
    line_tax_total: Decimal = Field(..., alias="lineTaxTotal")
    line_total_with_tax: Decimal = Field(..., alias="lineTotalWithTax")


class ShippingTaxBreakdown(_CamelModel):
    basis: Decimal
    taxes: List[TaxComponent] = Field(default_factory=list)
    tax_total: Decimal = Field(..., alias="taxTotal")
    total_with_tax: Decimal = Field(..., alias="totalWithTax")


class TaxTotals(_CamelModel):
    tax_by_type: Dict[str, Decimal] = Field(default_factory=dict, alias="taxByType")
    total_tax: Decimal = Field(..., alias="totalTax")
    subtotal: Decimal
    grand_total: Decimal = Field(..., alias="grandTotal")


class TaxBreakdown(_CamelModel):
    """
    Tax engine output, persisted verbatim on the order header.

    The shape is identical for every jurisdiction path. Serialized keys are
    camelCase and money values are two-decimal strings.
    """
    per_line: List[LineTaxBreakdown] = Field(default_factory=list, alias="perLine")
    shipping: Optional[ShippingTaxBreakdown] = None
    totals: TaxTotals

    # Reported by the external calculator only
    jurisdiction: Optional[Union[str, Dict[str, Any]]] = None
    has_nexus: Optional[bool] = Field(None, alias="hasNexus")
    combined_rate: Optional[Decimal] = Field(None, alias="combinedRate")
    taxable_amount: Optional[Decimal] = Field(None, alias="taxableAmount")

    def to_storage(self) -> Dict[str, Any]:
        """Stable JSON-compatible representation"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TaxCalculationRequest(BaseModel):
    """Inputs of a tax computation"""
    ship_to: PostalAddress
    customer_exempt: bool = False
    lines: List[SalesOrderLineInput] = Field(default_factory=list)
    shipping_amount: Decimal = Field(default=Decimal("0"), ge=0)
    origin: Optional[Dict[str, str]] = Field(None, description="Ship-from address; company address when empty")


# ====================
# Inventory Allocation
# ====================

class InventoryLot(BaseModel):
    """On-hand inventory record read from the inventory collection"""
    lot_id: str
    sku: str
    quantity: Decimal = Field(default=Decimal("0"))
    status: str = "available"
    location: Optional[str] = None


class LineAllocation(BaseModel):
    """Allocator output for one order line"""
    line_id: Optional[str] = None
    sku: Optional[str] = None
    needed: Decimal
    available: Decimal
    allocatable: Decimal
    backordered: Decimal
    status: AllocationStatus


# ====================
# Sales Order
# ====================

class SalesOrder(BaseModel):
    """
    Sales order aggregate: header, lines and the last computed tax breakdown.
    """
    order_id: str
    so_number: str
    tenant_id: str

    # Customer
    customer_id: str
    customer_name: Optional[str] = None
    po_number: Optional[str] = None
    customer_tax_exempt: bool = False
    tax_exemption_reason: Optional[str] = None

    # Addresses
    bill_to: PostalAddress = Field(default_factory=PostalAddress)
    ship_to: PostalAddress = Field(default_factory=PostalAddress)

    # Money
    currency: str = "USD"
    shipping_amount: Decimal = Decimal("0.00")
    subtotal: Decimal = Decimal("0.00")
    tax_total: Decimal = Decimal("0.00")
    tax_gst: Decimal = Decimal("0.00")
    tax_hst: Decimal = Decimal("0.00")
    tax_pst: Decimal = Decimal("0.00")
    tax_qst: Decimal = Decimal("0.00")
    total_amount: Decimal = Decimal("0.00")

    # Tax cache
    tax_breakdown: Optional[TaxBreakdown] = None
    tax_inputs_hash: Optional[str] = None

    status: SalesOrderStatus = SalesOrderStatus.QUOTATION
    version: int = 1
    comments_internal: Optional[str] = None

    # Signature tracking
    signature_request_id: Optional[str] = None
    signature_status: Optional[SignatureStatus] = None
    signed_document_url: Optional[str] = None

    lines: List[SalesOrderLine] = Field(default_factory=list)

    # Audit
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    converted_at: Optional[datetime] = None
    customer_signature_requested_at: Optional[datetime] = None
    customer_signature_received_at: Optional[datetime] = None
    printed_order_confirmation_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    released_by: Optional[str] = None
    released_at: Optional[datetime] = None
    partially_invoiced_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_reason: Optional[str] = None


# ====================
# Request Models
# ====================

class SalesOrderSubmitRequest(BaseModel):
    """Full header + lines submission (create and edit-save)"""
    customer_id: str = Field(..., min_length=1)
    customer_name: Optional[str] = None
    po_number: Optional[str] = None
    customer_tax_exempt: bool = False
    tax_exemption_reason: Optional[str] = None
    bill_to: PostalAddress = Field(default_factory=PostalAddress)
    ship_to: PostalAddress
    currency: Optional[str] = None
    shipping_amount: Decimal = Field(default=Decimal("0"), ge=0)
    lines: List[SalesOrderLineInput] = Field(default_factory=list)
    comments_internal: Optional[str] = None

    # Breakdown obtained from the tax preview of these exact inputs
    tax_breakdown: Optional[TaxBreakdown] = None
    tax_inputs_hash: Optional[str] = None

    @field_validator('customer_id')
    @classmethod
    def validate_customer_id(cls, v):
        """Validate customer_id is not blank"""
        if not v or not v.strip():
            raise ValueError("customer_id cannot be empty")
        return v.strip()


class SalesOrderCreateRequest(SalesOrderSubmitRequest):
    pass


class SalesOrderUpdateRequest(SalesOrderSubmitRequest):
    expected_version: Optional[int] = Field(None, ge=1)


class TaxPreviewRequest(BaseModel):
    """Tax-relevant inputs of an order being edited"""
    ship_to: PostalAddress
    customer_tax_exempt: bool = False
    tax_exemption_reason: Optional[str] = None
    shipping_amount: Decimal = Field(default=Decimal("0"), ge=0)
    lines: List[SalesOrderLineInput] = Field(default_factory=list)


class TransitionRequest(BaseModel):
    expected_version: Optional[int] = Field(None, ge=1)


class SignatureDispatchRequest(TransitionRequest):
    signer_email: str = Field(..., min_length=3)
    signer_name: str = Field(..., min_length=1)


class CancelOrderRequest(TransitionRequest):
    reason: str = ""


class SignatureCallbackRequest(BaseModel):
    """Status report from the e-signature collaborator"""
    signature_request_id: str
    status: SignatureStatus
    signed_document_url: Optional[str] = None


# ====================
# Response Models
# ====================

class TaxPreviewResponse(BaseModel):
    tax_breakdown: TaxBreakdown
    tax_inputs_hash: str


class InventoryCheckResponse(BaseModel):
    order_id: str
    lines: List[LineAllocation]
    fully_available: bool


class SalesOrderListResponse(BaseModel):
    orders: List[SalesOrder]
    count: int
    limit: int
    offset: int


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    port: int
    version: str
    dependencies: Dict[str, str] = Field(default_factory=dict)
