"""
Sales Order Aggregate

Header, lines and the last computed tax breakdown of one order, plus the
staleness contract between them: the breakdown is stored together with a
fingerprint of the inputs it was computed from, and any edit that changes
the fingerprint drops the breakdown.
"""

import hashlib
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from .models import (
    LineAllocation,
    PostalAddress,
    SalesOrder,
    SalesOrderLine,
    SalesOrderLineInput,
    SalesOrderStatus,
    SalesOrderSubmitRequest,
    TaxBreakdown,
)
from .order_validation import valid_lines
from .protocols import (
    OrderNotEditableError,
    OrderValidationError,
    StaleTaxBreakdownError,
)
from .tax_engine import line_net, round_money, split_known_tax, to_decimal
from .tax_rules import DEFAULT_TAX_CATEGORY

EDITABLE_STATUSES = frozenset({
    SalesOrderStatus.QUOTATION,
    SalesOrderStatus.DRAFT,
    SalesOrderStatus.NEEDS_UPDATE,
})

_ADDRESS_TAX_FIELDS = ("line1", "line2", "line3", "city", "region", "postal_code", "country")
_LINE_INPUT_FIELDS = tuple(SalesOrderLineInput.model_fields.keys())


def _canonical_decimal(value: Any) -> str:
    return format(to_decimal(value).normalize(), "f")


def tax_inputs_fingerprint(
    ship_to: Optional[PostalAddress],
    lines: Sequence[SalesOrderLineInput],
    shipping_amount: Any,
    customer_exempt: bool,
    exemption_reason: Optional[str] = None,
) -> str:
    """SHA-256 over the canonical form of every input that feeds tax computation."""
    address = ship_to or PostalAddress()
    payload = {
        "ship_to": {
            name: (getattr(address, name) or "").strip().upper()
            for name in _ADDRESS_TAX_FIELDS
        },
        "customer_exempt": bool(customer_exempt),
        "exemption_reason": (exemption_reason or "").strip().lower(),
        "shipping": _canonical_decimal(round_money(shipping_amount)),
        "lines": [
            [
                line.sku or line.product_id or "",
                _canonical_decimal(line.quantity_ordered),
                _canonical_decimal(line.unit_price),
                _canonical_decimal(line.discount_amount),
                (line.tax_category or DEFAULT_TAX_CATEGORY).strip().lower(),
                line.external_tax_code or "",
            ]
            for line in valid_lines(lines)
        ],
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def new_order_id() -> str:
    return f"so_{uuid.uuid4().hex[:20]}"


def new_line_id() -> str:
    return f"sol_{uuid.uuid4().hex[:20]}"


@dataclass
class LineReplacementPlan:
    """Line writes needed to persist a wholesale line replacement"""
    to_delete: List[str] = field(default_factory=list)
    to_update: List[SalesOrderLine] = field(default_factory=list)
    to_insert: List[SalesOrderLine] = field(default_factory=list)


class SalesOrderAggregate:
    """Wraps a SalesOrder and enforces its edit and tax-cache rules"""

    def __init__(self, order: SalesOrder):
        self.order = order

    @classmethod
    def create(
        cls,
        request: SalesOrderSubmitRequest,
        tenant_id: str,
        so_number: str,
        created_by: Optional[str],
        currency: str,
        now: datetime,
    ) -> "SalesOrderAggregate":
        order = SalesOrder(
            order_id=new_order_id(),
            so_number=so_number,
            tenant_id=tenant_id,
            customer_id=request.customer_id,
            currency=request.currency or currency,
            status=SalesOrderStatus.QUOTATION,
            version=1,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        aggregate = cls(order)
        aggregate._apply_header(request)
        aggregate._replace_lines(request.lines, now)
        return aggregate

    # ====================
    # Queries
    # ====================

    @property
    def is_editable(self) -> bool:
        return self.order.status in EDITABLE_STATUSES

    def current_fingerprint(self) -> str:
        order = self.order
        return tax_inputs_fingerprint(
            order.ship_to,
            order.lines,
            order.shipping_amount,
            order.customer_tax_exempt,
            order.tax_exemption_reason,
        )

    def is_tax_current(self) -> bool:
        return (
            self.order.tax_breakdown is not None
            and self.order.tax_inputs_hash == self.current_fingerprint()
        )

    def require_current_tax(self) -> None:
        """
        Raises:
            StaleTaxBreakdownError: breakdown missing or computed from other inputs
        """
        if not self.is_tax_current():
            raise StaleTaxBreakdownError()

    # ====================
    # Edits
    # ====================

    def apply_edit(self, request: SalesOrderSubmitRequest, now: datetime) -> LineReplacementPlan:
        """
        Replace header fields and lines wholesale.

        Drops the tax breakdown whenever a tax input changed.

        Raises:
            OrderNotEditableError: order is outside the editable statuses
        """
        if not self.is_editable:
            raise OrderNotEditableError(
                f"Order {self.order.so_number} cannot be edited in status {self.order.status.value}",
                current_status=self.order.status.value,
                guard="editable_status",
            )

        before = self.current_fingerprint()
        self._apply_header(request)
        plan = self._replace_lines(request.lines, now)
        self.order.updated_at = now

        if self.current_fingerprint() != before:
            self.invalidate_tax()
        return plan

    def invalidate_tax(self) -> None:
        self.order.tax_breakdown = None
        self.order.tax_inputs_hash = None

    def _apply_header(self, request: SalesOrderSubmitRequest) -> None:
        order = self.order
        order.customer_id = request.customer_id
        order.customer_name = request.customer_name
        order.po_number = request.po_number or "TBD"
        order.customer_tax_exempt = request.customer_tax_exempt
        order.tax_exemption_reason = request.tax_exemption_reason
        order.bill_to = request.bill_to.model_copy()
        order.ship_to = request.ship_to.model_copy()
        order.shipping_amount = round_money(request.shipping_amount)
        if request.currency:
            order.currency = request.currency
        order.comments_internal = request.comments_internal

    def _replace_lines(self, inputs: Sequence[SalesOrderLineInput], now: datetime) -> LineReplacementPlan:
        existing = {line.line_id: line for line in self.order.lines}
        plan = LineReplacementPlan()
        replaced: List[SalesOrderLine] = []

        for index, line_input in enumerate(valid_lines(inputs)):
            values = line_input.model_dump(include=set(_LINE_INPUT_FIELDS))
            values.update(
                line_number=(index + 1) * 10,
                line_subtotal=round_money(line_net(line_input)),
                line_tax_amount=Decimal("0.00"),
                line_total=round_money(line_net(line_input)),
                quantity_allocated=None,
                quantity_backordered=None,
                updated_at=now,
            )

            current = existing.pop(line_input.line_id, None) if line_input.line_id else None
            if current is not None:
                values["line_id"] = current.line_id
                line = current.model_copy(update=values)
                plan.to_update.append(line)
            else:
                values["line_id"] = new_line_id()
                line = SalesOrderLine(order_id=self.order.order_id, created_at=now, **values)
                plan.to_insert.append(line)
            replaced.append(line)

        plan.to_delete = list(existing.keys())
        self.order.lines = replaced
        return plan

    # ====================
    # Tax
    # ====================

    def attach_tax_breakdown(self, breakdown: TaxBreakdown, inputs_hash: Optional[str] = None) -> None:
        """
        Store a breakdown with the fingerprint of the current inputs and copy
        its amounts onto the header and lines.

        Raises:
            StaleTaxBreakdownError: inputs_hash given and not matching, or
                the breakdown does not cover the order's lines
        """
        fingerprint = self.current_fingerprint()
        if inputs_hash is not None and inputs_hash != fingerprint:
            raise StaleTaxBreakdownError(
                "Tax breakdown was calculated for different order inputs; recalculate tax"
            )
        if len(breakdown.per_line) != len(self.order.lines):
            raise StaleTaxBreakdownError(
                "Tax breakdown does not match the order lines; recalculate tax"
            )

        breakdown = breakdown.model_copy(deep=True)
        for line, line_tax in zip(self.order.lines, breakdown.per_line):
            line_tax.line_id = line.line_id
            line.line_subtotal = round_money(line_net(line))
            line.line_tax_amount = round_money(line_tax.line_tax_total)
            line.line_total = round_money(line_tax.line_total_with_tax)

        order = self.order
        order.tax_breakdown = breakdown
        order.tax_inputs_hash = fingerprint
        order.subtotal = round_money(sum((line_net(line) for line in order.lines), Decimal("0")))
        order.tax_total = round_money(breakdown.totals.total_tax)
        order.tax_gst, order.tax_hst, order.tax_pst, order.tax_qst = split_known_tax(breakdown)
        order.total_amount = round_money(breakdown.totals.grand_total)

    def attach_submitted_breakdown(
        self, breakdown: Optional[TaxBreakdown], inputs_hash: Optional[str]
    ) -> None:
        """
        Submission guard: a breakdown for exactly the submitted inputs is required.

        Raises:
            OrderValidationError: no breakdown submitted
            StaleTaxBreakdownError: breakdown computed from other inputs
        """
        if breakdown is None:
            raise OrderValidationError(
                "Calculate tax before saving the order",
                guard="tax_breakdown_present",
            )
        if not inputs_hash:
            raise StaleTaxBreakdownError(
                "Tax breakdown is missing its inputs hash; recalculate tax"
            )
        self.attach_tax_breakdown(breakdown, inputs_hash)

    # ====================
    # Allocation
    # ====================

    def apply_allocations(self, allocations: Sequence[LineAllocation]) -> None:
        """
        Persistable allocation fields on every line.

        Raises:
            ValueError: allocations do not cover every line, or a split does
                not add up to the ordered quantity
        """
        by_line: Dict[str, LineAllocation] = {a.line_id: a for a in allocations if a.line_id}
        for line in self.order.lines:
            allocation = by_line.get(line.line_id)
            if allocation is None:
                raise ValueError(f"No allocation computed for line {line.line_id}")
            if allocation.allocatable + allocation.backordered != line.quantity_ordered:
                raise ValueError(
                    f"Allocation for line {line.line_id} does not add up to the ordered quantity"
                )
            line.quantity_allocated = allocation.allocatable
            line.quantity_backordered = allocation.backordered
