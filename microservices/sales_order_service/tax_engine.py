"""
Tax Engine

Turns an order's ship-to address, lines, shipping amount and exemption flag
into a TaxBreakdown. Canadian jurisdictions are computed from the rule
table; every other country is delegated to the external tax calculator and
its answer normalized into the same shape.

Every money amount stored in a breakdown is rounded to cents (half up).
Tax components are rounded one by one and then summed, so a line's tax can
differ by a cent from applying the combined rate once.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .models import (
    LineTaxBreakdown,
    SalesOrderLineInput,
    ShippingTaxBreakdown,
    TaxBreakdown,
    TaxCalculationRequest,
    TaxComponent,
    TaxTotals,
)
from .order_validation import validate_tax_inputs
from .protocols import (
    TaxCalculatorClientProtocol,
    TaxJurisdictionUnavailableError,
    TaxServiceUnavailableError,
)
from .tax_rules import (
    CANADIAN_TAX_NAMES,
    SHIPPING_TAX_CATEGORY,
    DomesticRuleBased,
    ExternalDelegated,
    Jurisdiction,
    TaxRate,
    Unresolved,
    is_taxable,
    resolve_jurisdiction,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
SALES_TAX = "Sales Tax"


def to_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def line_net(line: SalesOrderLineInput) -> Decimal:
    """
    max(0, quantity * unit_price - discount), unrounded.

    Rates apply to this exact amount; only stored basis and totals are
    rounded to cents.
    """
    net = line.quantity_ordered * line.unit_price - line.discount_amount
    return max(Decimal("0"), net)


def line_label(line: SalesOrderLineInput) -> Optional[str]:
    return line.sku or line.product_id


def _empty_tax_by_type() -> Dict[str, Decimal]:
    return {name: ZERO for name in CANADIAN_TAX_NAMES}


def _apply_rates(
    rates: Sequence[TaxRate], basis: Decimal, tax_by_type: Dict[str, Decimal]
) -> List[TaxComponent]:
    if basis <= 0:
        return []
    components = []
    for tax_rate in rates:
        amount = round_money(basis * tax_rate.rate)
        components.append(TaxComponent(name=tax_rate.name, rate=tax_rate.rate, amount=amount))
        tax_by_type[tax_rate.name] = tax_by_type.get(tax_rate.name, ZERO) + amount
    return components


def compute_untaxed_breakdown(
    lines: Sequence[SalesOrderLineInput], shipping_amount: Decimal
) -> TaxBreakdown:
    """Breakdown for exempt customers and unresolvable jurisdictions: zero basis, zero tax."""
    per_line = []
    subtotal = Decimal("0")
    for line in lines:
        net = line_net(line)
        subtotal += net
        per_line.append(LineTaxBreakdown(
            line_id=line.line_id,
            sku=line_label(line),
            basis=ZERO,
            taxes=[],
            line_tax_total=ZERO,
            line_total_with_tax=round_money(net),
        ))

    shipping = round_money(shipping_amount)
    shipping_entry = None
    if shipping > 0:
        shipping_entry = ShippingTaxBreakdown(
            basis=ZERO, taxes=[], tax_total=ZERO, total_with_tax=shipping
        )

    subtotal = round_money(subtotal + shipping)
    return TaxBreakdown(
        per_line=per_line,
        shipping=shipping_entry,
        totals=TaxTotals(
            tax_by_type=_empty_tax_by_type(),
            total_tax=ZERO,
            subtotal=subtotal,
            grand_total=subtotal,
        ),
    )


def compute_domestic_tax(
    rates: Sequence[TaxRate],
    lines: Sequence[SalesOrderLineInput],
    shipping_amount: Decimal,
) -> TaxBreakdown:
    """Rule-based breakdown for a resolved domestic rate set."""
    tax_by_type = _empty_tax_by_type()
    per_line = []
    subtotal = Decimal("0")

    for line in lines:
        net = line_net(line)
        subtotal += net
        basis = net if is_taxable(line.tax_category) else ZERO
        taxes = _apply_rates(rates, basis, tax_by_type)
        line_tax = round_money(sum((tax.amount for tax in taxes), ZERO))
        per_line.append(LineTaxBreakdown(
            line_id=line.line_id,
            sku=line_label(line),
            basis=round_money(basis),
            taxes=taxes,
            line_tax_total=line_tax,
            line_total_with_tax=round_money(net + line_tax),
        ))

    shipping = round_money(shipping_amount)
    shipping_entry = None
    if shipping > 0:
        basis = shipping if is_taxable(SHIPPING_TAX_CATEGORY) else ZERO
        taxes = _apply_rates(rates, basis, tax_by_type)
        shipping_tax = round_money(sum((tax.amount for tax in taxes), ZERO))
        shipping_entry = ShippingTaxBreakdown(
            basis=round_money(basis),
            taxes=taxes,
            tax_total=shipping_tax,
            total_with_tax=round_money(shipping + shipping_tax),
        )

    tax_by_type = {name: round_money(amount) for name, amount in tax_by_type.items()}
    total_tax = round_money(sum(tax_by_type.values(), ZERO))
    subtotal = round_money(subtotal + shipping)

    return TaxBreakdown(
        per_line=per_line,
        shipping=shipping_entry,
        totals=TaxTotals(
            tax_by_type=tax_by_type,
            total_tax=total_tax,
            subtotal=subtotal,
            grand_total=round_money(subtotal + total_tax),
        ),
    )


def compute_local_tax(
    jurisdiction: Jurisdiction,
    lines: Sequence[SalesOrderLineInput],
    shipping_amount: Decimal,
    customer_exempt: bool = False,
) -> TaxBreakdown:
    """
    Breakdown for every case that needs no external calculator.

    Raises:
        ValueError: jurisdiction is delegated and the customer is not exempt
    """
    if customer_exempt or isinstance(jurisdiction, Unresolved):
        return compute_untaxed_breakdown(lines, shipping_amount)
    if isinstance(jurisdiction, DomesticRuleBased):
        return compute_domestic_tax(jurisdiction.rates, lines, shipping_amount)
    raise ValueError(f"Jurisdiction {jurisdiction} requires the external tax calculator")


# ====================
# External calculator
# ====================

def external_line_id(line: SalesOrderLineInput) -> Optional[str]:
    return line.sku or line.product_id or line.line_id


def build_external_payload(
    request: TaxCalculationRequest,
    lines: Sequence[SalesOrderLineInput],
    origin: Dict[str, str],
) -> Dict[str, Any]:
    """Order data forwarded to the external tax calculator"""
    ship_to = request.ship_to
    payload: Dict[str, Any] = {
        "fromAddress": {
            "country": origin.get("country", ""),
            "state": origin.get("state", ""),
            "city": origin.get("city", ""),
            "zip": origin.get("zip", ""),
            "street": origin.get("street", ""),
        },
        "toAddress": {
            "country": (ship_to.country or "").strip().upper(),
            "state": (ship_to.region or "").strip().upper(),
            "city": ship_to.city or "",
            "zip": ship_to.postal_code or "",
            "street": ship_to.line1 or "",
        },
        "lineItems": [],
        "shipping": float(round_money(request.shipping_amount)),
    }

    for line in lines:
        item: Dict[str, Any] = {
            "id": external_line_id(line),
            "sku": line.sku,
            "quantity": float(line.quantity_ordered),
            "unit_price": float(line.unit_price),
            "discount": float(line.discount_amount),
        }
        if line.external_tax_code:
            item["taxjar_product_tax_code"] = line.external_tax_code
        payload["lineItems"].append(item)

    return payload


def fallback_message(result: Dict[str, Any]) -> str:
    details = result.get("taxCalculation") or {}
    return details.get("message") or result.get("message") or "Tax calculation unavailable"


def normalize_external_result(
    lines: Sequence[SalesOrderLineInput],
    shipping_amount: Decimal,
    result: Dict[str, Any],
) -> TaxBreakdown:
    """Normalize an external calculator response into a TaxBreakdown."""
    combined_rate = to_decimal(result.get("combinedRate"))
    line_items = (result.get("breakdown") or {}).get("line_items") or []
    tax_by_line_id = {
        str(item.get("id")): item.get("tax_collectable") for item in line_items
    }

    per_line = []
    subtotal = Decimal("0")
    computed_tax = Decimal("0")
    for line in lines:
        net = line_net(line)
        subtotal += net
        line_tax = round_money(tax_by_line_id.get(str(external_line_id(line))))
        computed_tax += line_tax
        taxes = [TaxComponent(name=SALES_TAX, rate=combined_rate, amount=line_tax)] if line_tax > 0 else []
        per_line.append(LineTaxBreakdown(
            line_id=line.line_id,
            sku=line_label(line),
            basis=round_money(net),
            taxes=taxes,
            line_tax_total=line_tax,
            line_total_with_tax=round_money(net + line_tax),
        ))

    shipping = round_money(shipping_amount)
    shipping_entry = None
    if shipping > 0:
        shipping_tax = round_money(result.get("shippingTax"))
        computed_tax += shipping_tax
        shipping_entry = ShippingTaxBreakdown(
            basis=shipping,
            taxes=[TaxComponent(name=SALES_TAX, rate=combined_rate, amount=shipping_tax)] if shipping_tax > 0 else [],
            tax_total=shipping_tax,
            total_with_tax=round_money(shipping + shipping_tax),
        )

    if result.get("totalTax") is not None:
        total_tax = round_money(result.get("totalTax"))
    else:
        total_tax = round_money(computed_tax)

    tax_by_type = _empty_tax_by_type()
    tax_by_type[SALES_TAX] = total_tax
    subtotal = round_money(subtotal + shipping)

    taxable_amount = result.get("taxableAmount")
    return TaxBreakdown(
        per_line=per_line,
        shipping=shipping_entry,
        totals=TaxTotals(
            tax_by_type=tax_by_type,
            total_tax=total_tax,
            subtotal=subtotal,
            grand_total=round_money(subtotal + total_tax),
        ),
        jurisdiction=result.get("jurisdiction"),
        has_nexus=result.get("hasNexus"),
        combined_rate=combined_rate,
        taxable_amount=round_money(taxable_amount) if taxable_amount is not None else None,
    )


class TaxEngine:
    """
    Single entry point for tax computation.

    Holds no state between calls besides its collaborators; identical inputs
    produce identical breakdowns.
    """

    def __init__(
        self,
        tax_client: Optional[TaxCalculatorClientProtocol] = None,
        origin_address: Optional[Dict[str, str]] = None,
    ):
        self.tax_client = tax_client
        self.origin_address = origin_address or {}

    async def compute_tax(self, request: TaxCalculationRequest) -> TaxBreakdown:
        """
        Compute the tax breakdown for an order's inputs.

        Raises:
            OrderValidationError: incomplete/PO-box ship-to or no valid lines
            TaxJurisdictionUnavailableError: external calculator has no coverage
            TaxServiceUnavailableError: external calculator unreachable
        """
        lines = validate_tax_inputs(request.ship_to, request.lines)
        jurisdiction = resolve_jurisdiction(request.ship_to.country, request.ship_to.region)

        if isinstance(jurisdiction, ExternalDelegated) and not request.customer_exempt:
            return await self._compute_external(request, lines, jurisdiction)

        return compute_local_tax(
            jurisdiction, lines, request.shipping_amount, request.customer_exempt
        )

    async def _compute_external(
        self,
        request: TaxCalculationRequest,
        lines: Sequence[SalesOrderLineInput],
        jurisdiction: ExternalDelegated,
    ) -> TaxBreakdown:
        if self.tax_client is None:
            raise TaxServiceUnavailableError(
                f"No external tax calculator configured for {jurisdiction.code}",
                guard="tax_service",
            )

        payload = build_external_payload(request, lines, request.origin or self.origin_address)
        result = await self.tax_client.calculate(payload)

        if result is None:
            raise TaxServiceUnavailableError(
                f"Tax service did not return a result for {jurisdiction.code}",
                guard="tax_service",
            )

        if result.get("fallback"):
            message = fallback_message(result)
            logger.info(f"External tax fallback for {jurisdiction.code}: {message}")
            raise TaxJurisdictionUnavailableError(message, guard="tax_jurisdiction")

        breakdown = normalize_external_result(lines, request.shipping_amount, result)
        if breakdown.jurisdiction is None:
            breakdown.jurisdiction = jurisdiction.code
        return breakdown


def split_known_tax(breakdown: TaxBreakdown) -> Tuple[Decimal, Decimal, Decimal, Decimal]:
    """GST, HST, PST, QST amounts of a breakdown"""
    by_type = breakdown.totals.tax_by_type
    return tuple(round_money(by_type.get(name, ZERO)) for name in CANADIAN_TAX_NAMES)
